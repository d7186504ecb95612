"""Call orchestration for the two Twilio webhooks.

Inbound call:
    greeting (ElevenLabs <Play>, or <Say> fallback) -> <Record> (always)

Recording callback:
    RecordingSid -> wait for recording -> transcribe -> match ->
    response (<Play> or <Say>) -> optional <Dial> -> <Hangup> (always)

Every path returns a well-formed TwiML document. Errors at any stage turn into
a spoken apology; nothing propagates to the webhook.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

import structlog
from twilio.twiml.voice_response import VoiceResponse

from src.concierge.context import ConciergeContext
from src.concierge.matcher import DeliveryMatch, MatchResult, ResidentMatch
from src.concierge.recordings import RecordingUnavailableError
from src.concierge.residents import Resident

logger = structlog.get_logger(__name__)

RECORDING_CALLBACK_PATH = "/twilio/handle-recording"
RECORDING_MEDIA_SUFFIX = ".mp3"

RECORD_MAX_LENGTH_S = 5
RECORD_SILENCE_TIMEOUT_S = 3

GREETING = (
    "Hey! I'm Matt's AI Concierge. I know we sound similar. Do you want me to ring "
    "Matt, Lindsay or both? Alternatively, if you have a package, please say your "
    "delivery company name"
)
DELIVERY_RESPONSE = "Access granted. Please leave the package in the lobby."
RESIDENT_RESPONSE = "Great, connecting you to {name} now."
NOT_FOUND_RESPONSE = "I'm sorry, I couldn't find who you're looking for. Please try again."
MISUNDERSTOOD_RESPONSE = "Sorry, I had trouble understanding that. Please try again."
ERROR_RESPONSE = "Sorry, there was an error processing your request. Please try again."


class MissingRecordingError(Exception):
    """The recording webhook arrived without a RecordingSid."""
    pass


class CallOutcome(str, Enum):
    GREETED = "greeted"
    DELIVERY = "delivery"
    CONNECTED = "connected"
    NOT_FOUND = "not_found"
    MISUNDERSTOOD = "misunderstood"
    ERROR = "error"


@dataclass(frozen=True)
class CallResponse:
    twiml: str
    outcome: CallOutcome
    spoke_with_fallback: bool = False


def response_text_for(result: MatchResult) -> str:
    if isinstance(result, DeliveryMatch):
        return DELIVERY_RESPONSE
    if isinstance(result, ResidentMatch) and result.resident is not None:
        return RESIDENT_RESPONSE.format(name=result.resident.name)
    return NOT_FOUND_RESPONSE


def _outcome_for(result: MatchResult) -> CallOutcome:
    if isinstance(result, DeliveryMatch):
        return CallOutcome.DELIVERY
    if result.resident is not None:
        return CallOutcome.CONNECTED
    return CallOutcome.NOT_FOUND


class CallOrchestrator:
    def __init__(self, context: ConciergeContext):
        self.context = context

    def _public_base_url(self, request_base_url: str) -> str:
        return (self.context.config.base_url or request_base_url).rstrip("/")

    async def _speak(self, twiml: VoiceResponse, text: str, base_url: str) -> bool:
        """
        Append <Play> with rendered audio, or <Say> if rendering fails.

        Returns True when the built-in voice fallback was used.
        """
        try:
            audio_path = await self.context.audio_cache.get_or_create(text)
        except Exception as e:
            logger.error("Error generating audio, using built-in voice", error=str(e), text=text[:80])
            twiml.say(text, voice=self.context.config.fallback_voice)
            return True

        twiml.play(f"{self._public_base_url(base_url)}{audio_path}")
        return False

    async def handle_incoming(self, base_url: str, payload: Optional[Mapping[str, Any]] = None) -> CallResponse:
        """Greet the caller and record their answer."""
        call_sid = (payload or {}).get("CallSid")
        logger.info("Received incoming call", call_sid=call_sid, caller=(payload or {}).get("From"))

        twiml = VoiceResponse()
        fallback = await self._speak(twiml, GREETING, base_url)
        twiml.record(
            action=RECORDING_CALLBACK_PATH,
            method="POST",
            play_beep=True,
            timeout=RECORD_SILENCE_TIMEOUT_S,
            max_length=RECORD_MAX_LENGTH_S,
        )

        return CallResponse(twiml=str(twiml), outcome=CallOutcome.GREETED, spoke_with_fallback=fallback)

    async def _recording_source_url(self, payload: Mapping[str, Any]) -> str:
        recording_sid = payload.get("RecordingSid")
        if not recording_sid:
            raise MissingRecordingError("No recording SID provided")

        logger.info("Waiting for recording to be ready", recording_sid=recording_sid)
        recording = await self.context.retriever.wait_for_recording(recording_sid)

        if not recording.media_url:
            raise RecordingUnavailableError(f"No media URL available for recording {recording_sid}")

        return f"{recording.media_url}{RECORDING_MEDIA_SUFFIX}"

    async def _transcribe_and_match(self, audio_url: str) -> MatchResult:
        transcript = await self.context.transcriber.transcribe(audio_url)
        logger.info("Transcription result", transcript=transcript)

        result = self.context.matcher.match(transcript)
        logger.info(
            "Match result",
            kind=result.kind.value,
            resident=getattr(getattr(result, "resident", None), "name", None),
        )
        return result

    async def handle_recording(self, payload: Mapping[str, Any], base_url: str) -> CallResponse:
        """Identify who the caller wants, respond, optionally connect, then hang up."""
        logger.info(
            "Received recording webhook",
            call_sid=payload.get("CallSid"),
            recording_sid=payload.get("RecordingSid"),
        )

        twiml = VoiceResponse()
        resident: Optional[Resident] = None

        try:
            audio_url = await self._recording_source_url(payload)
        except Exception as e:
            logger.error("Error handling recording", error=str(e), error_type=type(e).__name__)
            text = ERROR_RESPONSE
            outcome = CallOutcome.ERROR
        else:
            try:
                result = await self._transcribe_and_match(audio_url)
            except Exception as e:
                logger.error("Error during processing", error=str(e), error_type=type(e).__name__)
                text = MISUNDERSTOOD_RESPONSE
                outcome = CallOutcome.MISUNDERSTOOD
            else:
                text = response_text_for(result)
                outcome = _outcome_for(result)
                if isinstance(result, ResidentMatch):
                    resident = result.resident

        fallback = await self._speak(twiml, text, base_url)

        if resident is not None:
            logger.info("Connecting call", resident=resident.name)
            twiml.dial(resident.phone_number)

        twiml.hangup()

        return CallResponse(twiml=str(twiml), outcome=outcome, spoke_with_fallback=fallback)
