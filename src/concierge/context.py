"""
Process-wide concierge state.

Everything the webhook handlers share lives on one `ConciergeContext`, built
once at startup and closed on shutdown.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from twilio.rest import Client as TwilioClient

from src.concierge.audio_cache import AudioCache
from src.concierge.config import Config, get_config
from src.concierge.matcher import PersonMatcher
from src.concierge.recordings import RecordingRetriever
from src.concierge.residents import ResidentDirectory, load_directory
from src.concierge.stt import AssemblyAITranscriber
from src.concierge.tts_providers import ElevenLabsTTS, TTSProvider

logger = structlog.get_logger(__name__)


@dataclass
class ConciergeContext:
    config: Config
    directory: ResidentDirectory
    tts: TTSProvider
    audio_cache: AudioCache
    retriever: RecordingRetriever
    transcriber: AssemblyAITranscriber
    matcher: PersonMatcher

    async def close(self) -> None:
        try:
            await self.tts.close()
        finally:
            await self.transcriber.close()


def create_context(config: Optional[Config] = None, *, twilio_client: Optional[Any] = None) -> ConciergeContext:
    config = config or get_config()

    directory = load_directory(config.residents_file)
    tts = ElevenLabsTTS(config)
    client = twilio_client or TwilioClient(config.twilio_account_sid, config.twilio_auth_token)

    context = ConciergeContext(
        config=config,
        directory=directory,
        tts=tts,
        audio_cache=AudioCache(config.audio_dir, tts),
        retriever=RecordingRetriever(client, max_attempts=config.recording_max_attempts),
        transcriber=AssemblyAITranscriber(
            config.assemblyai_api_key,
            twilio_auth=(config.twilio_account_sid, config.twilio_auth_token),
            max_polls=config.transcript_max_polls,
        ),
        matcher=PersonMatcher(
            directory,
            carrier_keywords=config.carrier_keywords,
            filler_words=config.filler_words,
            max_distance=config.match_max_distance,
        ),
    )

    logger.info(
        "Concierge context created",
        residents=directory.names(),
        audio_dir=config.audio_dir,
    )
    return context
