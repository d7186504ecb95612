"""
Recording retrieval.

Twilio posts the recording callback before the media is always downloadable,
so we poll the recording resource until it reports `completed`.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com"


class RecordingError(Exception):
    """Base class for recording retrieval failures."""
    pass


class RecordingFailedError(RecordingError):
    """Twilio reported the recording as failed."""
    pass


class RecordingTimeoutError(RecordingError):
    """The recording did not complete within the attempt budget."""
    pass


class RecordingUnavailableError(RecordingError):
    """The recording completed but has no downloadable media URL."""
    pass


@dataclass(frozen=True)
class Recording:
    sid: str
    status: str
    media_url: Optional[str] = None
    duration: Optional[str] = None

    @classmethod
    def from_twilio(cls, instance: Any) -> "Recording":
        media_url = getattr(instance, "media_url", None)
        if not media_url:
            uri = getattr(instance, "uri", None) or ""
            if uri:
                if uri.endswith(".json"):
                    uri = uri[: -len(".json")]
                media_url = f"{TWILIO_API_BASE}{uri}"
        return cls(
            sid=getattr(instance, "sid", ""),
            status=getattr(instance, "status", "") or "",
            media_url=media_url or None,
            duration=getattr(instance, "duration", None),
        )


class RecordingRetriever:
    """
    Polls Twilio until a recording is ready.

    Waits `initial_delay` once, then fetches up to `max_attempts` times with
    exponential backoff (`base_delay * 2**(attempt-1)`, capped at `max_delay`)
    between non-terminal statuses.
    """

    def __init__(
        self,
        client: Any,
        *,
        max_attempts: int = 10,
        initial_delay: float = 2.0,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        error_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.error_delay = error_delay
        self._sleep = sleep

    async def fetch(self, recording_sid: str) -> Recording:
        # The Twilio SDK is synchronous.
        instance = await asyncio.to_thread(self._client.recordings(recording_sid).fetch)
        return Recording.from_twilio(instance)

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def wait_for_recording(self, recording_sid: str) -> Recording:
        await self._sleep(self.initial_delay)

        for attempt in range(1, self.max_attempts + 1):
            logger.info(
                "Checking recording status",
                recording_sid=recording_sid,
                attempt=attempt,
                max_attempts=self.max_attempts,
            )
            try:
                recording = await self.fetch(recording_sid)
            except Exception as e:
                if attempt == self.max_attempts:
                    logger.error(
                        "Recording fetch failed",
                        recording_sid=recording_sid,
                        attempt=attempt,
                        error=str(e),
                    )
                    raise
                logger.warning(
                    "Recording fetch failed, retrying",
                    recording_sid=recording_sid,
                    attempt=attempt,
                    error=str(e),
                )
                await self._sleep(self.error_delay)
                continue

            if recording.status == "completed":
                logger.info(
                    "Recording ready",
                    recording_sid=recording_sid,
                    attempt=attempt,
                    duration=recording.duration,
                )
                return recording

            if recording.status == "failed":
                raise RecordingFailedError(f"Recording {recording_sid} failed to process")

            await self._sleep(self.backoff_delay(attempt))

        raise RecordingTimeoutError(
            f"Recording {recording_sid} did not complete processing in time"
        )
