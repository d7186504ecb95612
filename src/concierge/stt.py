"""
AssemblyAI speech-to-text adapter.

Flow for one recording:
1. Download the MP3 from Twilio (basic auth; recordings are access-controlled)
2. Upload it to AssemblyAI with retry and backoff
3. Submit a transcription job with language detection enabled
4. Poll the job until it completes, errors, or the poll budget runs out
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple

import httpx
import structlog

logger = structlog.get_logger(__name__)

ASSEMBLYAI_BASE_URL = "https://api.assemblyai.com/v2"

# Twilio occasionally serves a truncated file right after the recording
# callback; anything below this is treated as "not fully available yet".
SMALL_AUDIO_BYTES = 1024


class TranscriptionError(Exception):
    """Base class for transcription failures."""
    pass


class TranscriptionFailedError(TranscriptionError):
    """AssemblyAI reported the job as errored."""

    def __init__(self, detail: Optional[str]):
        self.detail = detail
        super().__init__(f"Transcription failed: {detail}")


class TranscriptionTimeoutError(TranscriptionError):
    """The job did not complete within the poll budget."""
    pass


class AssemblyAITranscriber:
    """
    Transcribes a Twilio recording URL with AssemblyAI.

    All delays and bounds are constructor parameters so tests can run the
    full flow with a no-op `sleep`.
    """
    
    def __init__(
        self,
        api_key: str,
        *,
        twilio_auth: Tuple[str, str],
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = ASSEMBLYAI_BASE_URL,
        upload_attempts: int = 3,
        upload_initial_delay: float = 2.0,
        upload_backoff_base: float = 1.0,
        upload_timeout_s: float = 30.0,
        small_audio_delay: float = 3.0,
        submit_delay: float = 2.0,
        max_polls: int = 30,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.twilio_auth = twilio_auth
        self.base_url = base_url.rstrip("/")
        self.upload_attempts = upload_attempts
        self.upload_initial_delay = upload_initial_delay
        self.upload_backoff_base = upload_backoff_base
        self.upload_timeout_s = upload_timeout_s
        self.small_audio_delay = small_audio_delay
        self.submit_delay = submit_delay
        self.max_polls = max_polls
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None
    
    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        return self._client
    
    @property
    def _headers(self) -> dict:
        return {"authorization": self.api_key}
    
    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
    
    async def download_audio(self, url: str) -> bytes:
        """Download a recording from Twilio."""
        logger.info("Downloading audio", url=url)
        resp = await self._get_client().get(
            url,
            auth=self.twilio_auth,
            follow_redirects=True,
        )
        resp.raise_for_status()
        logger.info("Audio downloaded", size_bytes=len(resp.content))
        return resp.content
    
    async def upload(self, audio: bytes) -> str:
        """
        Upload audio to AssemblyAI and return its `upload_url`.
        
        Retries with exponential backoff; the last attempt's error propagates.
        """
        await self._sleep(self.upload_initial_delay)
        
        for attempt in range(1, self.upload_attempts + 1):
            if attempt > 1:
                await self._sleep(self.upload_backoff_base * (2 ** (attempt - 1)))
            
            logger.info("Upload attempt", attempt=attempt, max_attempts=self.upload_attempts)
            try:
                resp = await self._get_client().post(
                    f"{self.base_url}/upload",
                    files={"audio": ("audio.mp3", audio, "audio/mpeg")},
                    headers=self._headers,
                    timeout=self.upload_timeout_s,
                )
                resp.raise_for_status()
                data: Any = resp.json()
                upload_url = data.get("upload_url") if isinstance(data, dict) else None
                if not upload_url:
                    raise TranscriptionError("Invalid upload response")
                return upload_url
            
            except (httpx.HTTPError, TranscriptionError, ValueError) as e:
                status = getattr(getattr(e, "response", None), "status_code", None)
                if attempt == self.upload_attempts:
                    logger.error("Upload failed", attempt=attempt, status=status, error=str(e))
                    raise
                logger.warning("Upload attempt failed", attempt=attempt, status=status, error=str(e))
        
        raise TranscriptionError("Upload failed after retries")
    
    async def submit(self, upload_url: str) -> str:
        """Submit a transcription job and return its id."""
        resp = await self._get_client().post(
            f"{self.base_url}/transcript",
            json={"audio_url": upload_url, "language_detection": True},
            headers=self._headers,
        )
        resp.raise_for_status()
        transcript_id = resp.json().get("id")
        if not transcript_id:
            raise TranscriptionError("Transcript submission returned no id")
        logger.info("Transcript submitted", transcript_id=transcript_id)
        return transcript_id
    
    async def poll(self, transcript_id: str) -> str:
        """Poll a job until completion; at most `max_polls` status requests."""
        url = f"{self.base_url}/transcript/{transcript_id}"
        
        for attempt in range(1, self.max_polls + 1):
            resp = await self._get_client().get(url, headers=self._headers)
            resp.raise_for_status()
            data = resp.json()
            status = data.get("status")
            logger.debug("Polling status", transcript_id=transcript_id, attempt=attempt, status=status)
            
            if status == "completed":
                return data.get("text") or ""
            if status == "error":
                raise TranscriptionFailedError(data.get("error"))
            
            if attempt < self.max_polls:
                await self._sleep(self.poll_interval)
        
        raise TranscriptionTimeoutError(
            f"Transcription {transcript_id} timed out after {self.max_polls} polls"
        )
    
    async def transcribe(self, audio_url: str) -> str:
        try:
            audio = await self.download_audio(audio_url)
            
            if len(audio) < SMALL_AUDIO_BYTES:
                logger.warning("Audio file is very small", size_bytes=len(audio))
                await self._sleep(self.small_audio_delay)
            
            upload_url = await self.upload(audio)
            logger.info("Upload successful")
            
            await self._sleep(self.submit_delay)
            transcript_id = await self.submit(upload_url)
            
            text = await self.poll(transcript_id)
            logger.info("Transcription complete", transcript_id=transcript_id, text=text)
            return text
        
        except httpx.HTTPStatusError as e:
            logger.error(
                "Transcription request failed",
                status=e.response.status_code,
                url=str(e.request.url),
                error=str(e),
            )
            raise
        except Exception as e:
            logger.error("Error in transcription", error=str(e))
            raise
