from __future__ import annotations

import time
from typing import Any, Optional

import httpx
import structlog

from src.concierge.config import get_config
from src.concierge.tts_providers.base import TTSProvider

logger = structlog.get_logger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class ElevenLabsTTS(TTSProvider):
    """
    ElevenLabs text-to-speech client (non-streaming).

    Returns the whole MP3 for a phrase. No retries: callers fall back to
    Twilio's built-in voice when this raises.
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 30.0,
    ):
        self.config = config or get_config()
        self._client = client
        self._owns_client = client is None
        self._timeout_s = timeout_s

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s))
        return self._client

    async def synthesize(self, text: str) -> bytes:
        if not text or not text.strip():
            raise ValueError("Cannot synthesize empty text")

        url = ELEVENLABS_TTS_URL.format(voice_id=self.config.elevenlabs_voice_id)
        payload = {
            "text": text,
            "model_id": self.config.elevenlabs_model_id,
            "voice_settings": {
                "stability": self.config.elevenlabs_stability,
                "similarity_boost": self.config.elevenlabs_similarity_boost,
            },
        }
        headers = {
            "Accept": "audio/mpeg",
            "xi-api-key": self.config.elevenlabs_api_key,
            "Content-Type": "application/json",
        }

        started = time.time()
        resp = await self._get_client().post(url, json=payload, headers=headers)
        resp.raise_for_status()

        logger.info(
            "ElevenLabs synthesis complete",
            characters=len(text),
            size_bytes=len(resp.content),
            elapsed_ms=round((time.time() - started) * 1000, 2),
        )
        return resp.content

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
