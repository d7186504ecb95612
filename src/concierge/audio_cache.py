"""
Rendered-speech cache.

Maps a phrase to the public URL path of an MP3 rendered by the TTS provider.
Files are content-addressed (SHA-256 of the text), so a phrase rendered by a
previous process is reused as long as the file is still on disk. The in-memory
map only lives as long as the process.

There is no lock and no eviction: the phrase set is small (greeting plus a
handful of responses), and two calls rendering the same phrase concurrently
just write the same file twice.
"""

import asyncio
import hashlib
import os
import uuid
from pathlib import Path
from typing import Dict, Optional

import structlog

from src.concierge.tts_providers.base import TTSProvider

logger = structlog.get_logger(__name__)

AUDIO_URL_PREFIX = "/audio"


class AudioCache:
    """Text -> `/audio/<file>.mp3` cache backed by a static directory."""
    
    def __init__(self, audio_dir: str, synthesizer: TTSProvider):
        self.audio_dir = Path(audio_dir)
        self.synthesizer = synthesizer
        self._cache: Dict[str, str] = {}
    
    @staticmethod
    def filename_for(text: str) -> str:
        """Stable, filesystem-safe filename for a phrase."""
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"{digest}.mp3"
    
    def path_for(self, text: str) -> Path:
        """Get the on-disk path for a phrase."""
        return self.audio_dir / self.filename_for(text)
    
    def url_for(self, text: str) -> str:
        return f"{AUDIO_URL_PREFIX}/{self.filename_for(text)}"
    
    def has(self, text: str) -> bool:
        """Check if audio exists for a phrase (memory or disk)."""
        if text in self._cache:
            return True
        return self.path_for(text).exists()
    
    def lookup(self, text: str) -> Optional[str]:
        """Return the cached URL without rendering, or None."""
        if text in self._cache:
            return self._cache[text]
        
        if self.path_for(text).exists():
            url = self.url_for(text)
            self._cache[text] = url
            logger.debug("Audio found on disk", url=url)
            return url
        
        return None
    
    async def get_or_create(self, text: str) -> str:
        """
        Get the public URL path for a phrase, rendering it on a miss.
        
        Raises whatever the TTS provider raises; nothing is cached on failure.
        """
        url = self.lookup(text)
        if url is not None:
            return url
        
        logger.info("Generating audio", text=text[:80])
        audio = await self.synthesizer.synthesize(text)
        
        await asyncio.to_thread(self._write_file, self.path_for(text), audio)
        
        url = self.url_for(text)
        self._cache[text] = url
        logger.info("Audio cached", url=url, size_bytes=len(audio))
        return url
    
    def _write_file(self, path: Path, audio: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        with open(tmp_path, "wb") as f:
            f.write(audio)
        os.replace(tmp_path, path)
