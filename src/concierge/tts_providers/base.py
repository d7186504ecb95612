from __future__ import annotations

from abc import ABC, abstractmethod


class TTSProvider(ABC):
    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """Render `text` to encoded audio bytes. Provider errors propagate."""
        raise NotImplementedError

    async def close(self) -> None:
        return None
