from src.concierge.tts_providers.base import TTSProvider
from src.concierge.tts_providers.elevenlabs import ElevenLabsTTS

__all__ = ["TTSProvider", "ElevenLabsTTS"]
