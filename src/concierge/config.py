"""
Configuration management for the AI Concierge.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""
    
    # Server
    # - public_host is optional; when empty, audio URLs are built from the
    #   host the webhook request arrived on.
    public_host: str = ""
    port: int = 3000
    log_level: str = "INFO"
    audio_dir: str = "audio"
    
    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    
    # ElevenLabs (TTS)
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    elevenlabs_model_id: str = "eleven_monolingual_v1"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.75
    
    # AssemblyAI (STT)
    assemblyai_api_key: str = ""
    
    # Resident directory (JSON file); built-in directory when empty
    residents_file: str = ""
    
    # Matching heuristics
    match_max_distance: int = 2
    filler_words: Tuple[str, ...] = ("thank", "you")
    carrier_keywords: Tuple[str, ...] = ("amazon", "fedex", "ups")
    
    # Polling bounds
    recording_max_attempts: int = 10
    transcript_max_polls: int = 30
    
    # Built-in Twilio voice used when ElevenLabs is unavailable
    fallback_voice: str = "alice"
    
    @property
    def base_url(self) -> str:
        """Get the base HTTP URL, or an empty string when no public host is set."""
        if not self.public_host:
            return ""
        return f"https://{self.public_host}"
    
    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []
        
        if not self.twilio_account_sid:
            missing.append("TWILIO_ACCOUNT_SID")
        if not self.twilio_auth_token:
            missing.append("TWILIO_AUTH_TOKEN")
        if not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        if not self.elevenlabs_voice_id:
            missing.append("ELEVENLABS_VOICE_ID")
        if not self.assemblyai_api_key:
            missing.append("ASSEMBLYAI_API_KEY")
        
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )
        
        if self.match_max_distance < 0:
            raise ConfigError(
                f"Invalid MATCH_MAX_DISTANCE '{self.match_max_distance}'. Expected a non-negative integer."
            )
        if self.recording_max_attempts < 1 or self.transcript_max_polls < 1:
            raise ConfigError(
                "RECORDING_MAX_ATTEMPTS and TRANSCRIPT_MAX_POLLS must be at least 1."
            )
    
    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            public_host=self.public_host or "(request host)",
            port=self.port,
            log_level=self.log_level,
            audio_dir=self.audio_dir,
            residents_file=self.residents_file or "(built-in)",
            elevenlabs_model_id=self.elevenlabs_model_id,
            match_max_distance=self.match_max_distance,
            filler_words=list(self.filler_words),
            carrier_keywords=list(self.carrier_keywords),
            recording_max_attempts=self.recording_max_attempts,
            transcript_max_polls=self.transcript_max_polls,
            twilio_sid_prefix=self.twilio_account_sid[:6] + "..." if self.twilio_account_sid else "NOT SET",
            elevenlabs_key_set=bool(self.elevenlabs_api_key),
            elevenlabs_voice_set=bool(self.elevenlabs_voice_id),
            assemblyai_key_set=bool(self.assemblyai_api_key),
        )


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_words(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Get a comma-separated, lower-cased word list from environment variable."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return tuple(w.strip().lower() for w in raw.split(",") if w.strip())


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.
    
    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        # Server
        public_host=os.getenv("PUBLIC_HOST", ""),
        port=_get_int("PORT", 3000),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        audio_dir=os.getenv("AUDIO_DIR", "audio"),
        
        # Twilio
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        
        # ElevenLabs
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", ""),
        elevenlabs_model_id=os.getenv("ELEVENLABS_MODEL_ID", "eleven_monolingual_v1"),
        elevenlabs_stability=_get_float("ELEVENLABS_STABILITY", 0.5),
        elevenlabs_similarity_boost=_get_float("ELEVENLABS_SIMILARITY_BOOST", 0.75),
        
        # AssemblyAI
        assemblyai_api_key=os.getenv("ASSEMBLYAI_API_KEY", ""),
        
        # Directory
        residents_file=os.getenv("RESIDENTS_FILE", ""),
        
        # Matching
        match_max_distance=_get_int("MATCH_MAX_DISTANCE", 2),
        filler_words=_get_words("FILLER_WORDS", ("thank", "you")),
        carrier_keywords=_get_words("CARRIER_KEYWORDS", ("amazon", "fedex", "ups")),
        
        # Polling
        recording_max_attempts=_get_int("RECORDING_MAX_ATTEMPTS", 10),
        transcript_max_polls=_get_int("TRANSCRIPT_MAX_POLLS", 30),
        
        fallback_voice=os.getenv("FALLBACK_VOICE", "alice"),
    )
    
    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.
    
    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
