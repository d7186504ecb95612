"""
Pytest configuration and fixtures.
"""

import pytest
import os
from unittest.mock import AsyncMock, MagicMock, patch

from src.concierge.audio_cache import AudioCache
from src.concierge.config import Config
from src.concierge.context import ConciergeContext
from src.concierge.matcher import PersonMatcher
from src.concierge.recordings import Recording
from src.concierge.residents import DEFAULT_RESIDENTS, ResidentDirectory
from src.concierge.tts_providers.base import TTSProvider


@pytest.fixture(autouse=True)
def mock_env_vars(tmp_path):
    """Mock environment variables for tests."""
    env_vars = {
        "PUBLIC_HOST": "",
        "PORT": "3000",
        "LOG_LEVEL": "DEBUG",
        "AUDIO_DIR": str(tmp_path / "audio"),
        "TWILIO_ACCOUNT_SID": "ACtest123456789",
        "TWILIO_AUTH_TOKEN": "test_auth_token",
        "ELEVENLABS_API_KEY": "test_elevenlabs_key",
        "ELEVENLABS_VOICE_ID": "test_voice_id",
        "ASSEMBLYAI_API_KEY": "test_assemblyai_key",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.concierge.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


class FakeTTS(TTSProvider):
    """In-memory TTS provider that counts calls."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def synthesize(self, text: str) -> bytes:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("TTS quota exceeded")
        return b"ID3" + text.encode("utf-8")


@pytest.fixture
def test_config(tmp_path):
    return Config(
        audio_dir=str(tmp_path / "audio"),
        twilio_account_sid="ACtest123456789",
        twilio_auth_token="test_auth_token",
        elevenlabs_api_key="test_elevenlabs_key",
        elevenlabs_voice_id="test_voice_id",
        assemblyai_api_key="test_assemblyai_key",
    )


@pytest.fixture
def fake_tts():
    return FakeTTS()


@pytest.fixture
def failing_tts():
    return FakeTTS(fail=True)


@pytest.fixture
def completed_recording():
    return Recording(
        sid="RE123",
        status="completed",
        media_url="https://api.twilio.com/2010-04-01/Accounts/AC1/Recordings/RE123",
        duration="4",
    )


def build_context(config, tts, *, recording=None, transcript="", transcribe_error=None, retrieve_error=None):
    """Build a context whose Twilio/AssemblyAI collaborators are mocks."""
    directory = ResidentDirectory(residents=DEFAULT_RESIDENTS)

    retriever = MagicMock()
    retriever.wait_for_recording = AsyncMock(return_value=recording, side_effect=retrieve_error)

    transcriber = MagicMock()
    transcriber.transcribe = AsyncMock(return_value=transcript, side_effect=transcribe_error)
    transcriber.close = AsyncMock()

    return ConciergeContext(
        config=config,
        directory=directory,
        tts=tts,
        audio_cache=AudioCache(config.audio_dir, tts),
        retriever=retriever,
        transcriber=transcriber,
        matcher=PersonMatcher(directory),
    )


@pytest.fixture
def context_factory(test_config, fake_tts):
    def factory(**kwargs):
        tts = kwargs.pop("tts", fake_tts)
        return build_context(test_config, tts, **kwargs)
    return factory


@pytest.fixture
def make_tts():
    """Factory for independent FakeTTS instances."""
    return FakeTTS
