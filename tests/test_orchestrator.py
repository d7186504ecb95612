"""
Tests for the call orchestrator's TwiML decisions.
"""

import xml.etree.ElementTree as ET

import pytest

from src.concierge.orchestrator import (
    DELIVERY_RESPONSE,
    ERROR_RESPONSE,
    GREETING,
    MISUNDERSTOOD_RESPONSE,
    NOT_FOUND_RESPONSE,
    RECORDING_CALLBACK_PATH,
    CallOrchestrator,
    CallOutcome,
)
from src.concierge.recordings import (
    RecordingError,
    RecordingFailedError,
    RecordingTimeoutError,
    RecordingUnavailableError,
)
from src.concierge.stt import TranscriptionTimeoutError

BASE_URL = "http://testserver/"


def _verbs(twiml):
    root = ET.fromstring(twiml)
    assert root.tag == "Response"
    return [child.tag for child in root]


class TestIncoming:
    @pytest.mark.asyncio
    async def test_play_then_record(self, context_factory, fake_tts):
        orchestrator = CallOrchestrator(context_factory())

        result = await orchestrator.handle_incoming(BASE_URL)

        assert result.outcome is CallOutcome.GREETED
        assert result.spoke_with_fallback is False
        assert _verbs(result.twiml) == ["Play", "Record"]

        root = ET.fromstring(result.twiml)
        play = root.find("Play")
        assert play.text.startswith("http://testserver/audio/")
        assert fake_tts.calls == [GREETING]

        record = root.find("Record")
        assert record.get("action") == RECORDING_CALLBACK_PATH
        assert record.get("method") == "POST"
        assert record.get("playBeep") == "true"
        assert record.get("timeout") == "3"
        assert record.get("maxLength") == "5"

    @pytest.mark.asyncio
    async def test_say_fallback_still_records(self, context_factory, failing_tts):
        orchestrator = CallOrchestrator(context_factory(tts=failing_tts))

        result = await orchestrator.handle_incoming(BASE_URL)

        assert result.spoke_with_fallback is True
        assert _verbs(result.twiml) == ["Say", "Record"]
        say = ET.fromstring(result.twiml).find("Say")
        assert say.text == GREETING
        assert say.get("voice") == "alice"

    @pytest.mark.asyncio
    async def test_greeting_rendered_once(self, context_factory, fake_tts):
        orchestrator = CallOrchestrator(context_factory())

        first = await orchestrator.handle_incoming(BASE_URL)
        second = await orchestrator.handle_incoming(BASE_URL)

        assert first.twiml == second.twiml
        assert fake_tts.calls == [GREETING]

    @pytest.mark.asyncio
    async def test_public_host_overrides_request_host(self, context_factory, test_config):
        from dataclasses import replace

        context = context_factory()
        context.config = replace(test_config, public_host="door.example.com")
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_incoming(BASE_URL)

        play = ET.fromstring(result.twiml).find("Play")
        assert play.text.startswith("https://door.example.com/audio/")


class TestRecording:
    @pytest.mark.asyncio
    async def test_resident_is_connected(self, context_factory, completed_recording, fake_tts):
        context = context_factory(recording=completed_recording, transcript="Lindsey, please.")
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert result.outcome is CallOutcome.CONNECTED
        assert _verbs(result.twiml) == ["Play", "Dial", "Hangup"]
        assert ET.fromstring(result.twiml).find("Dial").text == "+12049991981"
        assert fake_tts.calls == ["Great, connecting you to Lindsay now."]

        context.retriever.wait_for_recording.assert_awaited_once_with("RE123")
        context.transcriber.transcribe.assert_awaited_once_with(completed_recording.media_url + ".mp3")

    @pytest.mark.asyncio
    async def test_resident_connected_with_say_fallback(self, context_factory, completed_recording, failing_tts):
        context = context_factory(tts=failing_tts, recording=completed_recording, transcript="matt")
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert _verbs(result.twiml) == ["Say", "Dial", "Hangup"]
        assert ET.fromstring(result.twiml).find("Dial").text == "+13107959382"

    @pytest.mark.asyncio
    async def test_delivery_is_not_connected(self, context_factory, completed_recording, fake_tts):
        context = context_factory(recording=completed_recording, transcript="UPS delivery for Matt")
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert result.outcome is CallOutcome.DELIVERY
        assert _verbs(result.twiml) == ["Play", "Hangup"]
        assert fake_tts.calls == [DELIVERY_RESPONSE]

    @pytest.mark.asyncio
    async def test_unknown_person(self, context_factory, completed_recording, fake_tts):
        context = context_factory(recording=completed_recording, transcript="xyzzyplugh please")
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert result.outcome is CallOutcome.NOT_FOUND
        assert _verbs(result.twiml) == ["Play", "Hangup"]
        assert fake_tts.calls == [NOT_FOUND_RESPONSE]

    @pytest.mark.asyncio
    async def test_missing_recording_sid(self, context_factory, failing_tts):
        context = context_factory(tts=failing_tts)
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"CallSid": "CA1"}, BASE_URL)

        assert result.outcome is CallOutcome.ERROR
        assert _verbs(result.twiml) == ["Say", "Hangup"]
        assert ET.fromstring(result.twiml).find("Say").text == ERROR_RESPONSE
        context.retriever.wait_for_recording.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [RecordingFailedError("failed"), RecordingTimeoutError("slow")])
    async def test_recording_errors_apologize(self, context_factory, fake_tts, error):
        context = context_factory(retrieve_error=error)
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert result.outcome is CallOutcome.ERROR
        assert _verbs(result.twiml) == ["Play", "Hangup"]
        assert fake_tts.calls == [ERROR_RESPONSE]
        context.transcriber.transcribe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_media_url(self, context_factory, completed_recording, fake_tts):
        from dataclasses import replace

        context = context_factory(recording=replace(completed_recording, media_url=None))
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert result.outcome is CallOutcome.ERROR
        assert fake_tts.calls == [ERROR_RESPONSE]

    @pytest.mark.asyncio
    async def test_missing_media_url_is_recording_error(self, context_factory, completed_recording):
        from dataclasses import replace

        context = context_factory(recording=replace(completed_recording, media_url=None))
        orchestrator = CallOrchestrator(context)

        with pytest.raises(RecordingUnavailableError) as exc_info:
            await orchestrator._recording_source_url({"RecordingSid": "RE123"})

        assert isinstance(exc_info.value, RecordingError)

    @pytest.mark.asyncio
    async def test_transcription_error_apologizes(self, context_factory, completed_recording, fake_tts):
        context = context_factory(
            recording=completed_recording,
            transcribe_error=TranscriptionTimeoutError("timed out"),
        )
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert result.outcome is CallOutcome.MISUNDERSTOOD
        assert _verbs(result.twiml) == ["Play", "Hangup"]
        assert fake_tts.calls == [MISUNDERSTOOD_RESPONSE]

    @pytest.mark.asyncio
    async def test_everything_failing_still_hangs_up(self, context_factory, failing_tts):
        context = context_factory(tts=failing_tts, retrieve_error=ConnectionError("down"))
        orchestrator = CallOrchestrator(context)

        result = await orchestrator.handle_recording({"RecordingSid": "RE123"}, BASE_URL)

        assert _verbs(result.twiml) == ["Say", "Hangup"]
