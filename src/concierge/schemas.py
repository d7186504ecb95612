"""Pydantic schemas for Twilio voice webhook payloads."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class VoiceWebhook(BaseModel):
    """Fields we use from Twilio's call-initiation webhook."""

    model_config = ConfigDict(extra="allow")

    CallSid: Optional[str] = None
    From: Optional[str] = None
    To: Optional[str] = None


class RecordingWebhook(VoiceWebhook):
    """Twilio <Record> action callback."""

    RecordingSid: Optional[str] = None
    RecordingUrl: Optional[str] = None
    RecordingStatus: Optional[str] = None
    RecordingDuration: Optional[str] = None
