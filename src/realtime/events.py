"""Realtime session events and client directives."""

from __future__ import annotations

import base64
import binascii
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from bridge.errors import MalformedMessageError
from telephony.frames import AudioFrame


class RealtimeEventType(str, Enum):
    SESSION_CREATED = "session_created"
    SESSION_UPDATED = "session_updated"
    AUDIO_DELTA = "audio_delta"
    RESPONSE_CREATED = "response_created"
    RESPONSE_DONE = "response_done"
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    BUFFER_COMMITTED = "buffer_committed"
    ERROR = "error"
    OTHER = "other"


# Both audio delta names are in use across API versions.
EVENT_TYPES: dict[str, RealtimeEventType] = {
    "session.created": RealtimeEventType.SESSION_CREATED,
    "session.updated": RealtimeEventType.SESSION_UPDATED,
    "response.audio.delta": RealtimeEventType.AUDIO_DELTA,
    "response.output_audio.delta": RealtimeEventType.AUDIO_DELTA,
    "response.created": RealtimeEventType.RESPONSE_CREATED,
    "response.done": RealtimeEventType.RESPONSE_DONE,
    "input_audio_buffer.speech_started": RealtimeEventType.SPEECH_STARTED,
    "input_audio_buffer.speech_stopped": RealtimeEventType.SPEECH_STOPPED,
    "input_audio_buffer.committed": RealtimeEventType.BUFFER_COMMITTED,
    "error": RealtimeEventType.ERROR,
}


class RealtimeEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    delta: str | None = None
    error: dict[str, Any] | None = None

    @property
    def kind(self) -> RealtimeEventType:
        return EVENT_TYPES.get(self.type, RealtimeEventType.OTHER)

    @model_validator(mode="after")
    def audio_delta_has_payload(self) -> RealtimeEvent:
        if self.kind is RealtimeEventType.AUDIO_DELTA:
            if not self.delta:
                raise ValueError("audio delta without payload")
            try:
                base64.b64decode(self.delta, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("audio delta is not valid base64") from exc
        return self

    def error_message(self) -> str:
        if not self.error:
            return "unknown error"
        return str(self.error.get("message") or self.error.get("code") or self.error)

    def error_event_id(self) -> str | None:
        """Client event id the error refers to, if the remote reported one."""

        if not self.error:
            return None
        event_id = self.error.get("event_id")
        return event_id if isinstance(event_id, str) else None


def parse_realtime_event(text: str | bytes) -> RealtimeEvent:
    try:
        raw = json.loads(text)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"Unparsable realtime event: {exc}") from exc

    if not isinstance(raw, dict):
        raise MalformedMessageError("Realtime event is not an object.")

    try:
        return RealtimeEvent.model_validate(raw)
    except ValidationError as exc:
        raise MalformedMessageError(f"Invalid realtime event: {exc.error_count()} error(s)") from exc


def session_update(
    *,
    audio_format: str,
    voice: str,
    instructions: str,
    silence_duration_ms: int,
    create_response: bool = True,
) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "input_audio_format": audio_format,
            "output_audio_format": audio_format,
            "voice": voice,
            "turn_detection": {
                "type": "server_vad",
                "silence_duration_ms": silence_duration_ms,
                "create_response": create_response,
            },
            "instructions": instructions,
        },
    }


def input_audio_append(frame: AudioFrame) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": frame.to_base64()}


def input_audio_commit() -> dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def response_create(*, modalities: list[str], instructions: str, event_id: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {
        "type": "response.create",
        "response": {"modalities": list(modalities), "instructions": instructions},
    }
    if event_id:
        message["event_id"] = event_id
    return message
