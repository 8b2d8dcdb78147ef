"""Twilio Media Streams message schema.

Inbound messages are parsed into strict pydantic models at the boundary;
anything that does not fit raises :class:`MalformedMessageError`. Event names
that are not part of the schema parse to :class:`UnknownMessage` so callers
can ignore them deliberately.
"""

from __future__ import annotations

import base64
import binascii
import json
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bridge.errors import MalformedMessageError

TWILIO_SUBPROTOCOL = "audio.twilio.com"


class TelephonyEventType(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    STOP = "stop"
    UNKNOWN = "unknown"


class _TwilioModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StreamStart(_TwilioModel):
    stream_sid: str = Field(alias="streamSid", min_length=1)
    call_sid: str | None = Field(default=None, alias="callSid")
    account_sid: str | None = Field(default=None, alias="accountSid")
    media_format: dict[str, Any] | None = Field(default=None, alias="mediaFormat")


class MediaPayload(_TwilioModel):
    payload: str = Field(min_length=1)
    track: str | None = None
    chunk: str | None = None
    timestamp: str | None = None

    @field_validator("payload")
    @classmethod
    def payload_is_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("media payload is not valid base64") from exc
        return value


class StreamStop(_TwilioModel):
    stream_sid: str | None = Field(default=None, alias="streamSid")
    call_sid: str | None = Field(default=None, alias="callSid")


class ConnectedMessage(_TwilioModel):
    event: Literal["connected"]
    protocol: str | None = None

    @property
    def kind(self) -> TelephonyEventType:
        return TelephonyEventType.CONNECTED


class StartMessage(_TwilioModel):
    event: Literal["start"]
    start: StreamStart

    @property
    def kind(self) -> TelephonyEventType:
        return TelephonyEventType.START


class MediaMessage(_TwilioModel):
    event: Literal["media"]
    media: MediaPayload
    stream_sid: str | None = Field(default=None, alias="streamSid")

    @property
    def kind(self) -> TelephonyEventType:
        return TelephonyEventType.MEDIA

    @property
    def is_inbound(self) -> bool:
        return not self.media.track or self.media.track == "inbound"


class MarkMessage(_TwilioModel):
    event: Literal["mark"]
    mark: dict[str, Any] | None = None

    @property
    def kind(self) -> TelephonyEventType:
        return TelephonyEventType.MARK


class StopMessage(_TwilioModel):
    event: Literal["stop"]
    stop: StreamStop | None = None

    @property
    def kind(self) -> TelephonyEventType:
        return TelephonyEventType.STOP


class UnknownMessage(_TwilioModel):
    event: str

    @property
    def kind(self) -> TelephonyEventType:
        return TelephonyEventType.UNKNOWN


TelephonyMessage = Union[
    ConnectedMessage, StartMessage, MediaMessage, MarkMessage, StopMessage, UnknownMessage
]

_MODELS: dict[str, type[TelephonyMessage]] = {
    "connected": ConnectedMessage,
    "start": StartMessage,
    "media": MediaMessage,
    "mark": MarkMessage,
    "stop": StopMessage,
}


def parse_twilio_ws_message(text: str) -> TelephonyMessage:
    try:
        raw = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedMessageError(f"Unparsable telephony message: {exc}") from exc

    if not isinstance(raw, dict) or not isinstance(raw.get("event"), str):
        raise MalformedMessageError("Telephony message has no event field.")

    model = _MODELS.get(raw["event"], UnknownMessage)
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedMessageError(f"Invalid {raw['event']!r} message: {exc.error_count()} error(s)") from exc


def media_message(stream_sid: str, payload_b64: str) -> dict[str, Any]:
    """Outbound media message for the telephony leg."""

    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload_b64}}
