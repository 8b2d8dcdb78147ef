from __future__ import annotations

import asyncio
import base64
import json
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from bridge.errors import LegClosedError, RemoteConnectionError  # noqa: E402


class FakeLeg:
    """In-memory leg. Push inbound messages; inspect what the bridge sent."""

    def __init__(self, *, connect_error: Exception | None = None) -> None:
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False
        self.connected = False
        self._connect_error = connect_error

    async def connect(self) -> None:
        if self._connect_error is not None:
            raise self._connect_error
        self.connected = True

    async def receive_text(self) -> str:
        item = await self.inbox.get()
        if item is None:
            raise LegClosedError("closed by peer")
        return item

    async def send_json(self, message: dict) -> None:
        if self.closed:
            raise LegClosedError("leg already closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True

    def push(self, message: dict | str) -> None:
        self.inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def hang_up(self) -> None:
        self.inbox.put_nowait(None)

    def sent_of_type(self, type_name: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == type_name]

    def media(self) -> list[dict]:
        return [m for m in self.sent if m.get("event") == "media"]


def twilio_start(stream_sid: str = "SID1") -> dict:
    return {
        "event": "start",
        "sequenceNumber": "1",
        "start": {
            "streamSid": stream_sid,
            "callSid": "CA123",
            "accountSid": "AC123",
            "tracks": ["inbound"],
            "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
        },
        "streamSid": stream_sid,
    }


def twilio_media(payload: bytes = b"\xff" * 160, *, track: str = "inbound") -> dict:
    return {
        "event": "media",
        "media": {"track": track, "chunk": "1", "timestamp": "20", "payload": base64.b64encode(payload).decode()},
    }


def twilio_stop(stream_sid: str = "SID1") -> dict:
    return {"event": "stop", "stop": {"streamSid": stream_sid, "callSid": "CA123"}}


def audio_delta(payload: bytes = b"\x7f" * 160, *, type_name: str = "response.audio.delta") -> dict:
    return {"type": type_name, "response_id": "resp_1", "delta": base64.b64encode(payload).decode()}


async def eventually(predicate, *, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture()
def messages():
    """Builders for Twilio and realtime test messages."""

    class _Messages:
        start = staticmethod(twilio_start)
        media = staticmethod(twilio_media)
        stop = staticmethod(twilio_stop)
        delta = staticmethod(audio_delta)

    return _Messages


@pytest.fixture()
def fake_leg():
    return FakeLeg


@pytest.fixture()
def wait_until():
    return eventually


@pytest.fixture()
def connect_failure():
    return RemoteConnectionError("boom")


@pytest.fixture(scope="session")
def app():
    os.environ.pop("OPENAI_API_KEY", None)
    os.environ["REQUIRE_TWILIO_SUBPROTOCOL"] = "false"

    import importlib

    from config.settings import get_settings

    # Ensure clean import with the test settings.
    get_settings.cache_clear()
    sys.modules.pop("main", None)

    main = importlib.import_module("main")
    return main.app
