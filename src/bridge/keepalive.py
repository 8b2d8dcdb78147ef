from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from bridge.state import CallSession
from integrations.twilio_streaming import media_message
from telephony.frames import silence_frame

LOGGER = logging.getLogger(__name__)


class SilenceKeepalive:
    """Feeds mu-law silence to the telephony leg until real audio flows.

    Twilio may drop a stream that carries no audio for too long while the
    remote session is still preparing its first response. Once the call has
    seen real output audio the keepalive is latched off for good.
    """

    def __init__(
        self,
        call: CallSession,
        send: Callable[[dict[str, Any]], Awaitable[bool]],
        *,
        interval: float = 0.25,
    ) -> None:
        self._call = call
        self._send = send
        self._interval = interval
        self._payload = silence_frame().to_base64()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self._call.real_audio_seen:
            return
        self._task = asyncio.create_task(self._run(), name=f"keepalive-{self._call.label}")

    async def _run(self) -> None:
        while not self._call.real_audio_seen:
            await asyncio.sleep(self._interval)
            await self.tick()

    async def tick(self) -> bool:
        # No await between the latch check and the send.
        if self._call.real_audio_seen or self._call.stream_sid is None:
            return False
        sent = await self._send(media_message(self._call.stream_sid, self._payload))
        if sent:
            self._call.silence_frames += 1
        return sent

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
