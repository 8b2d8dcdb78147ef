from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from bridge.state import CallSession, RemoteSession, ResponseTrigger
from realtime.events import input_audio_append, input_audio_commit, response_create
from telephony.frames import AudioFrame, transcode
from telephony.resample import Resampler, pairwise_resample

LOGGER = logging.getLogger(__name__)

SendFn = Callable[[dict[str, Any]], Awaitable[bool]]


class CommitScheduler:
    """Paces inbound telephony audio into the remote session.

    Frames are appended as they arrive; every ``threshold`` frames the input
    buffer is committed. The scheduler also owns the response latch: at most
    one ``response.create`` is outstanding at a time, and the configured
    :class:`ResponseTrigger` decides when the first one is sent.
    """

    def __init__(
        self,
        call: CallSession,
        remote: RemoteSession,
        send: SendFn,
        *,
        threshold: int = 10,
        trigger: ResponseTrigger = ResponseTrigger.FIRST_COMMIT,
        modalities: tuple[str, ...] = ("audio", "text"),
        greeting_instructions: str = "",
        resampler: Resampler = pairwise_resample,
    ) -> None:
        if threshold < 1:
            raise ValueError("commit threshold must be at least one frame")
        self._call = call
        self._remote = remote
        self._send = send
        self._threshold = threshold
        self._trigger = trigger
        self._modalities = modalities
        self._greeting_instructions = greeting_instructions
        self._resampler = resampler
        self._response_requests = 0
        self._pending_event_id: str | None = None

    @property
    def threshold(self) -> int:
        return self._threshold

    async def append(self, frame: AudioFrame) -> bool:
        """Forward one inbound frame. Returns False if the frame was dropped."""

        if not self._remote.ready:
            # No backpressure queue: audio before readiness is discarded.
            self._call.frames_dropped += 1
            LOGGER.debug("[%s] Remote session not ready; dropping inbound frame", self._call.label)
            return False
        if frame.num_samples == 0:
            LOGGER.debug("[%s] Skipping empty inbound frame", self._call.label)
            return False

        converted = transcode(
            frame,
            self._remote.encoding,
            self._remote.sample_rate,
            resampler=self._resampler,
        )
        if not await self._send(input_audio_append(converted)):
            self._call.frames_dropped += 1
            return False

        self._call.frames_since_commit += 1
        self._call.frames_in += 1
        return True

    async def maybe_commit(self) -> bool:
        pending = self._call.frames_since_commit
        if pending == 0 or pending < self._threshold:
            return False

        if not await self._send(input_audio_commit()):
            return False

        self._call.frames_since_commit = 0
        self._call.commits += 1
        LOGGER.debug("[%s] Committed %d frames", self._call.label, pending)

        if self._trigger is ResponseTrigger.FIRST_COMMIT and not self._call.greeted:
            await self.request_response()
        return True

    async def request_response(self) -> bool:
        if self._call.response_pending:
            return False

        self._response_requests += 1
        event_id = f"bridge_response_{self._response_requests}"
        sent = await self._send(
            response_create(
                modalities=list(self._modalities),
                instructions=self._greeting_instructions,
                event_id=event_id,
            )
        )
        if sent:
            self._call.greeted = True
            self._call.response_pending = True
            self._pending_event_id = event_id
            LOGGER.info("[%s] Requested spoken response", self._call.label)
        return sent

    async def on_remote_ready(self) -> None:
        """Greet under ``session_ready`` once the remote is ready and the stream identity is known.

        Called on both events; whichever arrives second sends the greeting.
        """

        if self._trigger is not ResponseTrigger.SESSION_READY or self._call.greeted:
            return
        if self._remote.ready and self._call.stream_sid is not None:
            await self.request_response()

    async def on_turn_end(self) -> None:
        if self._trigger is ResponseTrigger.TURN_END:
            await self.request_response()

    def on_response_done(self) -> None:
        self._call.response_pending = False
        self._pending_event_id = None

    def on_remote_error(self, event_id: str | None) -> bool:
        """Release the latch if the remote rejected the outstanding response request."""

        if not self._call.response_pending or event_id is None or event_id != self._pending_event_id:
            return False
        self._call.response_pending = False
        self._pending_event_id = None
        LOGGER.warning("[%s] Response request rejected; latch released", self._call.label)
        return True
