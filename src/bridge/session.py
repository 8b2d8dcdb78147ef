"""One bridged call: a telephony leg, a realtime session and a keepalive.

A :class:`BridgePair` is an actor. Two reader tasks push everything that
arrives on either leg into one queue, and :meth:`BridgePair.run` is the only
code that reads the queue and mutates the call state. The keepalive task runs
alongside on the same event loop.

State machine::

    IDLE -> AWAITING_START -> STREAMING -> DRAINING -> CLOSED

Closing either leg drains the pair, and draining closes both legs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from bridge.commit import CommitScheduler
from bridge.errors import BridgeError, LegClosedError, MalformedMessageError
from bridge.keepalive import SilenceKeepalive
from bridge.legs import RemoteLeg, TelephonyLeg
from bridge.state import BridgeConfig, BridgeState, CallSession, RemoteSession, ResponseTrigger
from integrations.twilio_streaming import (
    MediaMessage,
    StartMessage,
    StopMessage,
    TelephonyEventType,
    media_message,
    parse_twilio_ws_message,
)
from realtime.events import RealtimeEvent, RealtimeEventType, parse_realtime_event, session_update
from telephony.frames import TELEPHONY_SAMPLE_RATE, AudioEncoding, AudioFrame, transcode
from telephony.resample import get_resampler

LOGGER = logging.getLogger(__name__)

_ACTIVE_STATES = (BridgeState.AWAITING_START, BridgeState.STREAMING)


class LegSide(str, Enum):
    TELEPHONY = "telephony"
    REMOTE = "remote"


@dataclass(frozen=True, slots=True)
class LegMessage:
    side: LegSide
    text: str


@dataclass(frozen=True, slots=True)
class LegClosed:
    side: LegSide
    reason: str


LegEvent = Union[LegMessage, LegClosed]


class BridgePair:
    def __init__(self, telephony: TelephonyLeg, remote: RemoteLeg, config: BridgeConfig) -> None:
        self._telephony = telephony
        self._remote = remote
        self._config = config
        self._resampler = get_resampler(config.resampler)
        self._events: asyncio.Queue[LegEvent] = asyncio.Queue()
        self._readers: list[asyncio.Task] = []

        self.call = CallSession()
        self.remote_session = RemoteSession.from_config(config)
        self.scheduler = CommitScheduler(
            self.call,
            self.remote_session,
            self._send_remote,
            threshold=config.commit_threshold,
            trigger=config.response_trigger,
            modalities=config.response_modalities,
            greeting_instructions=config.greeting_instructions,
            resampler=self._resampler,
        )
        self.keepalive = SilenceKeepalive(self.call, self._send_telephony, interval=config.keepalive_interval)

        self._telephony_handlers: dict[TelephonyEventType, Callable[[Any], Awaitable[None]]] = {
            TelephonyEventType.CONNECTED: self._ignore,
            TelephonyEventType.START: self._on_start,
            TelephonyEventType.MEDIA: self._on_media,
            TelephonyEventType.MARK: self._ignore,
            TelephonyEventType.STOP: self._on_stop,
            TelephonyEventType.UNKNOWN: self._ignore,
        }
        self._remote_handlers: dict[RealtimeEventType, Callable[[RealtimeEvent], Awaitable[None]]] = {
            RealtimeEventType.SESSION_CREATED: self._on_session_created,
            RealtimeEventType.SESSION_UPDATED: self._on_session_updated,
            RealtimeEventType.AUDIO_DELTA: self._on_audio_delta,
            RealtimeEventType.RESPONSE_CREATED: self._ignore,
            RealtimeEventType.RESPONSE_DONE: self._on_response_done,
            RealtimeEventType.SPEECH_STARTED: self._ignore,
            RealtimeEventType.SPEECH_STOPPED: self._on_speech_stopped,
            RealtimeEventType.BUFFER_COMMITTED: self._ignore,
            RealtimeEventType.ERROR: self._on_remote_error,
            RealtimeEventType.OTHER: self._ignore,
        }

    @property
    def state(self) -> BridgeState:
        return self.call.state

    async def run(self) -> None:
        """Service the call until either leg ends, then tear both legs down."""

        if self.call.state is not BridgeState.IDLE:
            raise RuntimeError("BridgePair.run() may only be called once")

        self.call.state = BridgeState.AWAITING_START
        self._start_reader(LegSide.TELEPHONY, self._telephony)
        try:
            try:
                await self._remote.connect()
            except BridgeError as exc:
                LOGGER.error("Realtime session unavailable, ending call: %s", exc.detail)
                return

            await self._send_remote(
                session_update(
                    audio_format=self.remote_session.encoding.value,
                    voice=self.remote_session.voice,
                    instructions=self.remote_session.instructions,
                    silence_duration_ms=self._config.vad_silence_duration_ms,
                    create_response=self._config.response_trigger is not ResponseTrigger.TURN_END,
                )
            )
            self._start_reader(LegSide.REMOTE, self._remote)

            while self.call.state in _ACTIVE_STATES:
                await self._dispatch(await self._events.get())
        finally:
            await self._shutdown()

    # -- plumbing ---------------------------------------------------------

    def _start_reader(self, side: LegSide, leg: TelephonyLeg) -> None:
        self._readers.append(asyncio.create_task(self._pump(side, leg), name=f"reader-{side.value}"))

    async def _pump(self, side: LegSide, leg: TelephonyLeg) -> None:
        try:
            while True:
                text = await leg.receive_text()
                await self._events.put(LegMessage(side, text))
        except LegClosedError as exc:
            await self._events.put(LegClosed(side, exc.detail))
        except Exception as exc:
            LOGGER.exception("%s leg reader failed", side.value)
            await self._events.put(LegClosed(side, str(exc)))

    async def _dispatch(self, event: LegEvent) -> None:
        if isinstance(event, LegClosed):
            LOGGER.info("[%s] %s leg closed: %s", self.call.label, event.side.value, event.reason)
            self.call.state = BridgeState.DRAINING
            return

        if event.side is LegSide.TELEPHONY:
            try:
                message = parse_twilio_ws_message(event.text)
            except MalformedMessageError as exc:
                LOGGER.warning("[%s] Dropping telephony message: %s", self.call.label, exc.detail)
                return
            await self._telephony_handlers[message.kind](message)
        else:
            try:
                remote_event = parse_realtime_event(event.text)
            except MalformedMessageError as exc:
                LOGGER.warning("[%s] Dropping realtime event: %s", self.call.label, exc.detail)
                return
            await self._remote_handlers[remote_event.kind](remote_event)

    async def _send_telephony(self, message: dict[str, Any]) -> bool:
        try:
            await self._telephony.send_json(message)
        except LegClosedError as exc:
            LOGGER.warning("[%s] Telephony send failed: %s", self.call.label, exc.detail)
            return False
        except Exception:
            LOGGER.exception("[%s] Telephony send failed", self.call.label)
            return False
        return True

    async def _send_remote(self, message: dict[str, Any]) -> bool:
        try:
            await self._remote.send_json(message)
        except LegClosedError as exc:
            LOGGER.warning("[%s] Realtime send failed: %s", self.call.label, exc.detail)
            return False
        except Exception:
            LOGGER.exception("[%s] Realtime send failed", self.call.label)
            return False
        return True

    async def _shutdown(self) -> None:
        if self.call.state is BridgeState.CLOSED:
            return
        self.call.state = BridgeState.DRAINING

        await self.keepalive.stop()
        for task in self._readers:
            task.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers.clear()

        await asyncio.gather(
            self._close_leg(LegSide.TELEPHONY, self._telephony),
            self._close_leg(LegSide.REMOTE, self._remote),
        )
        self.call.state = BridgeState.CLOSED

        call = self.call
        LOGGER.info(
            "[%s] Call closed frames_in=%d frames_out=%d commits=%d dropped=%d silence=%d",
            call.label,
            call.frames_in,
            call.frames_out,
            call.commits,
            call.frames_dropped,
            call.silence_frames,
        )

    async def _close_leg(self, side: LegSide, leg: TelephonyLeg) -> None:
        try:
            await asyncio.wait_for(leg.close(), timeout=self._config.close_grace_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning("[%s] Timed out closing %s leg", self.call.label, side.value)
        except Exception:
            LOGGER.exception("[%s] Error closing %s leg", self.call.label, side.value)

    # -- telephony events -------------------------------------------------

    async def _ignore(self, message: Any) -> None:
        return None

    async def _on_start(self, message: StartMessage) -> None:
        if self.call.stream_sid is not None:
            LOGGER.warning("[%s] Ignoring repeated start for %s", self.call.label, message.start.stream_sid)
            return

        self.call.stream_sid = message.start.stream_sid
        self.call.call_sid = message.start.call_sid
        self.call.state = BridgeState.STREAMING
        LOGGER.info("Media stream started streamSid=%s callSid=%s", self.call.stream_sid, self.call.call_sid)
        self.keepalive.start()
        await self.scheduler.on_remote_ready()

    async def _on_media(self, message: MediaMessage) -> None:
        if not message.is_inbound:
            return
        if self.call.state is not BridgeState.STREAMING:
            self.call.frames_dropped += 1
            LOGGER.debug("Dropping media received before stream start")
            return

        frame = AudioFrame.from_base64(message.media.payload)
        if await self.scheduler.append(frame):
            await self.scheduler.maybe_commit()

    async def _on_stop(self, message: StopMessage) -> None:
        LOGGER.info("[%s] Media stream stopped", self.call.label)
        self.call.state = BridgeState.DRAINING

    # -- realtime events --------------------------------------------------

    async def _on_session_created(self, event: RealtimeEvent) -> None:
        LOGGER.debug("[%s] Realtime session created", self.call.label)

    async def _on_session_updated(self, event: RealtimeEvent) -> None:
        if self.remote_session.ready:
            return
        self.remote_session.ready = True
        LOGGER.info("[%s] Realtime session ready", self.call.label)
        await self.scheduler.on_remote_ready()

    async def _on_audio_delta(self, event: RealtimeEvent) -> None:
        stream_sid = self.call.stream_sid
        if stream_sid is None:
            self.call.frames_dropped += 1
            LOGGER.warning("Dropping realtime audio: stream identity not known yet")
            return

        frame = AudioFrame.from_base64(
            event.delta or "",
            sample_rate=self.remote_session.sample_rate,
            encoding=self.remote_session.encoding,
        )
        outbound = transcode(frame, AudioEncoding.ULAW, TELEPHONY_SAMPLE_RATE, resampler=self._resampler)

        if self.call.mark_real_audio():
            LOGGER.info("[%s] First realtime audio; keepalive off", stream_sid)
            await self.keepalive.stop()

        if await self._send_telephony(media_message(stream_sid, outbound.to_base64())):
            self.call.frames_out += 1

    async def _on_response_done(self, event: RealtimeEvent) -> None:
        self.scheduler.on_response_done()

    async def _on_speech_stopped(self, event: RealtimeEvent) -> None:
        await self.scheduler.on_turn_end()

    async def _on_remote_error(self, event: RealtimeEvent) -> None:
        LOGGER.warning("[%s] Realtime session error: %s", self.call.label, event.error_message())
        self.scheduler.on_remote_error(event.error_event_id())
