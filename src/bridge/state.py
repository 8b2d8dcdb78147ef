"""Per-call state owned by a single bridge pair."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from config.settings import Settings
from telephony.frames import TELEPHONY_SAMPLE_RATE, AudioEncoding


class BridgeState(str, Enum):
    IDLE = "idle"
    AWAITING_START = "awaiting_start"
    STREAMING = "streaming"
    DRAINING = "draining"
    CLOSED = "closed"


class ResponseTrigger(str, Enum):
    FIRST_COMMIT = "first_commit"
    SESSION_READY = "session_ready"
    TURN_END = "turn_end"


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Immutable per-pair configuration, derived once from :class:`Settings`."""

    remote_encoding: AudioEncoding = AudioEncoding.ULAW
    remote_sample_rate: int = TELEPHONY_SAMPLE_RATE
    resampler: str = "pairwise"
    voice: str = "alloy"
    instructions: str = ""
    greeting_instructions: str = ""
    response_modalities: tuple[str, ...] = ("audio", "text")
    vad_silence_duration_ms: int = 500
    commit_threshold: int = 10
    response_trigger: ResponseTrigger = ResponseTrigger.FIRST_COMMIT
    keepalive_interval: float = 0.25
    close_grace_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> BridgeConfig:
        encoding = AudioEncoding(settings.remote_audio_format)
        rate = settings.remote_sample_rate if encoding is AudioEncoding.PCM16 else TELEPHONY_SAMPLE_RATE
        return cls(
            remote_encoding=encoding,
            remote_sample_rate=rate,
            resampler=settings.resampler,
            voice=settings.realtime_voice,
            instructions=settings.realtime_instructions,
            greeting_instructions=settings.greeting_instructions,
            response_modalities=tuple(settings.response_modalities),
            vad_silence_duration_ms=settings.vad_silence_duration_ms,
            commit_threshold=settings.commit_threshold_frames,
            response_trigger=ResponseTrigger(settings.response_trigger),
            keepalive_interval=settings.keepalive_interval_ms / 1000,
            close_grace_seconds=settings.close_grace_seconds,
        )


@dataclass(slots=True)
class CallSession:
    """The telephony side of one call."""

    stream_sid: str | None = None
    call_sid: str | None = None
    state: BridgeState = BridgeState.IDLE
    frames_since_commit: int = 0
    greeted: bool = False
    response_pending: bool = False
    _real_audio_seen: bool = field(default=False, repr=False)

    # Counters for the teardown summary.
    frames_in: int = 0
    frames_out: int = 0
    frames_dropped: int = 0
    commits: int = 0
    silence_frames: int = 0

    @property
    def real_audio_seen(self) -> bool:
        return self._real_audio_seen

    def mark_real_audio(self) -> bool:
        """Latch the real-audio flag. Returns True only on the first call."""

        first = not self._real_audio_seen
        self._real_audio_seen = True
        return first

    @property
    def label(self) -> str:
        return self.stream_sid or "pending"


@dataclass(slots=True)
class RemoteSession:
    """The realtime-session side of one call."""

    encoding: AudioEncoding
    sample_rate: int
    voice: str
    instructions: str
    ready: bool = False

    @classmethod
    def from_config(cls, config: BridgeConfig) -> RemoteSession:
        return cls(
            encoding=config.remote_encoding,
            sample_rate=config.remote_sample_rate,
            voice=config.voice,
            instructions=config.instructions,
        )
