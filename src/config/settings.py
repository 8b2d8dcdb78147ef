"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=10000)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used in TwiML stream URLs (e.g. https://<ngrok>.ngrok-free.app).",
    )
    require_twilio_subprotocol: bool = Field(
        default=True,
        description="If true, reject media-stream handshakes that do not offer audio.twilio.com.",
    )

    # Remote realtime session
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview")
    realtime_voice: str = Field(default="alloy")
    realtime_instructions: str = Field(
        default=(
            "You are a friendly phone assistant. Keep answers short and "
            "conversational, and speak in the caller's language."
        ),
    )
    greeting_instructions: str = Field(
        default="Greet the caller briefly and ask how you can help.",
    )
    response_modalities: list[str] = Field(default_factory=lambda: ["audio", "text"])
    remote_audio_format: Literal["g711_ulaw", "pcm16"] = Field(
        default="g711_ulaw",
        description="Audio format exchanged with the remote session.",
    )
    remote_sample_rate: int = Field(
        default=16000,
        description="Sample rate of pcm16 audio on the remote leg. Ignored for g711_ulaw.",
    )
    resampler: Literal["pairwise", "linear"] = Field(default="pairwise")
    remote_connect_timeout_seconds: float = Field(default=10.0, gt=0)

    # Pacing
    commit_threshold_frames: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Inbound 20 ms frames appended before an input buffer commit.",
    )
    vad_silence_duration_ms: int = Field(default=500, ge=0)
    response_trigger: Literal["first_commit", "session_ready", "turn_end"] = Field(
        default="first_commit",
        description="When the bridge asks the remote session to speak.",
    )

    # Keepalive / teardown
    keepalive_interval_ms: int = Field(default=250, gt=0)
    close_grace_seconds: float = Field(default=2.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
