"""Audio frames and the transcoder between telephony and remote formats."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Final

import numpy as np

from telephony.g711 import ULAW_SILENCE, ulaw_decode, ulaw_encode
from telephony.resample import Resampler, pairwise_resample

TELEPHONY_SAMPLE_RATE: Final[int] = 8000
FRAME_SAMPLES_8K: Final[int] = 160


class AudioEncoding(str, Enum):
    ULAW = "g711_ulaw"
    PCM16 = "pcm16"


@dataclass(frozen=True, slots=True)
class AudioFrame:
    data: bytes
    sample_rate: int
    encoding: AudioEncoding

    @classmethod
    def from_base64(
        cls,
        payload: str,
        *,
        sample_rate: int = TELEPHONY_SAMPLE_RATE,
        encoding: AudioEncoding = AudioEncoding.ULAW,
    ) -> AudioFrame:
        return cls(base64.b64decode(payload), sample_rate, encoding)

    @classmethod
    def from_pcm16(cls, pcm: np.ndarray, sample_rate: int) -> AudioFrame:
        return cls(pcm.astype("<i2").tobytes(), sample_rate, AudioEncoding.PCM16)

    @property
    def num_samples(self) -> int:
        if self.encoding is AudioEncoding.PCM16:
            return len(self.data) // 2
        return len(self.data)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def pcm16(self) -> np.ndarray:
        """Return the samples as a PCM16 int16 array, decoding mu-law if needed."""

        if self.encoding is AudioEncoding.ULAW:
            return ulaw_decode(self.data)
        usable = len(self.data) - (len(self.data) % 2)
        return np.frombuffer(self.data[:usable], dtype="<i2").astype(np.int16)


def silence_frame(samples: int = FRAME_SAMPLES_8K) -> AudioFrame:
    """One frame of mu-law silence at the telephony rate."""

    return AudioFrame(bytes([ULAW_SILENCE]) * samples, TELEPHONY_SAMPLE_RATE, AudioEncoding.ULAW)


def transcode(
    frame: AudioFrame,
    encoding: AudioEncoding,
    sample_rate: int,
    *,
    resampler: Resampler = pairwise_resample,
) -> AudioFrame:
    """Convert ``frame`` to the requested encoding and sample rate."""

    if frame.encoding is encoding and frame.sample_rate == sample_rate:
        return frame

    pcm = resampler(frame.pcm16(), frame.sample_rate, sample_rate)
    if encoding is AudioEncoding.ULAW:
        return AudioFrame(ulaw_encode(pcm), sample_rate, AudioEncoding.ULAW)
    return AudioFrame.from_pcm16(pcm, sample_rate)
