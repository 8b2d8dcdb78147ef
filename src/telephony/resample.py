"""Sample-rate conversion for PCM16 audio.

The default ``pairwise`` resampler is not bandlimited: it trades fidelity for
simplicity and zero added latency, which is good enough for a phone call.
Resamplers are looked up by name so a better one can be configured without
touching the rest of the pipeline.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

Resampler = Callable[[np.ndarray, int, int], np.ndarray]


def upsample_2x(pcm: np.ndarray) -> np.ndarray:
    """Double the sample rate by inserting the average of each neighbouring pair.

    ``dst[2i] = src[i]`` and ``dst[2i+1] = avg(src[i], src[i+1])``; the last
    sample is duplicated.
    """

    if pcm.size == 0:
        return pcm.astype(np.int16)

    src = pcm.astype(np.int32)
    nxt = np.append(src[1:], src[-1])

    out = np.empty(src.size * 2, dtype=np.int32)
    out[0::2] = src
    out[1::2] = (src + nxt) // 2
    return out.astype(np.int16)


def downsample_2x(pcm: np.ndarray) -> np.ndarray:
    """Halve the sample rate by dropping every second sample."""

    usable = pcm.size - (pcm.size % 2)
    return pcm[:usable:2].astype(np.int16)


def linear_resample(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate:
        return pcm
    if pcm.size == 0:
        return pcm.astype(np.int16)

    x_old = np.arange(pcm.size, dtype=np.float32)
    x_new = np.linspace(0, pcm.size - 1, int(pcm.size * dst_rate / src_rate), dtype=np.float32)

    y_old = pcm.astype(np.float32)
    y_new = np.interp(x_new, x_old, y_old)

    return np.clip(y_new, -32768, 32767).astype(np.int16)


def pairwise_resample(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate:
        return pcm
    if dst_rate == src_rate * 2:
        return upsample_2x(pcm)
    if src_rate == dst_rate * 2:
        return downsample_2x(pcm)
    # Only exact 2x ratios have a pairwise form.
    return linear_resample(pcm, src_rate, dst_rate)


RESAMPLERS: dict[str, Resampler] = {
    "pairwise": pairwise_resample,
    "linear": linear_resample,
}


def get_resampler(name: str) -> Resampler:
    try:
        return RESAMPLERS[name]
    except KeyError:
        raise ValueError(f"Unknown resampler: {name}") from None
