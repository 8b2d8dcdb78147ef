from __future__ import annotations

from typing import Final

import numpy as np

# G.711 mu-law companding constants for 16-bit linear input.
BIAS: Final[int] = 0x84
CLIP: Final[int] = 32635

# mu-law code for zero amplitude; used as the silence byte.
ULAW_SILENCE: Final[int] = 0xFF


def decode_sample(code: int) -> int:
    """Decode a single mu-law byte to a PCM16 sample.

    Negative codes are returned in one's-complement form (``-magnitude - 1``)
    so the positive and negative zero codes decode to distinct samples and
    ``encode_sample(decode_sample(b)) == b`` holds for every byte.
    """

    mu = ~code & 0xFF
    sign = mu & 0x80
    exponent = (mu >> 4) & 0x07
    mantissa = mu & 0x0F

    magnitude = (((mantissa << 3) + BIAS) << exponent) - BIAS
    return -magnitude - 1 if sign else magnitude


def encode_sample(sample: int) -> int:
    """Encode a single PCM16 sample to a mu-law byte. Out-of-range input is clamped."""

    sign = 0x80 if sample < 0 else 0x00
    biased = min(abs(int(sample)), CLIP) + BIAS

    exponent = 0
    while exponent < 7 and biased >= (0x100 << exponent):
        exponent += 1

    mantissa = (biased >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


_DECODE_TABLE: Final[np.ndarray] = np.array([decode_sample(code) for code in range(256)], dtype=np.int16)


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to PCM16 int16 array."""

    data = np.frombuffer(ulaw_bytes, dtype=np.uint8)
    return _DECODE_TABLE[data]


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode PCM16 int16 array to G.711 mu-law bytes.

    This is a vectorized mu-law encoder suitable for realtime packetization.
    It is bit-exact with :func:`encode_sample`.
    """

    if pcm16.size == 0:
        return b""

    x = np.asarray(pcm16).astype(np.int32)
    sign = (x < 0).astype(np.int32)
    x = np.minimum(np.abs(x), CLIP) + BIAS

    # Smallest exponent whose segment holds the biased value.
    exponent = np.zeros_like(x)
    for exp in range(1, 8):
        exponent = np.where(x >= (0x100 << (exp - 1)), exp, exponent)

    mantissa = (x >> (exponent + 3)) & 0x0F

    ulaw = np.bitwise_not((sign << 7) | (exponent << 4) | mantissa).astype(np.uint8)
    return ulaw.tobytes()
