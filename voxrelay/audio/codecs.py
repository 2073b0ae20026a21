"""G.711 mu-law codec for VoxRelay.

Pure-Python mu-law encoding/decoding via lookup tables computed once at
import time. PCM16 is always little-endian signed 16-bit mono, the
intermediate format for every conversion the relay performs.
"""

from __future__ import annotations

import struct


class MalformedAudioError(ValueError):
    """Audio payload cannot be decoded (bad base64, empty, or misaligned)."""


# ---------------------------------------------------------------------------
# G.711 mu-law lookup tables
# ---------------------------------------------------------------------------

# Bias for mu-law encoding
_MULAW_BIAS = 0x84
_MULAW_CLIP = 32635


def _mulaw_encode_sample(sample: int) -> int:
    """Encode a single 16-bit PCM sample to mu-law (ITU-T G.711)."""
    if sample < 0:
        sign = 0x80
        sample = -sample
    else:
        sign = 0

    if sample > _MULAW_CLIP:
        sample = _MULAW_CLIP

    sample = sample + _MULAW_BIAS

    # Exponent is the position of the highest set bit in bits 14..7
    exponent = 7
    exp_mask = 0x4000
    for _ in range(7):
        if sample & exp_mask:
            break
        exponent -= 1
        exp_mask >>= 1

    mantissa = (sample >> (exponent + 3)) & 0x0F

    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def _mulaw_decode_byte(value: int) -> int:
    """Expand a single mu-law byte to a 16-bit PCM sample."""
    value = ~value & 0xFF
    sign = value & 0x80
    exponent = (value >> 4) & 0x07
    mantissa = value & 0x0F
    sample = (((mantissa << 3) + _MULAW_BIAS) << exponent) - _MULAW_BIAS
    return -sample if sign else sample


# mu-law byte -> PCM16 sample
_MULAW_DECODE_TABLE: list[int] = [_mulaw_decode_byte(_i) for _i in range(256)]

# mu-law byte -> packed PCM16 little-endian bytes
_MULAW_DECODE_BYTES: list[bytes] = [struct.pack("<h", s) for s in _MULAW_DECODE_TABLE]

# 16-bit unsigned index -> mu-law byte
_MULAW_ENCODE_TABLE = bytes(
    _mulaw_encode_sample(_i if _i < 32768 else _i - 65536) for _i in range(65536)
)


def _check_pcm16(data: bytes) -> int:
    if len(data) % 2:
        raise MalformedAudioError(
            f"PCM16 buffer has odd byte count ({len(data)})"
        )
    return len(data) // 2


def mulaw_decode(data: bytes) -> bytes:
    """Decode mu-law bytes to PCM16 little-endian bytes."""
    return b"".join(_MULAW_DECODE_BYTES[b] for b in data)


def mulaw_encode(data: bytes) -> bytes:
    """Encode PCM16 little-endian bytes to mu-law bytes.

    Raises:
        MalformedAudioError: If ``data`` is not a whole number of samples.
    """
    n_samples = _check_pcm16(data)
    samples = struct.unpack(f"<{n_samples}h", data)
    return bytes(_MULAW_ENCODE_TABLE[s & 0xFFFF] for s in samples)


def pcm16_samples(data: bytes) -> tuple[int, ...]:
    """Unpack PCM16 little-endian bytes to a tuple of ints."""
    n_samples = _check_pcm16(data)
    return struct.unpack(f"<{n_samples}h", data)


def pcm16_bytes(samples) -> bytes:
    """Pack a sequence of ints as PCM16 little-endian bytes."""
    samples = list(samples)
    return struct.pack(f"<{len(samples)}h", *samples)
