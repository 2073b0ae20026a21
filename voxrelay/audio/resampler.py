"""Audio sample rate conversion for VoxRelay.

Converts PCM16 little-endian mono audio between the two rates the relay
deals with: 8kHz (telephony) and 16kHz (voice transport). Both directions
are zero-order: upsampling duplicates every sample, downsampling keeps
every other sample starting at index 0. No filtering is applied.
"""

from __future__ import annotations

from voxrelay.audio.codecs import MalformedAudioError

SUPPORTED_RATES = (8000, 16000)


def upsample_2x(data: bytes) -> bytes:
    """8kHz -> 16kHz: each sample is emitted twice."""
    if len(data) % 2:
        raise MalformedAudioError(f"PCM16 buffer has odd byte count ({len(data)})")
    return b"".join(data[i:i + 2] * 2 for i in range(0, len(data), 2))


def downsample_2x(data: bytes) -> bytes:
    """16kHz -> 8kHz: keeps samples 0, 2, 4, ..."""
    if len(data) % 2:
        raise MalformedAudioError(f"PCM16 buffer has odd byte count ({len(data)})")
    return b"".join(data[i:i + 2] for i in range(0, len(data), 4))


def resample(data: bytes, from_rate: int, to_rate: int) -> bytes:
    """Resample PCM16 little-endian audio between 8kHz and 16kHz.

    Args:
        data: PCM16 little-endian audio bytes.
        from_rate: Source sample rate in Hz.
        to_rate: Target sample rate in Hz.

    Returns:
        Resampled PCM16 little-endian audio bytes.

    Raises:
        ValueError: For rate pairs other than 8000 <-> 16000.
        MalformedAudioError: If ``data`` has an odd byte count.
    """
    if from_rate == to_rate:
        return data
    if (from_rate, to_rate) == (8000, 16000):
        return upsample_2x(data)
    if (from_rate, to_rate) == (16000, 8000):
        return downsample_2x(data)
    raise ValueError(f"Unsupported resample: {from_rate}Hz -> {to_rate}Hz")


class Resampler:
    """Resampler bound to a fixed source/target rate pair.

    Usage:
        resampler = Resampler(from_rate=8000, to_rate=16000)
        upsampled = resampler.process(audio_8k)
    """

    def __init__(self, from_rate: int, to_rate: int) -> None:
        for rate in (from_rate, to_rate):
            if rate not in SUPPORTED_RATES:
                raise ValueError(f"Unsupported sample rate: {rate}")
        self.from_rate = from_rate
        self.to_rate = to_rate

    def process(self, data: bytes) -> bytes:
        """Resample a chunk of PCM16 audio."""
        return resample(data, self.from_rate, self.to_rate)

    @property
    def needs_resample(self) -> bool:
        """Whether this resampler actually changes the sample rate."""
        return self.from_rate != self.to_rate
