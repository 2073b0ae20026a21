"""Inbound audio accumulator.

Caller audio is collected here as PCM16 frames until enough has arrived to
be worth committing to the voice transport as one utterance chunk.
"""

from __future__ import annotations

from loguru import logger

from voxrelay.core.events import AudioFrame, Codec

DEFAULT_MIN_BUFFER_MS = 120


def threshold_samples(duration_ms: float, sample_rate: int) -> int:
    """Number of samples covering ``duration_ms`` at ``sample_rate``."""
    return int(round(duration_ms * sample_rate / 1000.0))


class AudioBuffer:
    """FIFO of PCM16 frames plus a running sample count.

    Only the owning session touches the buffer, so no locking is done;
    ``drain_all`` returns the concatenated audio and empties the buffer in
    one step.
    """

    def __init__(self) -> None:
        self._frames: list[AudioFrame] = []
        self._sample_count = 0

    def append(self, frame: AudioFrame) -> None:
        if frame.codec != Codec.PCM16:
            raise ValueError(f"AudioBuffer only holds PCM16 frames, got {frame.codec.value}")
        if not frame.data:
            return
        self._frames.append(frame)
        self._sample_count += frame.sample_count

    def ready_to_flush(self, threshold: int) -> bool:
        return self._sample_count >= threshold

    def drain_all(self) -> bytes:
        """Concatenate all frames in arrival order and reset to empty."""
        frames, self._frames = self._frames, []
        count, self._sample_count = self._sample_count, 0
        if frames:
            logger.trace(f"Drained {len(frames)} frames ({count} samples)")
        return b"".join(f.data for f in frames)

    @property
    def sample_count(self) -> int:
        return self._sample_count

    @property
    def is_empty(self) -> bool:
        return self._sample_count == 0

    def __len__(self) -> int:
        return len(self._frames)
