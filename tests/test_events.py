"""Tests for the VoxRelay event model."""

import pytest
from pydantic import ValidationError

from voxrelay.core.events import (
    EVENT_TYPE_MAP,
    AudioDelta,
    AudioFrame,
    CallStarted,
    Codec,
    ErrorEvent,
    EventType,
)


class TestAudioFrame:

    def test_defaults(self):
        frame = AudioFrame()
        assert frame.event_type == EventType.AUDIO_FRAME
        assert frame.codec == Codec.PCM16
        assert frame.sample_count == 0

    def test_sample_count_by_codec(self):
        assert AudioFrame(codec=Codec.MULAW, data=b"\xff" * 160).sample_count == 160
        assert AudioFrame(codec=Codec.PCM16, data=b"\x00" * 320).sample_count == 160

    def test_frames_are_immutable(self):
        frame = AudioFrame(data=b"\x00\x00")
        with pytest.raises(ValidationError):
            frame.data = b""


class TestEvents:

    def test_timestamp_is_set(self):
        assert CallStarted(stream_sid="MZ1").timestamp > 0

    def test_error_defaults(self):
        error = ErrorEvent(code="x")
        assert error.recoverable
        assert error.event_type == EventType.ERROR

    def test_event_type_map_covers_every_type(self):
        assert set(EVENT_TYPE_MAP) == set(EventType)
        assert EVENT_TYPE_MAP[EventType.AUDIO_DELTA] is AudioDelta
