"""Unified event model for VoxRelay.

Both serializers translate their wire messages into these canonical events:
the telephony side (Twilio Media Streams) produces call lifecycle events and
audio frames, the voice side (OpenAI Realtime) produces audio deltas and
response lifecycle events. The session routes between the two using this
common language.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Codec(str, Enum):
    MULAW = "mulaw"
    PCM16 = "pcm16"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class TurnState(str, Enum):
    IDLE = "idle"
    AI_SPEAKING = "ai_speaking"


class EventType(str, Enum):
    # Telephony side
    AUDIO_FRAME = "audio_frame"
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"
    # Voice side
    AUDIO_DELTA = "audio_delta"
    RESPONSE_CREATED = "response_created"
    RESPONSE_DONE = "response_done"
    TRANSCRIPT_DELTA = "transcript_delta"
    # Either side
    CUSTOM = "custom"
    ERROR = "error"


class Event(BaseModel):
    """Base event that all VoxRelay events inherit from."""

    event_type: EventType
    call_id: str = ""
    timestamp: float = Field(default_factory=time.time)


class AudioFrame(Event):
    """An immutable chunk of mono audio.

    ``data`` holds raw mu-law bytes or PCM16 little-endian bytes depending
    on ``codec``.
    """

    model_config = ConfigDict(frozen=True)

    event_type: EventType = EventType.AUDIO_FRAME
    codec: Codec = Codec.PCM16
    sample_rate: int = 8000
    data: bytes = b""

    @property
    def sample_count(self) -> int:
        if self.codec == Codec.MULAW:
            return len(self.data)
        return len(self.data) // 2


class CallStarted(Event):
    """Fired when the telephony stream starts."""

    event_type: EventType = EventType.CALL_STARTED
    stream_sid: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class CallEnded(Event):
    """Fired when the caller hangs up or the stream ends."""

    event_type: EventType = EventType.CALL_ENDED
    reason: str = "normal"


class AudioDelta(Event):
    """A chunk of synthesized audio from the voice transport.

    The payload is kept base64-encoded so that it can be forwarded to the
    telephony side untouched when both ends speak mu-law at 8kHz.
    """

    event_type: EventType = EventType.AUDIO_DELTA
    payload: str = ""
    response_id: str = ""


class ResponseCreated(Event):
    """The voice transport started producing a response."""

    event_type: EventType = EventType.RESPONSE_CREATED
    response_id: str = ""


class ResponseDone(Event):
    """The voice transport finished (or abandoned) a response."""

    event_type: EventType = EventType.RESPONSE_DONE
    response_id: str = ""
    status: str = ""


class TranscriptDelta(Event):
    """Partial transcript of the AI's speech. Diagnostics only."""

    event_type: EventType = EventType.TRANSCRIPT_DELTA
    text: str = ""


class CustomEvent(Event):
    """Protocol events that don't map to standard events."""

    event_type: EventType = EventType.CUSTOM
    custom_type: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(Event):
    """Error reported by either transport."""

    event_type: EventType = EventType.ERROR
    code: str = ""
    message: str = ""
    recoverable: bool = True


# Type alias for any event
AnyEvent = (
    AudioFrame
    | CallStarted
    | CallEnded
    | AudioDelta
    | ResponseCreated
    | ResponseDone
    | TranscriptDelta
    | CustomEvent
    | ErrorEvent
)

# Map event types to their classes for deserialization
EVENT_TYPE_MAP: dict[EventType, type[Event]] = {
    EventType.AUDIO_FRAME: AudioFrame,
    EventType.CALL_STARTED: CallStarted,
    EventType.CALL_ENDED: CallEnded,
    EventType.AUDIO_DELTA: AudioDelta,
    EventType.RESPONSE_CREATED: ResponseCreated,
    EventType.RESPONSE_DONE: ResponseDone,
    EventType.TRANSCRIPT_DELTA: TranscriptDelta,
    EventType.CUSTOM: CustomEvent,
    EventType.ERROR: ErrorEvent,
}
