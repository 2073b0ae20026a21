"""Twilio Media Streams WebSocket serializer.

Translates between Twilio's Media Streams WebSocket protocol and VoxRelay's
unified event model. Twilio streams audio as base64-encoded mu-law at 8kHz
over JSON WebSocket messages.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import base64
import binascii
import json

from voxrelay.audio.codecs import MalformedAudioError
from voxrelay.core.events import (
    AnyEvent,
    AudioFrame,
    CallEnded,
    CallStarted,
    Codec,
    CustomEvent,
)
from voxrelay.serializers.base import BaseSerializer


class TwilioSerializer(BaseSerializer):
    """Serializer for the Twilio Media Streams WebSocket protocol.

    Twilio sends JSON messages with an ``event`` field that indicates the
    message type.  Audio payloads arrive as base64-encoded mu-law in
    ``media`` events and are decoded into an :class:`AudioFrame`.

    State kept across the lifetime of a single stream:
        stream_sid: The unique identifier for the media stream.
        call_sid:   The Twilio Call SID associated with this stream.

    Args:
        include_stream_sid: Add ``streamSid`` to outbound media messages
            once it is known.
    """

    def __init__(self, include_stream_sid: bool = True) -> None:
        self.include_stream_sid = include_stream_sid
        self.stream_sid: str = ""
        self.call_sid: str = ""

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def audio_codec(self) -> Codec:
        return Codec.MULAW

    @property
    def sample_rate(self) -> int:
        return 8000

    # ------------------------------------------------------------------
    # Deserialization (provider -> VoxRelay events)
    # ------------------------------------------------------------------

    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse a Twilio Media Streams message into VoxRelay events.

        Message types handled:
            * ``connected`` -- initial handshake acknowledgement (ignored).
            * ``start``     -- stream metadata; produces :class:`CallStarted`.
            * ``media``     -- audio payload; produces :class:`AudioFrame`.
            * ``stop``      -- stream ended; produces :class:`CallEnded`.

        Any other message type (``mark``, ``dtmf``, future additions) is
        surfaced as a :class:`CustomEvent`.
        """
        msg = self._parse_message(raw)
        event_type = msg.get("event", "")

        if event_type == "connected":
            return []

        if event_type == "start":
            return self._handle_start(msg)

        if event_type == "media":
            return self._handle_media(msg)

        if event_type == "stop":
            return self._handle_stop(msg)

        return [
            CustomEvent(
                call_id=self.call_sid,
                custom_type=f"twilio.{event_type}",
                payload=msg,
            )
        ]

    # ------------------------------------------------------------------
    # Serialization (VoxRelay events -> provider wire format)
    # ------------------------------------------------------------------

    async def serialize(self, event: AnyEvent) -> str | None:
        """Convert a VoxRelay event to a Twilio Media Streams message.

        Only :class:`AudioFrame` (mu-law) has an outbound mapping.
        """
        if isinstance(event, AudioFrame):
            if event.codec != Codec.MULAW:
                raise ValueError(f"Twilio expects mu-law audio, got {event.codec.value}")
            return self.build_media_message(base64.b64encode(event.data).decode("ascii"))
        return None

    def build_media_message(self, payload_b64: str) -> str:
        """Build an outbound ``media`` message from an already-encoded payload."""
        msg: dict = {"event": "media"}
        if self.include_stream_sid and self.stream_sid:
            msg["streamSid"] = self.stream_sid
        msg["media"] = {"payload": payload_b64}
        return json.dumps(msg)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handle_start(self, msg: dict) -> list[AnyEvent]:
        """Process a Twilio ``start`` message."""
        start_data = msg.get("start") or {}
        if not isinstance(start_data, dict):
            raise ValueError(f"start field must be an object, got {type(start_data).__name__}")
        event = CallStarted(
            call_id=start_data.get("callSid", ""),
            stream_sid=start_data.get("streamSid") or msg.get("streamSid", ""),
            metadata={
                "account_sid": start_data.get("accountSid", ""),
                "custom_parameters": start_data.get("customParameters", {}),
                "media_format": start_data.get("mediaFormat", {}),
            },
        )
        self.stream_sid = event.stream_sid
        self.call_sid = event.call_id
        return [event]

    def _handle_media(self, msg: dict) -> list[AnyEvent]:
        """Process a Twilio ``media`` message."""
        if isinstance(msg.get("streamSid"), str):
            self.stream_sid = msg["streamSid"]

        media = msg.get("media") or {}
        if not isinstance(media, dict):
            raise MalformedAudioError(f"media field must be an object, got {type(media).__name__}")
        payload_b64 = media.get("payload")
        if not payload_b64:
            raise MalformedAudioError("media event without payload")
        try:
            audio_bytes = base64.b64decode(payload_b64, validate=True)
        except (binascii.Error, TypeError) as e:
            raise MalformedAudioError(f"media payload is not valid base64: {e}") from e
        if not audio_bytes:
            raise MalformedAudioError("media payload is empty")

        return [
            AudioFrame(
                call_id=self.call_sid,
                codec=Codec.MULAW,
                sample_rate=8000,
                data=audio_bytes,
            )
        ]

    def _handle_stop(self, msg: dict) -> list[AnyEvent]:
        """Process a Twilio ``stop`` message."""
        if isinstance(msg.get("streamSid"), str):
            self.stream_sid = msg["streamSid"]

        return [CallEnded(call_id=self.call_sid, reason="normal")]
