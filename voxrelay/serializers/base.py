"""Base serializer interface for VoxRelay.

Each side of the relay (telephony, voice) has a serializer. Serializers are
pure message translators with no I/O - they convert between a transport's
JSON wire format and VoxRelay's unified event model.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from voxrelay.core.events import AnyEvent, Codec


class BaseSerializer(ABC):
    """Abstract base class for wire-format serializers.

    Key principles:
    - Serializers do NO I/O (no network calls, no file access)
    - Per-stream identifiers may be cached, all other call state lives in
      the RelaySession
    - They map transport messages to/from the canonical event model
    """

    @abstractmethod
    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse a raw message from the transport into VoxRelay events.

        Args:
            raw: The raw WebSocket message (text, UTF-8 bytes, or an
                already-parsed JSON object).

        Returns:
            List of VoxRelay events. Empty list if the message should be ignored.

        Raises:
            ValueError: If the message is not a JSON object.
            MalformedAudioError: If an audio payload cannot be decoded.
        """
        ...

    @abstractmethod
    async def serialize(self, event: AnyEvent) -> str | None:
        """Convert a VoxRelay event to the transport's wire format.

        Returns:
            The serialized message, or None if the event type is not
            applicable to this transport.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this serializer (e.g., 'twilio')."""
        ...

    @property
    @abstractmethod
    def audio_codec(self) -> Codec:
        """The audio codec this side sends."""
        ...

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """The sample rate of the audio this side sends."""
        ...

    @staticmethod
    def _parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise the raw WebSocket frame into a dict."""
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        msg = json.loads(raw)
        if not isinstance(msg, dict):
            raise ValueError(f"Expected a JSON object, got {type(msg).__name__}")
        return msg
