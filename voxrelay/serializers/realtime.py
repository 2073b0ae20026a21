"""OpenAI Realtime WebSocket serializer.

Translates between the Realtime API's client/server events and VoxRelay's
unified event model, and builds the control events the session sends
upstream (``session.update``, ``response.create``, input buffer append and
commit, ``response.cancel``).

Two generations of the API disagree on how audio formats are expressed:

* ``beta`` (``OpenAI-Beta: realtime=v1``): bare strings such as
  ``"g711_ulaw"`` / ``"pcm16"`` on ``session.input_audio_format``.
* ``ga``: structured objects such as ``{"type": "audio/pcmu"}`` /
  ``{"type": "audio/pcm", "rate": 16000}`` under ``session.audio``.

The schema version is fixed when the serializer is constructed, so the rest
of the relay never branches on the shape.
"""

from __future__ import annotations

import base64
import json
from typing import Any

from voxrelay.config import AudioFormat, VoiceConfig
from voxrelay.core.events import (
    AnyEvent,
    AudioDelta,
    AudioFrame,
    Codec,
    CustomEvent,
    ErrorEvent,
    ResponseCreated,
    ResponseDone,
    TranscriptDelta,
)
from voxrelay.serializers.base import BaseSerializer

AUDIO_DELTA_EVENTS = ("response.output_audio.delta", "response.audio.delta")
RESPONSE_DONE_EVENTS = ("response.done", "response.completed")
TRANSCRIPT_DELTA_EVENTS = (
    "response.output_audio_transcript.delta",
    "response.audio_transcript.delta",
)
ERROR_EVENTS = ("error", "response.error")

_BETA_FORMATS = {Codec.MULAW: "g711_ulaw", Codec.PCM16: "pcm16"}


class RealtimeSerializer(BaseSerializer):
    """Serializer for the OpenAI Realtime WebSocket protocol.

    Args:
        config: The voice section of the relay configuration. Its
            ``schema_version``, audio formats, voice and turn detection
            setting are read once here.
    """

    def __init__(self, config: VoiceConfig) -> None:
        self.config = config
        self.schema_version = config.schema_version
        self.input_format = config.input_format
        self.output_format = config.output_format

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return f"openai-realtime-{self.schema_version}"

    @property
    def audio_codec(self) -> Codec:
        return self.output_format.codec

    @property
    def sample_rate(self) -> int:
        return self.output_format.sample_rate

    def connect_headers(self, api_key: str) -> dict[str, str]:
        """HTTP headers for the WebSocket upgrade request."""
        headers = {"Authorization": f"Bearer {api_key}"}
        if self.schema_version == "beta":
            headers["OpenAI-Beta"] = "realtime=v1"
        return headers

    # ------------------------------------------------------------------
    # Deserialization (voice transport -> VoxRelay events)
    # ------------------------------------------------------------------

    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse a Realtime server event.

        Audio deltas, response lifecycle, transcript deltas and errors map to
        dedicated events; everything else (``session.created``,
        ``rate_limits.updated``, ...) becomes a :class:`CustomEvent`.
        """
        msg = self._parse_message(raw)
        event_type = msg.get("type", "")

        if event_type in AUDIO_DELTA_EVENTS:
            delta = msg.get("delta")
            if not delta:
                return []
            return [AudioDelta(payload=delta, response_id=msg.get("response_id", ""))]

        if event_type == "response.created":
            response = _object_field(msg, "response")
            return [ResponseCreated(response_id=str(response.get("id", "")))]

        # Lifecycle and error events map whatever their nested field types
        if event_type in RESPONSE_DONE_EVENTS:
            response = _object_field(msg, "response")
            return [
                ResponseDone(
                    response_id=str(response.get("id", "")),
                    status=str(response.get("status", "")),
                )
            ]

        if event_type in TRANSCRIPT_DELTA_EVENTS:
            return [TranscriptDelta(text=msg.get("delta", ""))]

        if event_type in ERROR_EVENTS:
            error = msg.get("error") or {}
            if not isinstance(error, dict):
                error = {"message": error}
            return [
                ErrorEvent(
                    code=str(error.get("code") or error.get("type") or event_type),
                    message=str(error.get("message", "")),
                )
            ]

        return [CustomEvent(custom_type=event_type, payload=msg)]

    # ------------------------------------------------------------------
    # Serialization (VoxRelay -> voice transport)
    # ------------------------------------------------------------------

    async def serialize(self, event: AnyEvent) -> str | None:
        """Audio frames become ``input_audio_buffer.append``."""
        if isinstance(event, AudioFrame):
            if event.codec != self.input_format.codec:
                raise ValueError(
                    f"Voice input expects {self.input_format.codec.value}, "
                    f"got {event.codec.value}"
                )
            return self.input_audio_append(event.data)
        return None

    def session_update(self) -> str:
        """``session.update`` declaring voice, formats and turn detection."""
        turn_detection = {"type": "server_vad"} if self.config.server_vad else None

        if self.schema_version == "beta":
            session: dict[str, Any] = {
                "voice": self.config.voice,
                "modalities": ["audio", "text"],
                "input_audio_format": self._wire_format(self.input_format),
                "output_audio_format": self._wire_format(self.output_format),
                "turn_detection": turn_detection,
            }
        else:
            session = {
                "type": "realtime",
                "model": self.config.model,
                "output_modalities": ["audio"],
                "audio": {
                    "input": {
                        "format": self._wire_format(self.input_format),
                        "turn_detection": turn_detection,
                    },
                    "output": {
                        "format": self._wire_format(self.output_format),
                        "voice": self.config.voice,
                    },
                },
            }
        return json.dumps({"type": "session.update", "session": session})

    def response_create(self, instructions: str = "", conversation: str | None = "auto") -> str:
        """``response.create``; empty instructions are omitted."""
        response: dict[str, Any] = {}
        if self.schema_version == "beta":
            response["modalities"] = ["audio", "text"]
        else:
            response["output_modalities"] = ["audio"]
        if instructions:
            response["instructions"] = instructions
        if conversation:
            response["conversation"] = conversation
        return json.dumps({"type": "response.create", "response": response})

    def input_audio_append(self, audio: bytes) -> str:
        return self.input_audio_append_b64(base64.b64encode(audio).decode("ascii"))

    def input_audio_append_b64(self, payload_b64: str) -> str:
        return json.dumps({"type": "input_audio_buffer.append", "audio": payload_b64})

    def input_audio_commit(self) -> str:
        return json.dumps({"type": "input_audio_buffer.commit"})

    def response_cancel(self) -> str:
        return json.dumps({"type": "response.cancel"})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wire_format(self, fmt: AudioFormat) -> str | dict[str, Any]:
        if self.schema_version == "beta":
            return _BETA_FORMATS[fmt.codec]
        if fmt.codec == Codec.MULAW:
            return {"type": "audio/pcmu"}
        return {"type": "audio/pcm", "rate": fmt.sample_rate}


def _object_field(msg: dict[str, Any], key: str) -> dict[str, Any]:
    """``msg[key]`` when it is a JSON object, else an empty dict."""
    value = msg.get(key)
    return value if isinstance(value, dict) else {}
