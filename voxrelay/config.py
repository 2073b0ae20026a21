"""Configuration system for VoxRelay.

Supports loading from YAML files, dicts, or programmatic construction
via Pydantic models. The config drives the listening endpoints, the voice
transport connection and audio formats, and the buffering/turn-taking
policy of every session.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Literal
from urllib.parse import quote

import yaml
from pydantic import BaseModel, Field, model_validator

from voxrelay.core.events import Codec


class AudioFormat(BaseModel):
    """One direction of the voice transport's audio format."""

    codec: Codec = Codec.MULAW
    sample_rate: Literal[8000, 16000] = 8000

    @model_validator(mode="after")
    def _mulaw_is_8k(self) -> AudioFormat:
        if self.codec == Codec.MULAW and self.sample_rate != 8000:
            raise ValueError("mu-law audio must be 8000 Hz")
        return self

    @property
    def is_telephony_native(self) -> bool:
        """True when no transcoding is needed against the telephony leg."""
        return self.codec == Codec.MULAW and self.sample_rate == 8000


class TelephonyConfig(BaseModel):
    """Configuration for the telephony (Media Streams) side."""

    listen_host: str = "0.0.0.0"
    listen_port: int = 8080
    listen_path: str = "/twilio"
    health_path: str = "/"
    health_body: str = "Telephony <-> realtime voice bridge running."
    # Some Media Streams variants reject outbound media without streamSid
    include_stream_sid: bool = True


class VoiceConfig(BaseModel):
    """Configuration for the voice (realtime speech-to-speech) side."""

    url: str = "wss://api.openai.com/v1/realtime"
    model: str = "gpt-4o-realtime-preview"
    voice: str = "marin"
    api_key: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    # "beta" sends bare format strings, "ga" sends {type, rate} objects
    schema_version: Literal["beta", "ga"] = "beta"
    input_format: AudioFormat = Field(default_factory=AudioFormat)
    output_format: AudioFormat = Field(default_factory=AudioFormat)
    server_vad: bool = False
    greeting: str | None = (
        "Greet the caller briefly and ask how you can help."
    )
    connect_timeout_s: float = 10.0

    @property
    def resolved_api_key(self) -> str:
        """Explicit ``api_key`` or the value of the ``api_key_env`` variable."""
        return self.api_key or os.environ.get(self.api_key_env, "")

    @property
    def connect_url(self) -> str:
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}model={quote(self.model)}"


class BufferingConfig(BaseModel):
    """Inbound audio buffering policy."""

    min_buffer_ms: float = 120.0


class TurnConfig(BaseModel):
    """Turn-taking policy."""

    watchdog_enabled: bool = True
    watchdog_timeout_s: float = 1.5


class SessionConfig(BaseModel):
    """Per-session resources."""

    keepalive_interval_s: float = 25.0
    pending_queue_size: int = 200


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class RelayConfig(BaseModel):
    """Top-level VoxRelay configuration.

    Can be constructed programmatically, from a dict, or loaded from YAML.

    Examples:
        # Programmatic
        config = RelayConfig(
            voice=VoiceConfig(
                input_format=AudioFormat(codec="mulaw", sample_rate=8000),
                output_format=AudioFormat(codec="mulaw", sample_rate=8000),
            ),
        )

        # From YAML
        config = RelayConfig.from_yaml("relay.yaml")

        # Shorthand
        config = RelayConfig.from_dict({
            "listen_port": 8080,
            "voice_model": "gpt-4o-realtime-preview",
            "voice_format": "mulaw",
        })
    """

    telephony: TelephonyConfig = Field(default_factory=TelephonyConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    buffering: BufferingConfig = Field(default_factory=BufferingConfig)
    turn: TurnConfig = Field(default_factory=TurnConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> RelayConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelayConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format:

        Full format:
            {"telephony": {"listen_port": 8080}, "voice": {"model": "..."}}

        Shorthand format:
            {"listen_port": 8080, "voice_model": "...", "voice_format": "mulaw"}
        """
        return cls._from_raw(copy.deepcopy(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> RelayConfig:
        """Normalize and construct config from a raw dict."""
        # "voice_format: mulaw" sets both directions to mu-law/8kHz
        fmt = data.pop("voice_format", None)
        if fmt is not None:
            voice = data.setdefault("voice", {})
            rate = data.pop("voice_sample_rate", 16000)
            if fmt == Codec.MULAW.value:
                rate = 8000
            for key in ("input_format", "output_format"):
                voice[key] = {"codec": fmt, "sample_rate": rate}

        flat_mappings = {
            "listen_host": ("telephony", "listen_host"),
            "listen_port": ("telephony", "listen_port"),
            "listen_path": ("telephony", "listen_path"),
            "voice_url": ("voice", "url"),
            "voice_model": ("voice", "model"),
            "voice_name": ("voice", "voice"),
            "api_key": ("voice", "api_key"),
            "schema_version": ("voice", "schema_version"),
            "server_vad": ("voice", "server_vad"),
            "min_buffer_ms": ("buffering", "min_buffer_ms"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                data.setdefault(section, {})
                data[section][nested_key] = data.pop(flat_key)

        return cls(**data)


def load_config(source: str | Path | dict[str, Any] | RelayConfig | None = None) -> RelayConfig:
    """Load a RelayConfig from any supported source.

    Args:
        source: A YAML file path (str/Path), a dict, an existing RelayConfig,
            or None for defaults.

    Returns:
        A RelayConfig instance.
    """
    if source is None:
        return RelayConfig()
    if isinstance(source, RelayConfig):
        return source
    if isinstance(source, dict):
        return RelayConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return RelayConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `voxrelay init`
DEFAULT_CONFIG_YAML = """\
# VoxRelay Configuration

telephony:
  listen_host: 0.0.0.0
  listen_port: 8080
  listen_path: /twilio       # WebSocket path for Media Streams
  health_path: /
  include_stream_sid: true

voice:
  url: wss://api.openai.com/v1/realtime
  model: gpt-4o-realtime-preview
  voice: marin
  api_key_env: OPENAI_API_KEY
  schema_version: beta       # beta | ga
  # mulaw@8000 passes telephony audio through untouched. Use pcm16 only with
  # a service that accepts PCM at 8000 or 16000 Hz (schema_version: ga sends
  # the rate; beta "pcm16" is fixed at 24000 Hz by the service).
  input_format:
    codec: mulaw             # mulaw | pcm16
    sample_rate: 8000        # 8000 | 16000 (mulaw is always 8000)
  output_format:
    codec: mulaw
    sample_rate: 8000
  server_vad: false          # true lets the voice service detect turns itself
  greeting: Greet the caller briefly and ask how you can help.

buffering:
  min_buffer_ms: 120

turn:
  watchdog_enabled: true
  watchdog_timeout_s: 1.5

session:
  keepalive_interval_s: 25
  pending_queue_size: 200

logging:
  level: INFO
"""
