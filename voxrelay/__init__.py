"""VoxRelay - Relay live phone calls to a realtime speech-to-speech AI.

Bridges a Twilio Media Streams WebSocket (base64 mu-law @ 8kHz) to an
OpenAI Realtime WebSocket session (PCM16 @ 8/16kHz or mu-law), transcoding
and resampling in both directions and allowing only one AI response in
flight at a time.

Quick start (config-driven):
    $ pip install voxrelay[server]
    $ voxrelay init          # generates relay.yaml
    $ OPENAI_API_KEY=... voxrelay run --config relay.yaml

Quick start (programmatic):
    from voxrelay import VoxRelay

    relay = VoxRelay({"listen_port": 8080, "voice_format": "mulaw"})
    relay.run()
"""

__version__ = "0.1.0"

# Core
from voxrelay.bridge import PendingQueue, VoxRelay
from voxrelay.config import (
    AudioFormat,
    RelayConfig,
    TelephonyConfig,
    VoiceConfig,
    load_config,
)
from voxrelay.session import Keepalive, RelaySession, SessionStore

# Events
from voxrelay.core.events import (
    AudioDelta,
    AudioFrame,
    CallEnded,
    CallStarted,
    Codec,
    CustomEvent,
    ErrorEvent,
    Event,
    EventType,
    ResponseCreated,
    ResponseDone,
    SessionState,
    TranscriptDelta,
    TurnState,
)

# Audio
from voxrelay.audio.buffer import AudioBuffer, threshold_samples
from voxrelay.audio.codecs import MalformedAudioError, mulaw_decode, mulaw_encode
from voxrelay.audio.resampler import Resampler, downsample_2x, resample, upsample_2x

# Turn taking
from voxrelay.pipeline.turn_coordinator import TurnCoordinator

# Serializers
from voxrelay.serializers.base import BaseSerializer
from voxrelay.serializers.realtime import RealtimeSerializer
from voxrelay.serializers.twilio import TwilioSerializer

# Transports
from voxrelay.transports.base import BaseTransport
from voxrelay.transports.websocket import (
    WebSocketClientTransport,
    WebSocketServer,
    WebSocketServerTransport,
)

__all__ = [
    # Core
    "VoxRelay",
    "PendingQueue",
    "RelayConfig",
    "TelephonyConfig",
    "VoiceConfig",
    "AudioFormat",
    "load_config",
    "RelaySession",
    "SessionStore",
    "Keepalive",
    # Events
    "Event",
    "EventType",
    "AudioFrame",
    "AudioDelta",
    "CallStarted",
    "CallEnded",
    "ResponseCreated",
    "ResponseDone",
    "TranscriptDelta",
    "CustomEvent",
    "ErrorEvent",
    "Codec",
    "SessionState",
    "TurnState",
    # Audio
    "AudioBuffer",
    "threshold_samples",
    "MalformedAudioError",
    "mulaw_decode",
    "mulaw_encode",
    "Resampler",
    "resample",
    "upsample_2x",
    "downsample_2x",
    # Turn taking
    "TurnCoordinator",
    # Serializers
    "BaseSerializer",
    "TwilioSerializer",
    "RealtimeSerializer",
    # Transports
    "BaseTransport",
    "WebSocketClientTransport",
    "WebSocketServerTransport",
    "WebSocketServer",
]
