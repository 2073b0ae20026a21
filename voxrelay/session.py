"""Call session management for VoxRelay.

Each bridged call gets a RelaySession that exclusively owns its telephony
and voice transports, its inbound audio buffer, its turn coordinator and its
keepalive timer, and runs the two relay directions:

1. telephony -> voice: mu-law frames are decoded, resampled, buffered and
   committed as one utterance chunk when the turn coordinator allows it.
2. voice -> telephony: audio deltas are resampled and encoded to mu-law
   (or passed through untouched when both sides already speak mu-law/8kHz).

The SessionStore indexes live sessions for the status endpoint.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import time
import uuid
from dataclasses import dataclass, field

from loguru import logger
from websockets.exceptions import ConnectionClosed

from voxrelay.audio.buffer import AudioBuffer, threshold_samples
from voxrelay.audio.codecs import MalformedAudioError, mulaw_decode, mulaw_encode
from voxrelay.audio.resampler import Resampler
from voxrelay.config import RelayConfig
from voxrelay.core.events import (
    AudioDelta,
    AudioFrame,
    CallEnded,
    CallStarted,
    Codec,
    ErrorEvent,
    ResponseCreated,
    ResponseDone,
    SessionState,
    TranscriptDelta,
)
from voxrelay.pipeline.turn_coordinator import TurnCoordinator
from voxrelay.serializers.realtime import RealtimeSerializer
from voxrelay.serializers.twilio import TwilioSerializer
from voxrelay.transports.base import BaseTransport


class Keepalive:
    """Periodic heartbeat ping on a fixed set of transports.

    Owned by one session: started when the session becomes active and
    stopped on every teardown path.
    """

    def __init__(self, interval_s: float, transports: list[BaseTransport], label: str = "") -> None:
        self.interval_s = interval_s
        self.transports = transports
        self.label = label
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            for transport in self.transports:
                try:
                    await transport.ping()
                except Exception as e:
                    logger.debug(f"[{self.label}] Keepalive ping failed: {e}")


@dataclass
class RelaySession:
    """A single call flowing through the relay.

    Lifecycle: CONNECTING (telephony accepted, voice leg pending) ->
    ACTIVE (both legs up, session configured) -> CLOSING -> CLOSED.
    Once the session leaves ACTIVE, inbound messages on either leg are
    ignored and nothing more is forwarded.
    """

    config: RelayConfig = field(default_factory=RelayConfig)

    # Unique session identifier
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Identifiers from the telephony ``start`` event
    stream_sid: str = ""
    call_id: str = ""

    # Transports (exclusively owned)
    telephony_transport: BaseTransport | None = None
    voice_transport: BaseTransport | None = None

    # State
    state: SessionState = SessionState.CONNECTING
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    close_reason: str = ""

    # Counters
    audio_bytes_in: int = 0
    audio_bytes_out: int = 0
    frames_dropped: int = 0

    telephony_serializer: TwilioSerializer = field(init=False, repr=False)
    voice_serializer: RealtimeSerializer = field(init=False, repr=False)
    audio_buffer: AudioBuffer = field(init=False, repr=False)
    turn: TurnCoordinator = field(init=False, repr=False)
    keepalive: Keepalive | None = field(default=None, init=False, repr=False)
    flush_threshold: int = field(init=False)

    _inbound_resampler: Resampler = field(init=False, repr=False)
    _outbound_resampler: Resampler = field(init=False, repr=False)
    _tasks: list[asyncio.Task] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        voice = self.config.voice
        self.telephony_serializer = TwilioSerializer(
            include_stream_sid=self.config.telephony.include_stream_sid
        )
        self.voice_serializer = RealtimeSerializer(voice)
        self.audio_buffer = AudioBuffer()
        self.flush_threshold = threshold_samples(
            self.config.buffering.min_buffer_ms, voice.input_format.sample_rate
        )
        self._inbound_resampler = Resampler(8000, voice.input_format.sample_rate)
        self._outbound_resampler = Resampler(voice.output_format.sample_rate, 8000)
        self.turn = TurnCoordinator(
            send_request=self._send_response_create,
            watchdog_timeout_s=(
                self.config.turn.watchdog_timeout_s if self.config.turn.watchdog_enabled else None
            ),
            label=self.label,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def label(self) -> str:
        return self.stream_sid or self.session_id[:8]

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def duration_ms(self) -> int:
        """Call duration in milliseconds."""
        end = self.ended_at or time.time()
        return int((end - self.started_at) * 1000)

    async def start(self) -> None:
        """Configure the voice leg, start the keepalive, greet the caller."""
        if self.state != SessionState.CONNECTING:
            raise RuntimeError(f"Cannot start session in state {self.state.value}")
        if not self.telephony_transport or not self.voice_transport:
            raise RuntimeError("Both transports are required to start a session")

        self.state = SessionState.ACTIVE
        self.keepalive = Keepalive(
            self.config.session.keepalive_interval_s,
            [self.telephony_transport, self.voice_transport],
            label=self.label,
        )
        self.keepalive.start()

        await self._send_voice(self.voice_serializer.session_update())
        if self.config.voice.greeting:
            await self.turn.request_response(self.config.voice.greeting)

        logger.info(
            f"[{self.label}] Session active: input={self.config.voice.input_format.codec.value}"
            f"@{self.config.voice.input_format.sample_rate} "
            f"output={self.config.voice.output_format.codec.value}"
            f"@{self.config.voice.output_format.sample_rate} "
            f"server_vad={self.config.voice.server_vad}"
        )

    async def run(self) -> None:
        """Run both relay directions until either leg closes, then tear down."""
        if not self.is_active:
            return
        self._tasks = [
            asyncio.create_task(self._telephony_loop()),
            asyncio.create_task(self._voice_loop()),
        ]
        try:
            _, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            await self.close(self.close_reason or "connection closed")

    async def close(self, reason: str = "closed") -> None:
        """Tear the session down. Safe to call more than once."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self.state = SessionState.CLOSING
        self.close_reason = self.close_reason or reason

        if self.keepalive:
            self.keepalive.stop()
        self.turn.stop()

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

        for transport in (self.voice_transport, self.telephony_transport):
            if transport is None:
                continue
            try:
                await transport.disconnect()
            except Exception as e:
                logger.debug(f"[{self.label}] Disconnect failed: {e}")

        self.state = SessionState.CLOSED
        self.ended_at = time.time()
        logger.info(
            f"[{self.label}] Session closed ({self.close_reason}, "
            f"duration: {self.duration_ms}ms, in={self.audio_bytes_in}B, "
            f"out={self.audio_bytes_out}B, dropped={self.frames_dropped})"
        )

    # ------------------------------------------------------------------
    # Receive loops
    # ------------------------------------------------------------------

    async def _telephony_loop(self) -> None:
        try:
            while self.is_active:
                raw = await self.telephony_transport.recv()
                await self.handle_telephony_message(raw)
        except ConnectionClosed:
            logger.info(f"[{self.label}] Telephony connection closed")
            self.close_reason = self.close_reason or "telephony closed"
        except Exception as e:
            if self.is_active:
                logger.error(f"[{self.label}] Telephony-to-voice loop error: {e}")
                self.close_reason = self.close_reason or f"telephony error: {e}"

    async def _voice_loop(self) -> None:
        try:
            while self.is_active:
                raw = await self.voice_transport.recv()
                await self.handle_voice_message(raw)
        except ConnectionClosed:
            logger.info(f"[{self.label}] Voice connection closed")
            self.close_reason = self.close_reason or "voice closed"
        except Exception as e:
            if self.is_active:
                logger.error(f"[{self.label}] Voice-to-telephony loop error: {e}")
                self.close_reason = self.close_reason or f"voice error: {e}"

    # ------------------------------------------------------------------
    # Telephony -> voice
    # ------------------------------------------------------------------

    async def handle_telephony_message(self, raw: bytes | str | dict) -> None:
        """Process one message from the telephony leg."""
        if not self.is_active:
            return

        try:
            events = await self.telephony_serializer.deserialize(raw)
        except MalformedAudioError as e:
            self.frames_dropped += 1
            logger.debug(f"[{self.label}] Dropped caller frame: {e}")
            return
        except ValueError as e:
            logger.warning(f"[{self.label}] Discarding malformed telephony message: {e}")
            return

        for event in events:
            if isinstance(event, AudioFrame):
                await self._on_caller_audio(event)

            elif isinstance(event, CallStarted):
                self.stream_sid = event.stream_sid or self.stream_sid
                self.call_id = event.call_id
                self.turn.label = self.label
                if self.keepalive:
                    self.keepalive.label = self.label
                logger.info(f"[{self.label}] Telephony stream started (call: {self.call_id})")

            elif isinstance(event, CallEnded):
                await self._on_call_ended()
                return

            else:
                logger.trace(f"[{self.label}] Ignored telephony event: {event.event_type.value}")

    async def _on_caller_audio(self, frame: AudioFrame) -> None:
        self.audio_bytes_in += len(frame.data)

        try:
            pcm_frame = self._decode_caller_audio(frame)
        except MalformedAudioError as e:
            self.frames_dropped += 1
            logger.debug(f"[{self.label}] Dropped caller frame: {e}")
            return

        if self.config.voice.server_vad:
            # The voice service detects turn boundaries itself
            await self._send_voice(self.voice_serializer.input_audio_append(
                self._encode_for_voice(pcm_frame.data, raw=frame.data)
            ))
            return

        self.audio_buffer.append(pcm_frame)
        await self._maybe_flush()

    def _decode_caller_audio(self, frame: AudioFrame) -> AudioFrame:
        pcm = self._inbound_resampler.process(mulaw_decode(frame.data))
        return AudioFrame(
            call_id=frame.call_id,
            codec=Codec.PCM16,
            sample_rate=self._inbound_resampler.to_rate,
            data=pcm,
        )

    def _encode_for_voice(self, pcm: bytes, raw: bytes | None = None) -> bytes:
        if self.config.voice.input_format.codec == Codec.MULAW:
            return raw if raw is not None else mulaw_encode(pcm)
        return pcm

    async def _maybe_flush(self) -> bool:
        """Commit buffered audio and request a response, if allowed."""
        if not self.audio_buffer.ready_to_flush(self.flush_threshold):
            return False
        if not self.turn.is_idle:
            logger.trace(
                f"[{self.label}] AI speaking, holding {self.audio_buffer.sample_count} samples"
            )
            return False

        await self._commit_buffer()
        await self.turn.request_response("")
        return True

    async def _commit_buffer(self) -> None:
        if self.audio_buffer.is_empty:
            return
        samples = self.audio_buffer.sample_count
        pcm = self.audio_buffer.drain_all()
        await self._send_voice(self.voice_serializer.input_audio_append(self._encode_for_voice(pcm)))
        await self._send_voice(self.voice_serializer.input_audio_commit())
        logger.debug(f"[{self.label}] Committed {samples} samples to voice")

    async def _on_call_ended(self) -> None:
        logger.info(f"[{self.label}] Caller hung up")
        await self._commit_buffer()
        try:
            await self._send_voice(self.voice_serializer.response_cancel())
        except Exception as e:
            logger.debug(f"[{self.label}] response.cancel not sent: {e}")
        await self.close("caller hung up")

    # ------------------------------------------------------------------
    # Voice -> telephony
    # ------------------------------------------------------------------

    async def handle_voice_message(self, raw: bytes | str | dict) -> None:
        """Process one message from the voice leg."""
        if not self.is_active:
            return

        try:
            events = await self.voice_serializer.deserialize(raw)
        except ValueError as e:
            logger.warning(f"[{self.label}] Discarding malformed voice message: {e}")
            return

        for event in events:
            if isinstance(event, AudioDelta):
                self.turn.on_audio_delta()
                await self._play_to_caller(event)

            elif isinstance(event, ResponseCreated):
                self.turn.on_response_started()

            elif isinstance(event, ResponseDone):
                logger.debug(f"[{self.label}] Response done ({event.status or 'completed'})")
                self.turn.on_response_done()

            elif isinstance(event, ErrorEvent):
                logger.warning(f"[{self.label}] Voice error {event.code}: {event.message}")
                self.turn.on_error(event.code)

            elif isinstance(event, TranscriptDelta):
                logger.debug(f"[{self.label}] AI: {event.text}")

            else:
                logger.debug(f"[{self.label}] Voice event: {getattr(event, 'custom_type', '')}")

    async def _play_to_caller(self, delta: AudioDelta) -> None:
        output = self.config.voice.output_format
        if output.is_telephony_native:
            payload = delta.payload
        else:
            try:
                pcm = base64.b64decode(delta.payload, validate=True)
                ulaw = mulaw_encode(self._outbound_resampler.process(pcm))
            except (binascii.Error, MalformedAudioError) as e:
                self.frames_dropped += 1
                logger.debug(f"[{self.label}] Dropped AI audio delta: {e}")
                return
            payload = base64.b64encode(ulaw).decode("ascii")

        await self._send_telephony(self.telephony_serializer.build_media_message(payload))
        self.audio_bytes_out += len(payload) * 3 // 4 - payload.count("=")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def _send_voice(self, message: str) -> None:
        await self.voice_transport.send(message)

    async def _send_telephony(self, message: str) -> None:
        await self.telephony_transport.send(message)

    async def _send_response_create(self, instructions: str) -> None:
        await self._send_voice(self.voice_serializer.response_create(instructions))


class SessionStore:
    """In-memory index of live relay sessions.

    Used by the server for status reporting; sessions never share state
    through it.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, RelaySession] = {}

    def create(self, **kwargs) -> RelaySession:
        """Create and store a new session."""
        session = RelaySession(**kwargs)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def get(self, session_id: str) -> RelaySession | None:
        """Get a session by session_id."""
        return self._sessions.get(session_id)

    def get_by_stream_sid(self, stream_sid: str) -> RelaySession | None:
        """Get a session by the telephony stream id."""
        for session in self._sessions.values():
            if session.stream_sid == stream_sid:
                return session
        return None

    def remove(self, session_id: str) -> None:
        """Remove a session from the store."""
        session = self._sessions.pop(session_id, None)
        if session:
            logger.info(
                f"Session removed: {session.session_id} "
                f"(duration: {session.duration_ms}ms)"
            )

    @property
    def active_count(self) -> int:
        """Number of active sessions."""
        return sum(1 for s in self._sessions.values() if s.is_active)

    @property
    def all_sessions(self) -> list[RelaySession]:
        """All stored sessions."""
        return list(self._sessions.values())

    def cleanup(self) -> int:
        """Remove all closed sessions. Returns count removed."""
        closed = [sid for sid, s in self._sessions.items() if s.state == SessionState.CLOSED]
        for sid in closed:
            self.remove(sid)
        return len(closed)
