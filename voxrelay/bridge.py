"""VoxRelay - session manager.

The VoxRelay class accepts inbound telephony connections and, for each one:

1. Checks that a voice credential is configured (otherwise hangs up).
2. Opens the paired voice connection, queueing any telephony messages that
   arrive meanwhile in a small pending queue.
3. Once the voice leg is ready, starts a RelaySession, replays the pending
   messages in order and runs the session until either side closes.

Voice connection failures close the telephony leg; nothing is retried.
"""

from __future__ import annotations

import asyncio
from collections import deque
from pathlib import Path
from typing import Callable

from loguru import logger
from websockets.exceptions import ConnectionClosed

from voxrelay.config import RelayConfig, load_config
from voxrelay.serializers.realtime import RealtimeSerializer
from voxrelay.session import RelaySession, SessionStore
from voxrelay.transports.base import BaseTransport
from voxrelay.transports.websocket import WebSocketClientTransport, WebSocketServer

# Builds the voice-side transport for a given API key
VoiceTransportFactory = Callable[[str], BaseTransport]


class PendingQueue:
    """Telephony messages received before the voice leg is ready.

    Bounded; when full the oldest message is discarded. Unlike the session's
    AudioBuffer this holds raw wire messages and is replayed verbatim.
    """

    def __init__(self, maxsize: int = 200) -> None:
        self._items: deque = deque(maxlen=maxsize)
        self.dropped = 0
        self.closed = False

    def put(self, raw: bytes | str) -> None:
        if len(self._items) == self._items.maxlen:
            self.dropped += 1
        self._items.append(raw)

    def drain(self) -> list[bytes | str]:
        items = list(self._items)
        self._items.clear()
        return items

    def __len__(self) -> int:
        return len(self._items)


class VoxRelay:
    """Telephony <-> realtime voice relay.

    Usage (config-driven):
        relay = VoxRelay("relay.yaml")
        relay.run()

    Usage (programmatic):
        relay = VoxRelay({
            "listen_port": 8080,
            "voice_format": "mulaw",
        })
        relay.run()
    """

    def __init__(
        self,
        config: RelayConfig | dict | str | Path | None = None,
        voice_transport_factory: VoiceTransportFactory | None = None,
    ) -> None:
        self.config = load_config(config)
        self.sessions = SessionStore()
        self._voice_transport_factory = voice_transport_factory or self._default_voice_transport
        self._server: WebSocketServer | None = None

    def _default_voice_transport(self, api_key: str) -> BaseTransport:
        headers = RealtimeSerializer(self.config.voice).connect_headers(api_key)
        return WebSocketClientTransport(
            url=self.config.voice.connect_url,
            headers=headers,
            open_timeout=self.config.voice.connect_timeout_s,
        )

    # ------------------------------------------------------------------
    # Main run loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Start the relay (blocking). Runs the asyncio event loop."""
        logger.info(
            f"VoxRelay starting on {self.config.telephony.listen_host}:"
            f"{self.config.telephony.listen_port}{self.config.telephony.listen_path}"
        )
        try:
            asyncio.run(self.run_async())
        except KeyboardInterrupt:
            logger.info("VoxRelay stopped by user")

    async def run_async(self) -> None:
        """Start the relay (async). Use this if you manage your own event loop."""
        if not self.config.voice.resolved_api_key:
            logger.warning(
                f"No voice API key configured ({self.config.voice.api_key_env} unset); "
                f"calls will be rejected"
            )
        telephony = self.config.telephony
        self._server = WebSocketServer(
            host=telephony.listen_host,
            port=telephony.listen_port,
            path=telephony.listen_path,
            handler=self.handle_telephony_connection,
            health_path=telephony.health_path,
            health_body=telephony.health_body,
        )
        await self._server.serve_forever()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def handle_telephony_connection(self, telephony: BaseTransport) -> None:
        """Bridge one inbound telephony connection until either side closes."""
        api_key = self.config.voice.resolved_api_key
        if not api_key:
            logger.error(
                f"Missing voice API key ({self.config.voice.api_key_env}), "
                f"rejecting telephony connection"
            )
            await telephony.disconnect()
            return

        session = self.sessions.create(config=self.config, telephony_transport=telephony)
        try:
            voice, pending = await self._connect_voice(session, telephony, api_key)
            if voice is None:
                return
            session.voice_transport = voice

            if pending.closed:
                await session.close("telephony closed before voice was ready")
                return

            await session.start()
            for raw in pending.drain():
                await session.handle_telephony_message(raw)
            await session.run()
        except Exception as e:
            logger.error(f"Relay error for session {session.session_id}: {e}")
        finally:
            await session.close()
            self.sessions.remove(session.session_id)

    async def _connect_voice(
        self,
        session: RelaySession,
        telephony: BaseTransport,
        api_key: str,
    ) -> tuple[BaseTransport | None, PendingQueue]:
        """Open the voice leg while queueing early telephony messages."""
        pending = PendingQueue(self.config.session.pending_queue_size)
        reader = asyncio.create_task(self._queue_pending(telephony, pending))

        voice = self._voice_transport_factory(api_key)
        try:
            await asyncio.wait_for(voice.connect(), timeout=self.config.voice.connect_timeout_s)
        except Exception as e:
            logger.error(f"Failed to connect to voice service at {self.config.voice.url}: {e!r}")
            await self._stop_reader(reader)
            await session.close("voice connect failed")
            return None, pending

        await self._stop_reader(reader)
        if pending.dropped:
            logger.warning(
                f"Pending queue overflowed while connecting, dropped {pending.dropped} messages"
            )
        logger.info(
            f"Voice leg ready for session {session.session_id} "
            f"({len(pending)} pending telephony messages)"
        )
        return voice, pending

    @staticmethod
    async def _queue_pending(telephony: BaseTransport, pending: PendingQueue) -> None:
        try:
            while True:
                pending.put(await telephony.recv())
        except ConnectionClosed:
            pending.closed = True
            logger.info("Telephony closed while voice leg was connecting")
        except Exception as e:
            pending.closed = True
            logger.warning(f"Telephony receive failed while voice leg was connecting: {e}")

    @staticmethod
    async def _stop_reader(reader: asyncio.Task) -> None:
        reader.cancel()
        try:
            await reader
        except asyncio.CancelledError:
            pass
