"""WebSocket transport for VoxRelay.

Provides both client (outbound, voice side) and server (inbound, telephony
side) WebSocket transports using the ``websockets`` library with asyncio.

The server answers plain HTTP requests on the health path, upgrades only
the telephony path, and rejects every other path before the handshake.
"""

from __future__ import annotations

import asyncio
from http import HTTPStatus
from typing import Any

import websockets.asyncio.client
import websockets.asyncio.server
from loguru import logger
from websockets.protocol import State

from voxrelay.transports.base import BaseTransport


class WebSocketClientTransport(BaseTransport):
    """WebSocket client transport for connecting to a remote endpoint.

    Used for the voice-side connection: VoxRelay connects as a client to the
    realtime voice service. Library-level pings are disabled; the session's
    keepalive drives them instead.
    """

    def __init__(
        self,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        **ws_kwargs: Any,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._ws: Any | None = None
        self._ws_kwargs = {"ping_interval": None, **ws_kwargs}

    async def connect(self, **kwargs) -> None:
        url = kwargs.get("url", self._url)
        if not url:
            raise ValueError("WebSocket URL is required")
        self._url = url
        logger.info(f"Connecting to WebSocket: {url}")
        self._ws = await websockets.asyncio.client.connect(
            url,
            additional_headers=self._headers,
            **self._ws_kwargs,
        )
        logger.info(f"Connected to {url}")

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise RuntimeError("Not connected")
        await self._ws.send(data)

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise RuntimeError("Not connected")
        return await self._ws.recv()

    async def ping(self) -> None:
        if self.is_connected():
            await self._ws.ping()

    async def disconnect(self) -> None:
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info("WebSocket client disconnected")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN


class WebSocketServerTransport(BaseTransport):
    """WebSocket server transport that wraps an already-accepted connection.

    Used for the telephony-side connection: the provider connects to
    VoxRelay's server, and this transport wraps that accepted WebSocket.
    """

    def __init__(self, websocket: Any = None) -> None:
        self._ws = websocket

    async def connect(self, **kwargs) -> None:
        ws = kwargs.get("websocket")
        if ws:
            self._ws = ws
        if not self._ws:
            raise ValueError("An accepted WebSocket connection is required")
        logger.info("Telephony WebSocket connection accepted")

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise RuntimeError("Not connected")
        await self._ws.send(data)

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise RuntimeError("Not connected")
        return await self._ws.recv()

    async def ping(self) -> None:
        if self.is_connected():
            await self._ws.ping()

    async def disconnect(self) -> None:
        if self._ws:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Telephony WebSocket close failed: {e}")
            logger.info("Telephony WebSocket disconnected")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN


class WebSocketServer:
    """Standalone WebSocket server that accepts telephony connections.

    Runs a ``websockets`` server and dispatches each upgraded connection on
    ``path`` to a handler callback. The callback receives a
    ``WebSocketServerTransport`` wrapping the accepted connection.

    Requests for ``health_path`` get a static 200 response; requests for any
    other path are refused with 404 before the upgrade.

    Usage:
        async def on_connection(transport: WebSocketServerTransport):
            ...

        server = WebSocketServer(host="0.0.0.0", port=8080, path="/twilio",
                                 handler=on_connection)
        await server.start()
        # ... later
        await server.stop()
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        path: str = "/twilio",
        handler=None,
        health_path: str | None = "/",
        health_body: str = "OK",
    ) -> None:
        self.host = host
        self.port = port
        self.path = path
        self.health_path = health_path
        self.health_body = health_body
        self._handler = handler
        self._server: Any = None

    def _process_request(self, connection, request):
        """Route by path before the WebSocket handshake."""
        request_path = request.path.split("?", 1)[0]
        if request_path == self.path:
            return None
        if self.health_path is not None and request_path == self.health_path:
            return connection.respond(HTTPStatus.OK, self.health_body)
        logger.warning(f"Rejected request for {request_path} (expected {self.path})")
        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

    async def _ws_handler(self, websocket) -> None:
        """Internal handler for each accepted WebSocket connection."""
        transport = WebSocketServerTransport(websocket=websocket)
        if self._handler:
            try:
                await self._handler(transport)
            except Exception as e:
                logger.error(f"Handler error: {e}")
        else:
            logger.warning("No handler registered for incoming connections")

    @property
    def bound_port(self) -> int | None:
        """The actual listening port (useful when started with port 0)."""
        if not self._server:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start the WebSocket server."""
        logger.info(f"Starting WebSocket server on {self.host}:{self.port}{self.path}")
        self._server = await websockets.asyncio.server.serve(
            self._ws_handler,
            self.host,
            self.port,
            process_request=self._process_request,
            ping_interval=None,
        )
        logger.info(f"WebSocket server listening on ws://{self.host}:{self.bound_port}{self.path}")

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("WebSocket server stopped")

    async def serve_forever(self) -> None:
        """Start and run the server until cancelled."""
        await self.start()
        try:
            await asyncio.Future()  # Run forever
        finally:
            await self.stop()
