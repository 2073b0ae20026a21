"""Built-in HTTP/WebSocket server for VoxRelay.

Provides a FastAPI-based server that accepts inbound Media Streams
WebSocket connections on the telephony path and hands them to the relay.
Also exposes the health check and a status endpoint. WebSocket paths other
than the telephony path are refused by the router.

Requires: pip install voxrelay[server]
"""

from typing import Any

from loguru import logger
from websockets.exceptions import ConnectionClosedOK

from voxrelay.bridge import VoxRelay
from voxrelay.config import RelayConfig, load_config
from voxrelay.transports.base import BaseTransport


def _fastapi_available() -> bool:
    try:
        import fastapi  # noqa: F401
        import uvicorn  # noqa: F401
        return True
    except ImportError:
        return False


def create_app(config: RelayConfig | dict | str | None = None, relay: VoxRelay | None = None) -> Any:
    """Create a FastAPI application with the VoxRelay WebSocket endpoint.

    Args:
        config: Relay configuration (YAML path, dict, or RelayConfig).
        relay: An existing relay to serve (its config wins over ``config``).

    Returns:
        A FastAPI application instance.

    Requires: pip install voxrelay[server]
    """
    if not _fastapi_available():
        raise ImportError(
            "FastAPI server requires fastapi and uvicorn. "
            "Install with: pip install voxrelay[server]"
        )

    from fastapi import FastAPI, WebSocket
    from fastapi.responses import JSONResponse, PlainTextResponse

    relay = relay or VoxRelay(config)
    relay_config = relay.config

    app = FastAPI(
        title="VoxRelay",
        description="Telephony to realtime voice relay",
        version="0.1.0",
    )
    app.state.relay = relay

    @app.get(relay_config.telephony.health_path)
    async def health():
        return PlainTextResponse(relay_config.telephony.health_body)

    @app.get("/status")
    async def status():
        sessions = []
        for s in relay.sessions.all_sessions:
            sessions.append({
                "session_id": s.session_id,
                "stream_sid": s.stream_sid,
                "call_id": s.call_id,
                "state": s.state.value,
                "turn": s.turn.state.value,
                "duration_ms": s.duration_ms,
            })
        return JSONResponse({
            "voice_model": relay_config.voice.model,
            "active_calls": relay.sessions.active_count,
            "sessions": sessions,
        })

    @app.websocket(relay_config.telephony.listen_path)
    async def telephony_endpoint(websocket: WebSocket):
        await websocket.accept()
        logger.info(f"Telephony WebSocket connected: {websocket.client}")
        await relay.handle_telephony_connection(_FastAPIWebSocketAdapter(websocket))
        logger.info(f"Telephony WebSocket finished: {websocket.client}")

    return app


class _FastAPIWebSocketAdapter(BaseTransport):
    """Adapter to make FastAPI's WebSocket work with VoxRelay's transport interface.

    Starlette exposes no ping primitive; protocol-level pings on this leg
    are sent by uvicorn (``ws_ping_interval``).
    """

    def __init__(self, ws):
        self._ws = ws
        self._connected = True

    async def connect(self, **kwargs):
        pass  # Already accepted by FastAPI

    async def send(self, data: bytes | str):
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_text(data)

    async def recv(self) -> bytes | str:
        msg = await self._ws.receive()
        if msg.get("type") == "websocket.disconnect":
            self._connected = False
            raise ConnectionClosedOK(None, None)
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise RuntimeError("Unexpected WebSocket message type")

    async def ping(self) -> None:
        pass

    async def disconnect(self):
        if not self._connected:
            return
        self._connected = False
        try:
            await self._ws.close()
        except Exception as e:
            logger.debug(f"Telephony WebSocket close failed: {e}")

    def is_connected(self) -> bool:
        return self._connected


def run_server(config: RelayConfig | dict | str, host: str | None = None, port: int | None = None):
    """Run the VoxRelay server with uvicorn.

    Args:
        config: Relay configuration.
        host: Override the listen host.
        port: Override the listen port.
    """
    if not _fastapi_available():
        raise ImportError(
            "FastAPI server requires fastapi and uvicorn. "
            "Install with: pip install voxrelay[server]"
        )

    import uvicorn

    relay_config = load_config(config)
    app = create_app(relay_config)

    uvicorn.run(
        app,
        host=host or relay_config.telephony.listen_host,
        port=port or relay_config.telephony.listen_port,
        ws_ping_interval=relay_config.session.keepalive_interval_s,
    )
