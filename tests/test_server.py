"""Tests for the HTTP/WebSocket entry points."""

import asyncio
import json

import pytest
import pytest_asyncio
import websockets.asyncio.client
from websockets.exceptions import InvalidStatus

from voxrelay.bridge import VoxRelay
from voxrelay.transports.websocket import WebSocketServer


class TestWebSocketServer:

    @pytest_asyncio.fixture
    async def server(self):
        received = []

        async def handler(transport):
            received.append(await transport.recv())
            await transport.send(json.dumps({"event": "ack"}))

        server = WebSocketServer(
            host="127.0.0.1",
            port=0,
            path="/twilio",
            handler=handler,
            health_path="/",
            health_body="relay up",
        )
        server.received = received
        await server.start()
        yield server
        await server.stop()

    @pytest.mark.asyncio
    async def test_upgrades_telephony_path(self, server):
        url = f"ws://127.0.0.1:{server.bound_port}/twilio?token=abc"
        async with websockets.asyncio.client.connect(url) as ws:
            await ws.send('{"event": "connected"}')
            reply = await asyncio.wait_for(ws.recv(), timeout=2)
        assert json.loads(reply) == {"event": "ack"}
        assert server.received == ['{"event": "connected"}']

    @pytest.mark.asyncio
    async def test_rejects_other_paths(self, server):
        with pytest.raises(InvalidStatus) as exc_info:
            await websockets.asyncio.client.connect(f"ws://127.0.0.1:{server.bound_port}/elsewhere")
        assert exc_info.value.response.status_code == 404
        assert server.received == []

    @pytest.mark.asyncio
    async def test_health_path_answers_plain_http(self, server):
        with pytest.raises(InvalidStatus) as exc_info:
            await websockets.asyncio.client.connect(f"ws://127.0.0.1:{server.bound_port}/")
        response = exc_info.value.response
        assert response.status_code == 200
        assert response.body == b"relay up"

    def test_bound_port_before_start(self):
        assert WebSocketServer(port=0).bound_port is None


class TestFastAPIServer:

    @pytest.fixture
    def client(self, monkeypatch):
        pytest.importorskip("fastapi")
        pytest.importorskip("httpx")
        from fastapi.testclient import TestClient

        from voxrelay.server import create_app

        monkeypatch.delenv("VOXRELAY_TEST_KEY", raising=False)
        relay = VoxRelay({"voice": {"api_key_env": "VOXRELAY_TEST_KEY"}})
        return TestClient(create_app(relay=relay))

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == "Telephony <-> realtime voice bridge running."

    def test_status(self, client):
        data = client.get("/status").json()
        assert data["active_calls"] == 0
        assert data["sessions"] == []
        assert data["voice_model"] == "gpt-4o-realtime-preview"

    def test_call_rejected_without_api_key(self, client):
        from starlette.websockets import WebSocketDisconnect

        with client.websocket_connect("/twilio") as ws:
            with pytest.raises(WebSocketDisconnect):
                ws.receive_text()
        assert client.app.state.relay.sessions.all_sessions == []
