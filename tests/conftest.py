"""Shared fixtures for the VoxRelay test suite."""

import asyncio
import base64
import json

import pytest
from websockets.exceptions import ConnectionClosedOK

from voxrelay.transports.base import BaseTransport

_CLOSED = object()


class FakeTransport(BaseTransport):
    """In-memory transport: records sends, replays queued inbound messages."""

    def __init__(self, fail_connect: bool = False):
        self.sent: list = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.pings = 0
        self.connected = False
        self.disconnects = 0
        self.fail_connect = fail_connect

    async def connect(self, **kwargs):
        if self.fail_connect:
            raise OSError("connection refused")
        self.connected = True

    async def send(self, data):
        if not self.connected:
            raise RuntimeError("Not connected")
        self.sent.append(data)

    async def recv(self):
        item = await self.incoming.get()
        if item is _CLOSED:
            # Keep raising for any later reader
            self.incoming.put_nowait(_CLOSED)
            raise ConnectionClosedOK(None, None)
        return item

    async def ping(self):
        self.pings += 1

    async def disconnect(self):
        self.disconnects += 1
        self.connected = False
        self.incoming.put_nowait(_CLOSED)

    def is_connected(self):
        return self.connected

    # Test helpers

    def feed(self, message):
        """Queue an inbound message (dicts are JSON-encoded)."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self.incoming.put_nowait(message)

    def close_remote(self):
        self.incoming.put_nowait(_CLOSED)

    def sent_json(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def sent_types(self) -> list[str]:
        return [m.get("type") or m.get("event") for m in self.sent_json()]


def twilio_start(stream_sid="MZ123", call_sid="CA456") -> dict:
    return {
        "event": "start",
        "streamSid": stream_sid,
        "start": {
            "streamSid": stream_sid,
            "callSid": call_sid,
            "accountSid": "AC789",
            "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
        },
    }


def twilio_media(ulaw: bytes = b"\xff" * 160, stream_sid="MZ123") -> dict:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": base64.b64encode(ulaw).decode("ascii")},
    }


def twilio_stop(stream_sid="MZ123") -> dict:
    return {"event": "stop", "streamSid": stream_sid, "stop": {"callSid": "CA456"}}


@pytest.fixture
def telephony():
    transport = FakeTransport()
    transport.connected = True
    return transport


@pytest.fixture
def voice():
    transport = FakeTransport()
    transport.connected = True
    return transport
