"""Tests for the Twilio and OpenAI Realtime serializers."""

import base64
import json

import pytest

from conftest import twilio_media, twilio_start, twilio_stop
from voxrelay.audio.codecs import MalformedAudioError
from voxrelay.config import AudioFormat, VoiceConfig
from voxrelay.core.events import (
    AudioDelta,
    AudioFrame,
    CallEnded,
    CallStarted,
    Codec,
    CustomEvent,
    ErrorEvent,
    ResponseCreated,
    ResponseDone,
    TranscriptDelta,
)
from voxrelay.serializers.realtime import RealtimeSerializer
from voxrelay.serializers.twilio import TwilioSerializer

PCM16_16K = AudioFormat(codec=Codec.PCM16, sample_rate=16000)


class TestTwilioSerializer:

    @pytest.fixture
    def serializer(self):
        return TwilioSerializer()

    def test_properties(self, serializer):
        assert serializer.name == "twilio"
        assert serializer.audio_codec == Codec.MULAW
        assert serializer.sample_rate == 8000

    @pytest.mark.asyncio
    async def test_connected_is_ignored(self, serializer):
        events = await serializer.deserialize('{"event": "connected", "protocol": "Call"}')
        assert events == []

    @pytest.mark.asyncio
    async def test_start(self, serializer):
        events = await serializer.deserialize(json.dumps(twilio_start()))
        assert len(events) == 1
        assert isinstance(events[0], CallStarted)
        assert events[0].stream_sid == "MZ123"
        assert events[0].call_id == "CA456"
        assert events[0].metadata["account_sid"] == "AC789"
        assert serializer.stream_sid == "MZ123"

    @pytest.mark.asyncio
    async def test_media(self, serializer):
        events = await serializer.deserialize(twilio_media(b"\x01\x02\x03"))
        assert len(events) == 1
        frame = events[0]
        assert isinstance(frame, AudioFrame)
        assert frame.codec == Codec.MULAW
        assert frame.sample_rate == 8000
        assert frame.data == b"\x01\x02\x03"

    @pytest.mark.asyncio
    async def test_media_accepts_bytes(self, serializer):
        events = await serializer.deserialize(json.dumps(twilio_media()).encode())
        assert isinstance(events[0], AudioFrame)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("media", [
        {},
        {"payload": ""},
        {"payload": "abc"},
        {"payload": "!!!not base64!!!"},
    ])
    async def test_malformed_media(self, serializer, media):
        with pytest.raises(MalformedAudioError):
            await serializer.deserialize({"event": "media", "media": media})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("media", ["oops", 42, ["payload"]])
    async def test_media_field_not_an_object(self, serializer, media):
        with pytest.raises(MalformedAudioError):
            await serializer.deserialize({"event": "media", "media": media})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [123, ["AAAA"], {"b64": "AAAA"}])
    async def test_media_payload_not_a_string(self, serializer, payload):
        with pytest.raises(MalformedAudioError):
            await serializer.deserialize({"event": "media", "media": {"payload": payload}})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("start", [
        "oops",
        ["MZ1"],
        {"streamSid": 5, "callSid": "CA1"},
    ])
    async def test_start_with_wrong_field_types(self, serializer, start):
        with pytest.raises(ValueError):
            await serializer.deserialize({"event": "start", "start": start})
        assert serializer.stream_sid == ""
        assert serializer.call_sid == ""

    @pytest.mark.asyncio
    async def test_stop(self, serializer):
        events = await serializer.deserialize(twilio_stop())
        assert isinstance(events[0], CallEnded)

    @pytest.mark.asyncio
    async def test_unknown_event(self, serializer):
        events = await serializer.deserialize({"event": "mark", "mark": {"name": "x"}})
        assert isinstance(events[0], CustomEvent)
        assert events[0].custom_type == "twilio.mark"

    @pytest.mark.asyncio
    async def test_invalid_json(self, serializer):
        with pytest.raises(ValueError):
            await serializer.deserialize("not json")
        with pytest.raises(ValueError):
            await serializer.deserialize("[1, 2]")

    @pytest.mark.asyncio
    async def test_serialize_media_with_stream_sid(self, serializer):
        await serializer.deserialize(twilio_start())
        out = json.loads(await serializer.serialize(AudioFrame(codec=Codec.MULAW, data=b"\xff\xfe")))
        assert out == {
            "event": "media",
            "streamSid": "MZ123",
            "media": {"payload": base64.b64encode(b"\xff\xfe").decode()},
        }

    def test_media_without_stream_sid(self):
        serializer = TwilioSerializer(include_stream_sid=False)
        serializer.stream_sid = "MZ123"
        assert json.loads(serializer.build_media_message("AA==")) == {
            "event": "media",
            "media": {"payload": "AA=="},
        }

    @pytest.mark.asyncio
    async def test_serialize_rejects_pcm(self, serializer):
        with pytest.raises(ValueError):
            await serializer.serialize(AudioFrame(codec=Codec.PCM16, data=b"\x00\x00"))

    @pytest.mark.asyncio
    async def test_serialize_other_events(self, serializer):
        assert await serializer.serialize(CallEnded()) is None


class TestRealtimeSerializer:

    @pytest.fixture
    def beta(self):
        return RealtimeSerializer(VoiceConfig(input_format=PCM16_16K, output_format=PCM16_16K))

    @pytest.fixture
    def ga(self):
        return RealtimeSerializer(
            VoiceConfig(schema_version="ga", input_format=PCM16_16K, output_format=PCM16_16K)
        )

    def test_default_formats_are_mulaw(self):
        session = json.loads(RealtimeSerializer(VoiceConfig()).session_update())["session"]
        assert session["input_audio_format"] == "g711_ulaw"
        assert session["output_audio_format"] == "g711_ulaw"

    def test_connect_headers(self, beta, ga):
        assert beta.connect_headers("sk-test") == {
            "Authorization": "Bearer sk-test",
            "OpenAI-Beta": "realtime=v1",
        }
        assert ga.connect_headers("sk-test") == {"Authorization": "Bearer sk-test"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["response.audio.delta", "response.output_audio.delta"])
    async def test_audio_delta(self, beta, event_type):
        events = await beta.deserialize({"type": event_type, "delta": "AAAA", "response_id": "r1"})
        assert isinstance(events[0], AudioDelta)
        assert events[0].payload == "AAAA"
        assert events[0].response_id == "r1"

    @pytest.mark.asyncio
    async def test_empty_audio_delta(self, beta):
        assert await beta.deserialize({"type": "response.audio.delta", "delta": ""}) == []

    @pytest.mark.asyncio
    async def test_response_lifecycle(self, beta):
        created = await beta.deserialize({"type": "response.created", "response": {"id": "r1"}})
        assert isinstance(created[0], ResponseCreated)
        assert created[0].response_id == "r1"

        for event_type in ("response.done", "response.completed"):
            done = await beta.deserialize(
                {"type": event_type, "response": {"id": "r1", "status": "cancelled"}}
            )
            assert isinstance(done[0], ResponseDone)
            assert done[0].status == "cancelled"

    @pytest.mark.asyncio
    async def test_transcript(self, beta):
        events = await beta.deserialize(
            json.dumps({"type": "response.audio_transcript.delta", "delta": "Hi"})
        )
        assert isinstance(events[0], TranscriptDelta)
        assert events[0].text == "Hi"

    @pytest.mark.asyncio
    async def test_error(self, beta):
        events = await beta.deserialize({
            "type": "error",
            "error": {"type": "invalid_request_error", "code": "conversation_already_has_active_response",
                      "message": "busy"},
        })
        assert isinstance(events[0], ErrorEvent)
        assert events[0].code == "conversation_already_has_active_response"
        assert events[0].message == "busy"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["response.done", "response.completed"])
    @pytest.mark.parametrize("response", ["oops", 7, None, ["r1"], {"id": 9, "status": None}])
    async def test_response_done_with_wrong_field_types(self, beta, event_type, response):
        events = await beta.deserialize({"type": event_type, "response": response})
        assert len(events) == 1
        assert isinstance(events[0], ResponseDone)

    @pytest.mark.asyncio
    async def test_response_created_with_wrong_field_types(self, beta):
        events = await beta.deserialize({"type": "response.created", "response": "oops"})
        assert isinstance(events[0], ResponseCreated)
        assert events[0].response_id == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,code", [
        ({"code": 400, "message": "bad"}, "400"),
        ({"type": 5}, "5"),
        ({"message": {"detail": "x"}}, "error"),
        ("plain text", "error"),
        (503, "error"),
        ([], "error"),
    ])
    async def test_error_with_wrong_field_types(self, beta, error, code):
        events = await beta.deserialize({"type": "error", "error": error})
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].code == code

    @pytest.mark.asyncio
    async def test_unknown_event(self, beta):
        events = await beta.deserialize({"type": "rate_limits.updated"})
        assert isinstance(events[0], CustomEvent)
        assert events[0].custom_type == "rate_limits.updated"

    def test_session_update_beta(self, beta):
        msg = json.loads(beta.session_update())
        assert msg["type"] == "session.update"
        session = msg["session"]
        assert session["input_audio_format"] == "pcm16"
        assert session["output_audio_format"] == "pcm16"
        assert session["voice"] == "marin"
        assert session["turn_detection"] is None

    def test_session_update_beta_mulaw_with_vad(self):
        mulaw = AudioFormat(codec=Codec.MULAW, sample_rate=8000)
        serializer = RealtimeSerializer(
            VoiceConfig(input_format=mulaw, output_format=mulaw, server_vad=True)
        )
        session = json.loads(serializer.session_update())["session"]
        assert session["input_audio_format"] == "g711_ulaw"
        assert session["output_audio_format"] == "g711_ulaw"
        assert session["turn_detection"] == {"type": "server_vad"}

    def test_session_update_ga(self, ga):
        session = json.loads(ga.session_update())["session"]
        assert session["type"] == "realtime"
        assert session["audio"]["input"]["format"] == {"type": "audio/pcm", "rate": 16000}
        assert session["audio"]["output"]["format"] == {"type": "audio/pcm", "rate": 16000}
        assert session["audio"]["output"]["voice"] == "marin"
        assert "input_audio_format" not in session

    def test_session_update_ga_mulaw(self):
        mulaw = AudioFormat(codec=Codec.MULAW, sample_rate=8000)
        serializer = RealtimeSerializer(
            VoiceConfig(schema_version="ga", input_format=mulaw, output_format=mulaw)
        )
        session = json.loads(serializer.session_update())["session"]
        assert session["audio"]["input"]["format"] == {"type": "audio/pcmu"}

    def test_response_create(self, beta, ga):
        msg = json.loads(beta.response_create())
        assert msg["type"] == "response.create"
        assert "instructions" not in msg["response"]
        assert msg["response"]["modalities"] == ["audio", "text"]

        msg = json.loads(ga.response_create("Say hi"))
        assert msg["response"]["instructions"] == "Say hi"
        assert msg["response"]["output_modalities"] == ["audio"]

    def test_input_buffer_messages(self, beta):
        append = json.loads(beta.input_audio_append(b"\x00\x01"))
        assert append == {"type": "input_audio_buffer.append", "audio": "AAE="}
        assert json.loads(beta.input_audio_commit()) == {"type": "input_audio_buffer.commit"}
        assert json.loads(beta.response_cancel()) == {"type": "response.cancel"}

    @pytest.mark.asyncio
    async def test_serialize_audio_frame(self, beta):
        out = await beta.serialize(AudioFrame(codec=Codec.PCM16, sample_rate=16000, data=b"\x00\x01"))
        assert json.loads(out)["type"] == "input_audio_buffer.append"
        with pytest.raises(ValueError):
            await beta.serialize(AudioFrame(codec=Codec.MULAW, data=b"\xff"))
