"""Tests for the realtime WebSocket transport."""

import asyncio
import base64
import json

import pytest
from unittest.mock import AsyncMock, patch
from websockets.datastructures import Headers
from websockets.exceptions import InvalidMessage, InvalidStatus
from websockets.http11 import Response

from presstalk.transcription.errors import (
    EmptyTextError,
    FileTooLargeError,
    NetworkError,
    ServerError,
    TimeoutTransportError,
    UnauthorizedError,
)
from presstalk.transcription.realtime import RealtimeConfig, RealtimeTranscriber, build_session_update

from .audio_fixtures import silence, tone

MODULE = "presstalk.transcription.realtime"

_CLOSE = object()


class FakeRealtimeSocket:
    """Records outgoing messages and replays scripted server events once audio is committed."""

    def __init__(self, events=(), close_after_events=True):
        self.sent = []
        self.close_calls = []
        self._events = list(events)
        self._close_after_events = close_after_events
        self._incoming = asyncio.Queue()

    async def send(self, message):
        payload = json.loads(message)
        self.sent.append(payload)
        if payload["type"] == "input_audio_buffer.commit":
            for event in self._events:
                self._incoming.put_nowait(json.dumps(event))
            if self._close_after_events:
                self._incoming.put_nowait(_CLOSE)

    async def close(self, code=1000, reason=""):
        self.close_calls.append((code, reason))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._incoming.get()
            if item is _CLOSE:
                return
            yield item

    def types_sent(self):
        return [m["type"] for m in self.sent]


def _mock_ws_connect(ws):
    return patch(f"{MODULE}.websockets.connect", AsyncMock(return_value=ws))


@pytest.fixture
def one_second_wav(make_wav):
    return make_wav(tone(1.0, amplitude=0.3), name="one-second.wav")


class TestSessionUpdate:
    def test_payload(self):
        update = build_session_update("gpt-4o-transcribe", RealtimeConfig(600, 240), language="zh", prompt=" terms ")
        assert update == {
            "type": "session.update",
            "session": {
                "input_audio_format": "pcm16",
                "input_audio_transcription": {"model": "gpt-4o-transcribe", "language": "zh", "prompt": "terms"},
                "turn_detection": {"type": "server_vad", "silence_duration_ms": 600, "prefix_padding_ms": 240},
            },
        }

    def test_optional_fields_omitted(self):
        update = build_session_update("m", RealtimeConfig(), language=None, prompt="  ")
        assert update["session"]["input_audio_transcription"] == {"model": "m"}


class TestExchange:
    @pytest.mark.asyncio
    async def test_streams_audio_and_returns_final_text(self, one_second_wav):
        ws = FakeRealtimeSocket([
            {"type": "input_audio_buffer.committed"},
            {"type": "conversation.item.input_audio_transcription.delta", "delta": "hello"},
            {"type": "conversation.item.input_audio_transcription.delta", "delta": " there"},
            {"type": "conversation.item.input_audio_transcription.completed", "transcript": "Hello there."},
        ], close_after_events=False)
        deltas = []

        with _mock_ws_connect(ws) as connect:
            text = await RealtimeTranscriber().transcribe(
                one_second_wav, "gpt-4o-mini-transcribe", "sk-test", on_delta=deltas.append
            )

        assert text == "Hello there."
        assert deltas == ["hello", "hello there"]
        # 1 s of 24 kHz PCM16 is 48000 bytes: two appends of at most 32000 bytes.
        assert ws.types_sent() == [
            "session.update",
            "input_audio_buffer.append",
            "input_audio_buffer.append",
            "input_audio_buffer.commit",
        ]
        chunks = [base64.b64decode(m["audio"]) for m in ws.sent if m["type"] == "input_audio_buffer.append"]
        assert [len(c) for c in chunks] == [32000, 16000]
        assert ws.close_calls == [(1000, "")]

        kwargs = connect.call_args.kwargs
        assert kwargs["additional_headers"] == {"Authorization": "Bearer sk-test", "OpenAI-Beta": "realtime=v1"}
        assert connect.call_args.args[0].startswith("wss://")

    @pytest.mark.asyncio
    async def test_realtime_config_is_sent(self, one_second_wav):
        ws = FakeRealtimeSocket([{"type": "conversation.item.input_audio_transcription.completed", "transcript": "ok"}])
        with _mock_ws_connect(ws):
            await RealtimeTranscriber().transcribe(
                one_second_wav, "m", "k", language="en", config=RealtimeConfig(silence_duration_ms=900, prefix_padding_ms=100)
            )
        turn_detection = ws.sent[0]["session"]["turn_detection"]
        assert turn_detection["silence_duration_ms"] == 900
        assert turn_detection["prefix_padding_ms"] == 100
        assert ws.sent[0]["session"]["input_audio_transcription"]["language"] == "en"

    @pytest.mark.asyncio
    async def test_aggregate_when_socket_closes_after_deltas(self, one_second_wav):
        ws = FakeRealtimeSocket([
            {"type": "conversation.item.input_audio_transcription.delta", "delta": "partial words"},
        ])
        with _mock_ws_connect(ws):
            text = await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")
        assert text == "partial words"

    @pytest.mark.asyncio
    async def test_closed_without_transcript(self, one_second_wav):
        ws = FakeRealtimeSocket([{"type": "input_audio_buffer.committed"}])
        with _mock_ws_connect(ws):
            with pytest.raises(NetworkError):
                await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")
        assert ws.close_calls == [(1001, "going away")]

    @pytest.mark.asyncio
    async def test_error_event_is_terminal(self, one_second_wav):
        ws = FakeRealtimeSocket([{"type": "error", "error": {"message": "invalid model"}}], close_after_events=False)
        with _mock_ws_connect(ws):
            with pytest.raises(ServerError, match="invalid model") as exc_info:
                await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")
        assert not exc_info.value.is_recoverable
        assert ws.close_calls == [(1001, "going away")]

    @pytest.mark.asyncio
    async def test_timeout(self, one_second_wav):
        ws = FakeRealtimeSocket(close_after_events=False)
        with _mock_ws_connect(ws):
            with pytest.raises(TimeoutTransportError):
                await RealtimeTranscriber(timeout_s=0.1).transcribe(one_second_wav, "m", "k")
        assert ws.close_calls == [(1001, "going away")]


class TestBeforeConnecting:
    @pytest.mark.asyncio
    async def test_silent_empty_file_is_empty_text(self, make_wav):
        path = make_wav(silence(0.0), name="empty.wav")
        with _mock_ws_connect(FakeRealtimeSocket()) as connect:
            with pytest.raises(EmptyTextError):
                await RealtimeTranscriber().transcribe(path, "m", "k")
        connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_file_too_large(self, one_second_wav):
        with _mock_ws_connect(FakeRealtimeSocket()) as connect:
            with pytest.raises(FileTooLargeError):
                await RealtimeTranscriber(max_file_bytes=100).transcribe(one_second_wav, "m", "k")
        connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_undecodable_file_is_recoverable(self, tmp_path):
        path = tmp_path / "take.m4a"
        path.write_bytes(b"\x00\x00\x00\x20ftypM4A " + b"\x00" * 2048)
        with _mock_ws_connect(FakeRealtimeSocket()) as connect:
            with pytest.raises(NetworkError, match="conversion") as exc_info:
                await RealtimeTranscriber().transcribe(path, "m", "k")
        assert exc_info.value.is_recoverable
        connect.assert_not_called()


class TestHandshake:
    @pytest.mark.asyncio
    async def test_unauthorized(self, one_second_wav):
        rejected = InvalidStatus(Response(401, "Unauthorized", Headers()))
        with patch(f"{MODULE}.websockets.connect", AsyncMock(side_effect=rejected)):
            with pytest.raises(UnauthorizedError):
                await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")

    @pytest.mark.asyncio
    async def test_server_rejection(self, one_second_wav):
        rejected = InvalidStatus(Response(503, "Service Unavailable", Headers()))
        with patch(f"{MODULE}.websockets.connect", AsyncMock(side_effect=rejected)):
            with pytest.raises(ServerError) as exc_info:
                await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")
        assert exc_info.value.status == 503
        assert exc_info.value.is_recoverable

    @pytest.mark.asyncio
    async def test_connection_refused(self, one_second_wav):
        with patch(f"{MODULE}.websockets.connect", AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            with pytest.raises(NetworkError):
                await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")

    @pytest.mark.asyncio
    async def test_malformed_handshake_is_recoverable(self, one_second_wav):
        dropped = InvalidMessage("did not receive a valid HTTP response")
        with patch(f"{MODULE}.websockets.connect", AsyncMock(side_effect=dropped)):
            with pytest.raises(NetworkError) as exc_info:
                await RealtimeTranscriber().transcribe(one_second_wav, "m", "k")
        assert exc_info.value.is_recoverable
