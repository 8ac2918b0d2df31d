"""Tests for streaming transcription."""

import json
import struct

import pytest

from caseflow.events import NOTIFY, EventBus
from caseflow.live import (
    LiveTranscriptionSession,
    downsample,
    float_to_pcm16,
    parse_message,
)


class FakeConnection:
    def __init__(self, messages=()):
        self.inbox = [json.dumps(m) if isinstance(m, dict) else m for m in messages]
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(data)

    async def recv(self):
        return self.inbox.pop(0) if self.inbox else None

    async def close(self):
        self.closed = True


def test_float_to_pcm16_clamps_and_scales():
    pcm = float_to_pcm16([0.0, 1.0, -1.0, 2.0, -2.0, 0.5])
    assert struct.unpack("<6h", pcm) == (0, 32767, -32768, 32767, -32768, 16383)


def test_downsample():
    assert downsample([1, 2, 3, 4, 5, 6], 48000, 16000) == [1, 4]
    assert downsample([1, 2], 16000) == [1, 2]
    with pytest.raises(ValueError):
        downsample([1], 8000, 16000)


def test_parse_message():
    assert parse_message('{"type": "Begin"}').is_begin
    assert parse_message('{"type": "session_begins"}').is_begin
    turn = parse_message('{"type": "Turn", "transcript": "hi", "end_of_turn": true}')
    assert turn.is_turn and turn.end_of_turn
    assert parse_message("not json") is None


@pytest.mark.asyncio
async def test_session_accumulates_final_turns():
    connection = FakeConnection(
        [
            {"type": "Begin"},
            {"type": "Turn", "transcript": "Good morning", "end_of_turn": False},
            {"type": "Turn", "transcript": "Good morning counsel.", "end_of_turn": True},
            {"type": "Turn", "transcript": "Please state", "end_of_turn": False},
        ]
    )
    partials = []
    session = LiveTranscriptionSession(connection, on_change=lambda s: partials.append(s.partial))

    transcript = await session.listen()

    assert session.started
    assert transcript == "Good morning counsel."
    assert session.partial == "Please state"
    assert partials == ["Good morning", "", "Please state"]
    assert session.closed


@pytest.mark.asyncio
async def test_errors_are_reported_and_listening_continues():
    connection = FakeConnection(
        [
            {"error": "Rate limited"},
            "garbage",
            {"type": "Pong"},
            {"type": "Turn", "transcript": "Done.", "end_of_turn": True},
        ]
    )
    bus = EventBus()
    notes = []
    bus.subscribe(NOTIFY, notes.append)
    session = LiveTranscriptionSession(connection, bus=bus)

    assert await session.listen() == "Done."
    assert session.errors == ["Rate limited"]
    assert notes == [{"level": "error", "message": "Transcription error: Rate limited"}]


@pytest.mark.asyncio
async def test_send_audio_and_close():
    connection = FakeConnection()
    session = LiveTranscriptionSession(connection)

    await session.send_audio([0.0, 0.5, 1.0], sample_rate=16000)
    await session.close()
    await session.send_audio([0.0])
    await session.close()

    assert connection.sent[0] == struct.pack("<3h", 0, 16383, 32767)
    assert json.loads(connection.sent[1]) == {"terminate": True}
    assert len(connection.sent) == 2
    assert connection.closed


@pytest.mark.asyncio
async def test_open_uses_streaming_url(fake_api, make_client):
    fake_api.add("GET", "/api/transcription/streaming-url", {"url": "wss://stream.test/v1"})
    client = make_client()
    urls = []

    async def connect(url):
        urls.append(url)
        return FakeConnection()

    session = await LiveTranscriptionSession.open(client, connect)

    assert urls == ["wss://stream.test/v1"]
    assert not session.closed
    await client.aclose()
