"""Streaming transcription over a bidirectional connection.

Audio is sent as 16 kHz mono little-endian PCM16 frames. The server replies
with JSON messages: ``Begin`` (or ``session_begins``) once the session is
open, ``Turn`` carrying a partial or final transcript, or an ``error``.
"""

from __future__ import annotations

import json
import logging
import sys
from array import array
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .api.client import CaseClient
from .events import EventBus

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000

Frame = Union[str, bytes]


class Connection(Protocol):
    """Minimal socket surface; ``recv`` returns ``None`` once closed."""

    async def send(self, data: Frame) -> None: ...

    async def recv(self) -> Optional[Frame]: ...

    async def close(self) -> None: ...


class StreamMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    transcript: str = ""
    end_of_turn: bool = False
    error: Optional[str] = None

    @property
    def is_begin(self) -> bool:
        return self.type in ("Begin", "session_begins")

    @property
    def is_turn(self) -> bool:
        return self.type == "Turn"


def float_to_pcm16(samples: Sequence[float]) -> bytes:
    """Convert float samples in ``[-1, 1]`` to little-endian signed 16-bit."""
    pcm = array("h")
    for sample in samples:
        s = max(-1.0, min(1.0, sample))
        pcm.append(int(s * 0x8000) if s < 0 else int(s * 0x7FFF))
    if sys.byteorder == "big":
        pcm.byteswap()
    return pcm.tobytes()


def downsample(
    samples: Sequence[float], from_rate: int, to_rate: int = SAMPLE_RATE
) -> list:
    if from_rate == to_rate:
        return list(samples)
    if from_rate < to_rate:
        raise ValueError(f"Cannot downsample from {from_rate} Hz to {to_rate} Hz")
    ratio = from_rate / to_rate
    length = int(len(samples) / ratio)
    return [samples[int(i * ratio)] for i in range(length)]


def parse_message(raw: Frame) -> Optional[StreamMessage]:
    """Decode one server message; malformed messages yield ``None``."""
    try:
        return StreamMessage.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        logger.warning(f"Ignoring malformed streaming message: {e}")
        return None


class LiveTranscriptionSession:
    """Accumulates the transcript of one streaming session.

    ``transcript`` holds finished turns joined by spaces; ``partial`` holds
    the in-progress turn and is cleared when that turn ends.
    """

    def __init__(
        self,
        connection: Connection,
        bus: Optional[EventBus] = None,
        on_change: Optional[Callable[["LiveTranscriptionSession"], Any]] = None,
    ) -> None:
        self._connection = connection
        self._bus = bus
        self._on_change = on_change
        self.transcript = ""
        self.partial = ""
        self.started = False
        self.closed = False
        self.errors: list = []

    @classmethod
    async def open(
        cls,
        client: CaseClient,
        connect: Callable[[str], Awaitable[Connection]],
        bus: Optional[EventBus] = None,
    ) -> "LiveTranscriptionSession":
        """Fetch a streaming URL from the API and connect to it."""
        url = await client.transcription.streaming_url()
        return cls(await connect(url), bus=bus)

    async def send_audio(self, samples: Sequence[float], sample_rate: int = SAMPLE_RATE) -> None:
        if self.closed:
            return
        await self._connection.send(float_to_pcm16(downsample(samples, sample_rate)))

    async def handle(self, message: StreamMessage) -> None:
        if message.error:
            self.errors.append(message.error)
            logger.error(f"Streaming transcription error: {message.error}")
            if self._bus is not None:
                await self._bus.notify("error", f"Transcription error: {message.error}")
            return

        if message.is_begin:
            self.started = True
            if self._bus is not None:
                await self._bus.notify("success", "Connected - start speaking!")
            return

        if not message.is_turn:
            logger.debug(f"Unknown streaming message type: {message.type}")
            return

        if message.end_of_turn:
            self.transcript = f"{self.transcript} {message.transcript}".strip()
            self.partial = ""
        else:
            self.partial = message.transcript
        if self._on_change is not None:
            self._on_change(self)

    async def listen(self) -> str:
        """Consume messages until the connection closes; return the transcript."""
        while not self.closed:
            raw = await self._connection.recv()
            if raw is None:
                break
            message = parse_message(raw)
            if message is not None:
                await self.handle(message)
        self.closed = True
        return self.transcript

    async def close(self) -> None:
        """End the session at the user's request."""
        if self.closed:
            return
        self.closed = True
        try:
            await self._connection.send(json.dumps({"terminate": True}))
        finally:
            await self._connection.close()
        logger.info("Live transcription session closed")
