"""
SSE decoding shared by the relay (upstream side) and the client consumer.

Line reassembly lives in exactly one place, ``SSELineBuffer``; both stream
formats are decoded on top of it by ``StreamingParser``.
"""

from __future__ import annotations

import json
import time
from collections.abc import AsyncGenerator, AsyncIterable, Callable
from typing import Any

import structlog

from .models import (
    AccumulatorState,
    RawSSEChunk,
    SSEEventType,
    StreamChunk,
    StreamChunkType,
    StreamingStats,
)

logger = structlog.get_logger(__name__)

DONE_MARKER = "[DONE]"
DATA_PREFIX = "data:"

ChunkDecoder = Callable[[dict[str, Any]], StreamChunk | None]


class SSELineBuffer:
    """Reassemble complete lines from arbitrarily split text chunks."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[str]:
        """Add text and return every line it completed, without terminators."""
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return [line.removesuffix("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return the trailing unterminated line, if any, and reset."""
        rest, self._buffer = self._buffer.removesuffix("\r"), ""
        return [rest] if rest else []

    @property
    def pending(self) -> str:
        return self._buffer


def parse_sse_line(line: str) -> RawSSEChunk | None:
    """
    Decode one SSE line.

    Blank lines, comments (``: keep-alive``) and non-data fields yield None.
    A ``data:`` payload that is not a JSON object yields an ERROR chunk so the
    caller can count and skip it.
    """
    if not line or line.startswith(":"):
        return None
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX):].removeprefix(" ")

    if payload.strip() == DONE_MARKER:
        return RawSSEChunk(
            event_type=SSEEventType.COMPLETION, data=None, raw_data=DONE_MARKER
        )

    if payload.strip() == "":
        return RawSSEChunk(
            event_type=SSEEventType.HEARTBEAT, data=None, raw_data=payload
        )

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as e:
        return RawSSEChunk(
            event_type=SSEEventType.ERROR,
            data=None,
            raw_data=payload,
            error=f"JSON decode error: {e}",
        )

    if not isinstance(parsed, dict):
        return RawSSEChunk(
            event_type=SSEEventType.ERROR,
            data=None,
            raw_data=payload,
            error=f"Expected JSON object, got {type(parsed).__name__}",
        )

    return RawSSEChunk(event_type=SSEEventType.CHUNK, data=parsed, raw_data=payload)


def decode_upstream_chunk(data: dict[str, Any]) -> StreamChunk | None:
    """Extract ``choices[0].delta.content`` from an OpenAI-style delta event."""
    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return StreamChunk(
            chunk_type=StreamChunkType.ERROR,
            error=message or "Upstream stream error",
        )

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return StreamChunk(chunk_type=StreamChunkType.CONTENT, content=content)
    return None


def decode_relay_chunk(data: dict[str, Any]) -> StreamChunk | None:
    """Decode the relay's normalized ``{content}`` / ``{error}`` events."""
    if error := data.get("error"):
        return StreamChunk(chunk_type=StreamChunkType.ERROR, error=str(error))
    content = data.get("content")
    if isinstance(content, str) and content:
        return StreamChunk(chunk_type=StreamChunkType.CONTENT, content=content)
    return None


class StreamingParser:
    """Turn a text stream into content, completion and error chunks."""

    def __init__(self, decoder: ChunkDecoder):
        self.decoder = decoder
        self.state = AccumulatorState()
        self.skipped_chunks = 0

    async def iter_chunks(
        self, text_stream: AsyncIterable[str]
    ) -> AsyncGenerator[StreamChunk]:
        """
        Yield decoded chunks until the stream completes.

        The last chunk is always either COMPLETION (explicit marker or end of
        input) or ERROR (a terminal error event). Transport exceptions raised
        by ``text_stream`` propagate to the caller.
        """
        line_buffer = SSELineBuffer()

        async for text in text_stream:
            for line in line_buffer.feed(text):
                chunk = self._process_line(line)
                if chunk is None:
                    continue
                yield chunk
                if chunk.chunk_type is not StreamChunkType.CONTENT:
                    return

        for line in line_buffer.flush():
            chunk = self._process_line(line)
            if chunk is None:
                continue
            yield chunk
            if chunk.chunk_type is not StreamChunkType.CONTENT:
                return

        yield StreamChunk(chunk_type=StreamChunkType.COMPLETION)

    def _process_line(self, line: str) -> StreamChunk | None:
        raw = parse_sse_line(line)
        if raw is None or raw.event_type is SSEEventType.HEARTBEAT:
            return None

        if raw.event_type is SSEEventType.COMPLETION:
            return StreamChunk(chunk_type=StreamChunkType.COMPLETION)

        if raw.event_type is SSEEventType.ERROR or raw.data is None:
            self.skipped_chunks += 1
            logger.warning(
                "Skipping malformed stream fragment",
                error=raw.error,
                raw_data=raw.raw_data[:200],
            )
            return None

        chunk = self.decoder(raw.data)
        if chunk is not None and chunk.chunk_type is StreamChunkType.CONTENT:
            self.state.update_timing(raw.timestamp)
            self.state.content_buffer += chunk.content or ""
        return chunk

    @property
    def accumulated_content(self) -> str:
        return self.state.content_buffer

    def get_stats(self) -> StreamingStats:
        duration = self.state.streaming_duration
        if self.state.first_chunk_time is not None:
            duration = max(duration, time.time() - self.state.first_chunk_time)
        return StreamingStats(
            content_chunks=self.state.chunk_count,
            skipped_chunks=self.skipped_chunks,
            total_characters=len(self.state.content_buffer),
            total_duration=round(duration, 3),
        )
