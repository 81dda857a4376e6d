#!/usr/bin/env python3
"""
Tests for SSE line reassembly and fragment decoding.
"""

import json

import pytest

from chat_relay.llm.streaming.models import SSEEventType, StreamChunkType
from chat_relay.llm.streaming.parser import (
    SSELineBuffer,
    StreamingParser,
    decode_relay_chunk,
    decode_upstream_chunk,
    parse_sse_line,
)
from conftest import delta


async def as_stream(*parts: str):
    for part in parts:
        yield part


async def collect(parser: StreamingParser, *parts: str):
    return [chunk async for chunk in parser.iter_chunks(as_stream(*parts))]


class TestSSELineBuffer:
    """Line reassembly across arbitrary chunk boundaries."""

    def test_keeps_partial_line(self):
        buffer = SSELineBuffer()
        assert buffer.feed("data: a\ndata: b") == ["data: a"]
        assert buffer.pending == "data: b"
        assert buffer.feed("c\n") == ["data: bc"]
        assert buffer.pending == ""

    def test_strips_carriage_returns(self):
        buffer = SSELineBuffer()
        assert buffer.feed("data: x\r\n\r\n") == ["data: x", ""]

    def test_flush_returns_unterminated_line(self):
        buffer = SSELineBuffer()
        buffer.feed("data: [DONE]")
        assert buffer.flush() == ["data: [DONE]"]
        assert buffer.flush() == []

    def test_split_inside_prefix(self):
        buffer = SSELineBuffer()
        assert buffer.feed("da") == []
        assert buffer.feed("ta: 1\n") == ["data: 1"]


class TestParseLine:
    """Decoding of individual SSE lines."""

    def test_blank_and_comment_lines_are_ignored(self):
        assert parse_sse_line("") is None
        assert parse_sse_line(": OPENROUTER PROCESSING") is None
        assert parse_sse_line("event: message") is None

    def test_done_marker(self):
        chunk = parse_sse_line("data: [DONE]")
        assert chunk.event_type is SSEEventType.COMPLETION

    def test_data_without_space(self):
        chunk = parse_sse_line('data:{"content":"x"}')
        assert chunk.event_type is SSEEventType.CHUNK
        assert chunk.data == {"content": "x"}

    def test_invalid_json_is_an_error_chunk(self):
        chunk = parse_sse_line("data: {not json")
        assert chunk.event_type is SSEEventType.ERROR
        assert "JSON decode error" in chunk.error

    def test_non_object_json_is_an_error_chunk(self):
        chunk = parse_sse_line("data: [1, 2]")
        assert chunk.event_type is SSEEventType.ERROR


class TestDecoders:
    """Upstream delta and relay fragment decoding."""

    def test_upstream_delta_content(self):
        chunk = decode_upstream_chunk(json.loads(delta("He")))
        assert chunk.chunk_type is StreamChunkType.CONTENT
        assert chunk.content == "He"

    @pytest.mark.parametrize("data", [
        {"choices": []},
        {"choices": [{"delta": {}}]},
        {"choices": [{"delta": {"content": ""}}]},
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": None}, "finish_reason": "stop"}]},
        {"id": "gen-1"},
    ])
    def test_upstream_without_text_yields_nothing(self, data):
        assert decode_upstream_chunk(data) is None

    def test_upstream_error_object(self):
        chunk = decode_upstream_chunk({"error": {"message": "overloaded"}})
        assert chunk.chunk_type is StreamChunkType.ERROR
        assert chunk.error == "overloaded"

    def test_relay_content_and_error(self):
        assert decode_relay_chunk({"content": "hi"}).content == "hi"
        assert decode_relay_chunk({"error": "boom"}).error == "boom"
        assert decode_relay_chunk({"content": ""}) is None


class TestStreamingParser:
    """End-to-end chunk iteration."""

    @pytest.mark.asyncio
    async def test_fragments_in_order_then_completion(self):
        parser = StreamingParser(decode_upstream_chunk)
        body = f"data: {delta('He')}\n\ndata: {delta('llo')}\n\ndata: [DONE]\n\n"
        chunks = await collect(parser, body[:7], body[7:30], body[30:])

        contents = [c.content for c in chunks if c.chunk_type is StreamChunkType.CONTENT]
        assert contents == ["He", "llo"]
        assert chunks[-1].chunk_type is StreamChunkType.COMPLETION
        assert parser.accumulated_content == "Hello"

    @pytest.mark.asyncio
    async def test_stops_at_done_marker(self):
        parser = StreamingParser(decode_relay_chunk)
        chunks = await collect(
            parser, 'data: {"content":"a"}\n\ndata: [DONE]\n\ndata: {"content":"b"}\n\n'
        )
        assert [c.content for c in chunks[:-1]] == ["a"]
        assert chunks[-1].chunk_type is StreamChunkType.COMPLETION

    @pytest.mark.asyncio
    async def test_closure_without_marker_completes(self):
        parser = StreamingParser(decode_relay_chunk)
        chunks = await collect(parser, 'data: {"content":"a"}')
        assert chunks[0].content == "a"
        assert chunks[-1].chunk_type is StreamChunkType.COMPLETION

    @pytest.mark.asyncio
    async def test_malformed_fragments_are_skipped(self):
        parser = StreamingParser(decode_upstream_chunk)
        chunks = await collect(
            parser,
            f"data: {delta('a')}\n\ndata: {{broken\n\ndata: {delta('b')}\n\n",
        )
        contents = [c.content for c in chunks if c.chunk_type is StreamChunkType.CONTENT]
        assert contents == ["a", "b"]
        stats = parser.get_stats()
        assert stats.skipped_chunks == 1
        assert stats.content_chunks == 2
        assert stats.total_characters == 2

    @pytest.mark.asyncio
    async def test_error_event_is_terminal(self):
        parser = StreamingParser(decode_relay_chunk)
        chunks = await collect(
            parser, 'data: {"content":"a"}\n\ndata: {"error":"gone"}\n\ndata: {"content":"b"}\n\n'
        )
        assert [c.chunk_type for c in chunks] == [
            StreamChunkType.CONTENT, StreamChunkType.ERROR
        ]
