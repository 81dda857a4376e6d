"""
Streaming functionality for the relay and its client.

This package contains:
- SSE line reassembly
- Upstream (OpenAI delta) and relay ({content}) fragment decoding
- Fragment accumulation and per-stream statistics
"""

from __future__ import annotations

from .models import StreamChunk, StreamChunkType, StreamingStats
from .parser import (
    SSELineBuffer,
    StreamingParser,
    decode_relay_chunk,
    decode_upstream_chunk,
    parse_sse_line,
)

__all__ = [
    "SSELineBuffer",
    "StreamChunk",
    "StreamChunkType",
    "StreamingParser",
    "StreamingStats",
    "decode_relay_chunk",
    "decode_upstream_chunk",
    "parse_sse_line",
]
