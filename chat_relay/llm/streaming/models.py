"""
Streaming dataclasses for SSE decoding.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SSEEventType(Enum):
    """Server-Sent Event types."""
    CHUNK = "chunk"
    COMPLETION = "completion"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


class StreamChunkType(Enum):
    """Types of decoded stream chunks."""
    CONTENT = "content"
    COMPLETION = "completion"
    ERROR = "error"


@dataclass(frozen=True)
class RawSSEChunk:
    """One decoded ``data:`` line."""
    event_type: SSEEventType
    data: dict[str, Any] | None
    raw_data: str
    error: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class StreamChunk:
    """A content fragment, a completion marker or a terminal error."""
    chunk_type: StreamChunkType
    content: str | None = None
    error: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class AccumulatorState:
    """Mutable state for fragment accumulation."""
    content_buffer: str = ""
    chunk_count: int = 0
    first_chunk_time: float | None = None
    last_chunk_time: float | None = None

    def update_timing(self, timestamp: float) -> None:
        if self.first_chunk_time is None:
            self.first_chunk_time = timestamp
        self.last_chunk_time = timestamp
        self.chunk_count += 1

    @property
    def streaming_duration(self) -> float:
        if self.first_chunk_time is None or self.last_chunk_time is None:
            return 0.0
        return self.last_chunk_time - self.first_chunk_time


@dataclass(frozen=True)
class StreamingStats:
    """Per-stream counters, logged when a stream finishes."""
    content_chunks: int
    skipped_chunks: int
    total_characters: int
    total_duration: float
