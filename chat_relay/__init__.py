"""Streaming chat relay: an SSE re-streaming proxy plus its client consumer."""

__version__ = "0.1.0"
