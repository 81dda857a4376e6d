"""
SSE re-streaming relay.

Accepts a conversation, opens one streaming request to the upstream provider
and re-emits every non-empty delta as ``data: {"content": ...}``. Failures
that happen before the first byte (bad request, missing credential, upstream
rejection) are raised so the HTTP layer can answer with a JSON error body;
failures after that end the stream with a single ``data: {"error": ...}``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from contextlib import aclosing
from typing import Any, Literal

import httpx
from pydantic import BaseModel

from chat_relay.llm.client import UpstreamClient
from chat_relay.llm.exceptions import (
    NETWORK_MESSAGE,
    InvalidRequestError,
    StreamingError,
)
from chat_relay.llm.models import LLMMessage, MessageRole
from chat_relay.llm.streaming.models import StreamChunkType
from chat_relay.llm.streaming.parser import (
    DONE_MARKER,
    StreamingParser,
    decode_upstream_chunk,
)
from chat_relay.logging_utils import operation_context

MISSING_MESSAGES = "Messages array is required"


class RelayMessage(BaseModel):
    """One conversation entry as accepted by the relay."""
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat/stream``."""
    messages: list[RelayMessage] | None = None
    model: str | None = None


def format_sse(payload: dict[str, Any] | str) -> str:
    """Encode one event as a ``data:`` line followed by a blank line."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


class ChatRelay:
    """Stateless relay between an inbound chat request and the upstream provider."""

    def __init__(self, upstream: UpstreamClient, fragment_delay: float = 0.0):
        self.upstream = upstream
        self.fragment_delay = fragment_delay

    @staticmethod
    def validate(request: ChatRequest) -> list[LLMMessage]:
        if not request.messages:
            raise InvalidRequestError(MISSING_MESSAGES)
        return [
            LLMMessage(role=MessageRole(m.role), content=m.content)
            for m in request.messages
        ]

    async def open(
        self, request: ChatRequest
    ) -> tuple[httpx.Response, AsyncGenerator[str]]:
        """
        Validate the request and open the upstream stream.

        Returns the open upstream response and an async generator of
        SSE-encoded events. The generator closes the response when it ends;
        callers that may never iterate it must close the response themselves.
        Nothing is sent upstream when validation or the credential check fails.

        Raises:
            InvalidRequestError: If ``messages`` is absent or empty
            ConfigurationError: If the upstream credential is missing
            ProviderError: If the upstream provider rejects the request
            StreamingError: If the upstream provider cannot be reached
        """
        messages = self.validate(request)
        self.upstream.require_api_key()
        model = request.model or self.upstream.config.default_model
        response = await self.upstream.open_stream(messages, model)
        return response, self.stream(response, model)

    async def stream(
        self, response: httpx.Response, model: str
    ) -> AsyncGenerator[str]:
        """Re-encode an open upstream response as normalized relay events."""
        parser = StreamingParser(decode_upstream_chunk)
        try:
            async with operation_context(
                "relay_stream",
                context={"model": model, "provider": self.upstream.provider_type.value},
            ) as log:
                try:
                    async with aclosing(
                        parser.iter_chunks(self.upstream.iter_text(response))
                    ) as chunks:
                        async for chunk in chunks:
                            if chunk.chunk_type is StreamChunkType.CONTENT:
                                yield format_sse({"content": chunk.content})
                                if self.fragment_delay:
                                    await asyncio.sleep(self.fragment_delay)
                            elif chunk.chunk_type is StreamChunkType.ERROR:
                                log.warning("Upstream reported a stream error",
                                            error=chunk.error)
                                yield format_sse({"error": chunk.error})
                                return
                            else:
                                yield format_sse(DONE_MARKER)
                                return
                except StreamingError as e:
                    log.error("Upstream stream failed", error_message=str(e))
                    yield format_sse({"error": NETWORK_MESSAGE})
                finally:
                    stats = parser.get_stats()
                    log.info(
                        "Relay stream finished",
                        content_chunks=stats.content_chunks,
                        skipped_chunks=stats.skipped_chunks,
                        total_characters=stats.total_characters,
                    )
        finally:
            await response.aclose()
