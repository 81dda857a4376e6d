"""
Direct HTTP client for the upstream completion provider.

Opens one streaming ``/chat/completions`` request per relay call and hands
the still-open response to the caller, which owns closing it.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from chat_relay.logging_utils import log_operation

from .exceptions import ConfigurationError, ProviderError, StreamingError
from .models import LLMMessage, LLMRequest, ProviderConfig, ProviderType

COMPLETIONS_PATH = "/chat/completions"


class UpstreamClient:
    """HTTP client for streaming completions from an OpenAI-compatible provider."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.provider_type: ProviderType = config.provider
        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(
                connect=config.connect_timeout,
                read=config.read_timeout,
                write=config.write_timeout,
                pool=config.pool_timeout,
            ),
            transport=transport,
        )

    def require_api_key(self) -> str:
        """Return the credential or fail before any network traffic happens."""
        if not self.config.api_key:
            raise ConfigurationError(
                "Upstream API key is not configured",
                provider=self.provider_type.value,
            )
        return self.config.api_key

    def _headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if self.config.app_url:
            headers["HTTP-Referer"] = self.config.app_url
        if self.config.app_name:
            headers["X-Title"] = self.config.app_name
        return headers

    @log_operation("upstream_open_stream")
    async def open_stream(
        self, messages: list[LLMMessage], model: str | None = None
    ) -> httpx.Response:
        """
        Start a streaming completion and return the open response.

        Raises:
            ConfigurationError: If no API key is configured (no request is sent)
            ProviderError: If the provider answers with a non-success status
            StreamingError: If the connection cannot be established
        """
        api_key = self.require_api_key()
        selected_model = model or self.config.default_model
        request = LLMRequest(model=selected_model, messages=messages, stream=True)

        http_request = self.client.build_request(
            "POST",
            COMPLETIONS_PATH,
            json=request.to_payload(),
            headers=self._headers(api_key),
        )

        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.TransportError as e:
            raise StreamingError(
                f"Could not reach upstream provider: {e!s}",
                provider=self.provider_type.value,
                model=selected_model,
            ) from e

        if not response.is_success:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            raise ProviderError.from_response_body(
                response.status_code,
                _json_or_none(body),
                provider=self.provider_type.value,
                model=selected_model,
            )

        return response

    async def iter_text(self, response: httpx.Response) -> AsyncGenerator[str]:
        """Yield decoded text from an open response, always closing it."""
        try:
            async for text in response.aiter_text():
                yield text
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise StreamingError(
                f"Upstream stream interrupted: {e!s}",
                provider=self.provider_type.value,
            ) from e
        finally:
            await response.aclose()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _json_or_none(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
