"""
Error taxonomy for the relay and its upstream provider.

This module separates the failure kinds the relay reports differently:
- Configuration errors (missing credential) detected before any network call
- Upstream rejections carrying the provider's status and message
- Transport failures in the middle of a stream
- Invalid relay requests
"""

from __future__ import annotations

GENERIC_UPSTREAM_MESSAGE = "Failed to get response from AI"
CONFIGURATION_MESSAGE = "Server configuration error"
NETWORK_MESSAGE = "Network error. Please try again."


class LLMError(Exception):
    """Base LLM error with rich context."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str = "unknown",
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.response_data = response_data or {}


class ConfigurationError(LLMError):
    """Server-side configuration is incomplete (e.g. missing API key)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, status_code=500, **kwargs)

    @property
    def public_message(self) -> str:
        # Never leak which variable is missing to the caller.
        return CONFIGURATION_MESSAGE


class ProviderError(LLMError):
    """The upstream provider answered with a non-success status."""

    @classmethod
    def from_response_body(
        cls,
        status_code: int,
        body: dict | None,
        provider: str = "unknown",
        model: str = "unknown",
    ) -> ProviderError:
        """Build an error from an OpenAI-style ``{"error": {"message": ...}}`` body."""
        message = GENERIC_UPSTREAM_MESSAGE
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                message = str(error["message"])
            elif isinstance(error, str) and error:
                message = error
        return cls(
            message,
            provider=provider,
            model=model,
            status_code=status_code,
            response_data=body if isinstance(body, dict) else {},
        )


class StreamingError(LLMError):
    """Streaming-specific errors (transport failure after the stream opened)."""


class InvalidRequestError(LLMError):
    """The inbound relay request is malformed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, status_code=400, **kwargs)


class TurnInProgressError(RuntimeError):
    """A chat turn was submitted while another one is still in flight."""
