"""
Upstream LLM integration for the chat relay.

This package provides:
- Typed dataclass models for requests, messages and provider settings
- An httpx-based streaming client (``chat_relay.llm.client``)
- The relay's error taxonomy
"""

from __future__ import annotations

from .exceptions import (
    ConfigurationError,
    InvalidRequestError,
    LLMError,
    ProviderError,
    StreamingError,
    TurnInProgressError,
)
from .models import (
    LLMMessage,
    LLMRequest,
    MessageRole,
    ModelOption,
    ProviderConfig,
    ProviderType,
)

__all__ = [
    "ConfigurationError",
    "InvalidRequestError",
    "LLMError",
    "LLMMessage",
    "LLMRequest",
    "MessageRole",
    "ModelOption",
    "ProviderConfig",
    "ProviderError",
    "ProviderType",
    "StreamingError",
    "TurnInProgressError",
]
