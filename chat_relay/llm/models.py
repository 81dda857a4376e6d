"""
Core LLM dataclasses shared by the relay and the upstream client.

This module provides:
- Provider configuration
- Message and request structures
- The model catalogue entries offered to the user
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ProviderType(Enum):
    """Supported upstream providers (all OpenAI-compatible)."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GROQ = "groq"

    @classmethod
    def detect(cls, base_url: str) -> ProviderType:
        """Detect provider type from base URL."""
        base_url_lower = base_url.lower()

        if "openrouter.ai" in base_url_lower:
            return cls.OPENROUTER
        if "openai.com" in base_url_lower:
            return cls.OPENAI
        if "groq.com" in base_url_lower:
            return cls.GROQ

        return cls.OPENAI


class MessageRole(Enum):
    """Roles a relayed message may carry."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class LLMMessage:
    """OpenAI-compatible message structure."""
    role: MessageRole
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class LLMRequest:
    """Streaming completion request sent upstream."""
    model: str
    messages: list[LLMMessage]
    stream: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "stream": self.stream,
        }


@dataclass(frozen=True)
class ModelOption:
    """One selectable backing model."""
    id: str
    name: str
    provider: str
    description: str = ""


@dataclass(frozen=True)
class ProviderConfig:
    """Provider configuration."""
    provider: ProviderType
    base_url: str
    default_model: str
    api_key: str | None

    # Connection settings
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 10.0
    pool_timeout: float = 10.0

    # OpenRouter attribution headers
    app_name: str | None = None
    app_url: str | None = None

    models: list[ModelOption] = field(default_factory=list)
