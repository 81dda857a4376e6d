"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import copy
import json
from collections.abc import Callable
from unittest.mock import patch

import httpx
import pytest

from chat_relay.config import Configuration
from chat_relay.llm.client import UpstreamClient
from chat_relay.server import create_app

BASE_CONFIG = {
    "llm": {
        "active": "openrouter",
        "providers": {
            "openrouter": {
                "base_url": "https://openrouter.ai/api/v1",
                "default_model": "openrouter/auto",
                "app_url": "http://localhost:3000",
                "app_title": "Chat AI",
                "http_client": {
                    "connect_timeout": 5.0,
                    "read_timeout": 5.0,
                    "write_timeout": 5.0,
                    "pool_timeout": 5.0,
                },
            }
        },
        "models": [
            {"id": "openrouter/auto", "name": "Auto (Best Free)", "provider": "OpenRouter"},
            {"id": "openai/gpt-3.5-turbo", "name": "GPT-3.5 Turbo", "provider": "OpenAI"},
        ],
    },
    "streaming": {"fragment_delay": 0.0},
    "server": {"host": "127.0.0.1", "port": 8000, "log_level": "info"},
    "logging": {"level": "INFO"},
}


def delta(text: str) -> str:
    """One OpenAI-style delta event payload."""
    return json.dumps({"choices": [{"index": 0, "delta": {"content": text}}]})


def sse(*payloads: str) -> bytes:
    return "".join(f"data: {p}\n\n" for p in payloads).encode()


def streamed_response(
    *chunks: bytes,
    fail: Exception | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """A 200 event-stream response delivered in the given byte chunks."""
    async def body():
        for chunk in chunks:
            yield chunk
        if fail is not None:
            raise fail

    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream", **(headers or {})},
        content=body(),
    )


class FakeUpstream:
    """Records every request and answers with ``responder(request)``."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.responder = responder
        self.requests: list[httpx.Request] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def config_dict():
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def make_configuration(monkeypatch):
    """Build a Configuration from a dict, with full control of the environment."""
    def factory(config: dict | None = None, api_key: str | None = "test-key"):
        for var in ["OPENROUTER_DEFAULT_MODEL", "APP_URL", "OPENROUTER_API_KEY"]:
            monkeypatch.delenv(var, raising=False)
        if api_key:
            monkeypatch.setenv("OPENROUTER_API_KEY", api_key)

        mock_config = config if config is not None else copy.deepcopy(BASE_CONFIG)
        with patch.object(Configuration, "_load_yaml_config", return_value=mock_config):
            with patch.object(Configuration, "load_env"):
                return Configuration()
    return factory


@pytest.fixture
def make_relay_app(make_configuration):
    """Build (app, fake_upstream) with the upstream provider mocked out."""
    def factory(
        responder: Callable[[httpx.Request], httpx.Response],
        *,
        api_key: str | None = "test-key",
        config: dict | None = None,
    ):
        configuration = make_configuration(config, api_key=api_key)
        fake = FakeUpstream(responder)
        upstream = UpstreamClient(
            configuration.get_provider_config(), transport=fake.transport
        )
        return create_app(configuration, upstream=upstream), fake
    return factory


@pytest.fixture
def relay_http():
    """AsyncClient talking to an in-process ASGI app."""
    def factory(app) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        )
    return factory
