"""
HTTP surface of the relay.

Thin web layer: request parsing and error-to-JSON mapping live here, the
streaming logic lives in ``chat_relay.relay``.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from dataclasses import asdict

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from chat_relay import __version__
from chat_relay.config import Configuration
from chat_relay.llm.client import UpstreamClient
from chat_relay.llm.exceptions import LLMError
from chat_relay.logging_utils import INTERNAL_ERROR_MESSAGE, RelayErrorHandler
from chat_relay.relay import ChatRelay, ChatRequest

logger = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable proxy buffering (nginx)
}


def create_app(
    configuration: Configuration | None = None,
    upstream: UpstreamClient | None = None,
) -> FastAPI:
    """Build the relay application; ``upstream`` is injectable for tests."""
    configuration = configuration or Configuration()
    upstream = upstream or UpstreamClient(configuration.get_provider_config())
    relay = ChatRelay(
        upstream,
        fragment_delay=configuration.get_streaming_config()["fragment_delay"],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Chat relay started",
            provider=upstream.provider_type.value,
            default_model=upstream.config.default_model,
            credential_configured=bool(upstream.config.api_key),
        )
        yield
        await upstream.close()
        logger.info("Chat relay stopped")

    app = FastAPI(title="Chat Relay", version=__version__, lifespan=lifespan)
    app.state.configuration = configuration
    app.state.relay = relay

    @app.exception_handler(LLMError)
    async def llm_error_handler(request: Request, exc: LLMError):
        status, body = RelayErrorHandler.error_payload(
            exc, "chat_stream", context={"path": request.url.path}
        )
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Rejected malformed request", errors=exc.errors())
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path)
        return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})

    @app.post("/api/chat/stream")
    async def chat_stream(body: ChatRequest):
        upstream_response, events = await relay.open(body)
        return StreamingResponse(
            events,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            # Runs even if the body was never iterated (early disconnect)
            background=BackgroundTask(upstream_response.aclose),
        )

    @app.get("/api/models")
    async def list_models():
        return {
            "default": upstream.config.default_model,
            "models": [asdict(model) for model in upstream.config.models],
        }

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


async def run_server(
    configuration: Configuration,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Serve the relay with uvicorn until it exits or ``shutdown_event`` is set."""
    server_config = configuration.get_server_config()
    config = uvicorn.Config(
        create_app(configuration),
        host=server_config["host"],
        port=server_config["port"],
        log_level=server_config.get("log_level", "info"),
    )
    server = uvicorn.Server(config)

    async def watch_shutdown() -> None:
        if shutdown_event is not None:
            await shutdown_event.wait()
            server.should_exit = True

    watcher = asyncio.create_task(watch_shutdown())
    try:
        await server.serve()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
