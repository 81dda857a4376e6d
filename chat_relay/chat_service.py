"""
Chat Service - client side of the relay.

This module drives one conversation against the relay endpoint:
- Session state: transcript, selected model, last error
- One in-flight turn at a time
- Incremental decoding of the relay's event stream into the pending
  assistant message, with a refresh callback after every fragment
- Discard-and-surface error handling (no retries)
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel

from chat_relay.history.models import Message, Transcript
from chat_relay.llm.exceptions import GENERIC_UPSTREAM_MESSAGE, TurnInProgressError
from chat_relay.llm.streaming.models import StreamChunkType
from chat_relay.llm.streaming.parser import StreamingParser, decode_relay_chunk
from chat_relay.logging_utils import ContextualLogger, log_operation

UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."

UpdateCallback = Callable[[Message], Awaitable[None] | None]


class TurnState(Enum):
    """Lifecycle of a single turn."""
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass
class ChatSession:
    """Per-user state that outlives individual turns."""
    selected_model: str | None = None
    transcript: Transcript = field(default_factory=Transcript)
    state: TurnState = TurnState.IDLE
    error: str | None = None
    available_models: list[str] = field(default_factory=list)
    # States visited by the most recent turn, in order
    turn_states: list[TurnState] = field(default_factory=list)

    @property
    def is_busy(self) -> bool:
        return self.state in (TurnState.SENDING, TurnState.STREAMING)

    def select_model(self, model_id: str) -> None:
        if self.available_models and model_id not in self.available_models:
            raise ValueError(f"Unknown model '{model_id}'")
        self.selected_model = model_id


class ChatService:
    """
    Conversation driver for the relay.

    1. Appends the user message and an empty assistant placeholder
    2. Sends the whole transcript to the relay
    3. Streams fragments into the placeholder
    4. Finalizes it, or removes it and records the error
    """

    class ChatServiceConfig(BaseModel):
        relay_url: str
        stream_path: str = "/api/chat/stream"
        models_path: str = "/api/models"
        timeout: float = 60.0

    def __init__(
        self,
        service_config: ChatService.ChatServiceConfig,
        session: ChatSession | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = service_config
        self.session = session or ChatSession()
        self.client = httpx.AsyncClient(
            base_url=service_config.relay_url,
            timeout=service_config.timeout,
            transport=transport,
        )
        self._logger = ContextualLogger({"relay_url": service_config.relay_url})

    @log_operation("load_models")
    async def load_models(self) -> list[dict[str, Any]]:
        """Fetch the model catalogue and adopt the default if none is selected."""
        response = await self.client.get(self.config.models_path)
        response.raise_for_status()
        data = response.json()
        models = data.get("models", [])
        self.session.available_models = [m["id"] for m in models]
        if self.session.selected_model is None:
            self.session.selected_model = data.get("default")
        return models

    def _set_state(self, state: TurnState) -> None:
        self.session.state = state
        self.session.turn_states.append(state)

    def clear(self) -> None:
        """Drop the whole transcript; refused while a turn is in flight."""
        if self.session.is_busy:
            raise TurnInProgressError("Cannot clear while a turn is in flight")
        self.session.transcript.clear()
        self.session.error = None

    async def send_message(
        self, content: str, on_update: UpdateCallback | None = None
    ) -> Message | None:
        """
        Run one turn.

        Returns the finalized assistant message, or None when the input was
        blank or the turn failed (``session.error`` then holds the reason).

        Raises:
            TurnInProgressError: If another turn is still in flight
        """
        content = content.strip()
        if not content:
            return None
        if self.session.is_busy:
            raise TurnInProgressError("A message is already being processed")

        self.session.turn_states = []
        self._set_state(TurnState.SENDING)
        try:
            self.session.error = None

            transcript = self.session.transcript
            transcript.add_user_message(content)
            payload: dict[str, Any] = {"messages": transcript.to_payload()}
            if self.session.selected_model:
                payload["model"] = self.session.selected_model
            placeholder = transcript.start_assistant_message()

            turn_logger = self._logger.bind(
                turn_id=placeholder.id, model=self.session.selected_model
            )
            turn_logger.info("Turn started", messages=len(payload["messages"]))

            return await self._run_turn(payload, placeholder, on_update, turn_logger)
        finally:
            self._set_state(TurnState.IDLE)

    async def _run_turn(
        self,
        payload: dict[str, Any],
        placeholder: Message,
        on_update: UpdateCallback | None,
        turn_logger: ContextualLogger,
    ) -> Message | None:
        transcript = self.session.transcript
        try:
            async with self.client.stream(
                "POST", self.config.stream_path, json=payload
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    message = _error_message(body) or GENERIC_UPSTREAM_MESSAGE
                    turn_logger.warning(
                        "Relay rejected turn",
                        status_code=response.status_code,
                        error=message,
                    )
                    return self._fail(placeholder, message)

                self._set_state(TurnState.STREAMING)
                parser = StreamingParser(decode_relay_chunk)
                async with aclosing(
                    parser.iter_chunks(response.aiter_text())
                ) as chunks:
                    async for chunk in chunks:
                        if chunk.chunk_type is StreamChunkType.CONTENT:
                            transcript.append_to(placeholder.id, chunk.content or "")
                            await _notify(on_update, placeholder)
                        elif chunk.chunk_type is StreamChunkType.ERROR:
                            turn_logger.warning(
                                "Relay stream failed", error=chunk.error
                            )
                            return self._fail(
                                placeholder, chunk.error or UNEXPECTED_ERROR
                            )
                        else:
                            break
        except httpx.HTTPError as e:
            turn_logger.error(
                "Transport error during turn",
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return self._fail(placeholder, UNEXPECTED_ERROR)
        except BaseException as e:
            # Cancelled turn or failing callback: never leave a live placeholder
            turn_logger.warning(
                "Turn aborted", error_type=type(e).__name__, error_message=str(e)
            )
            transcript.remove(placeholder.id)
            raise

        transcript.finalize(placeholder.id)
        await _notify(on_update, placeholder)
        stats = parser.get_stats()
        turn_logger.info(
            "Turn completed",
            fragments=stats.content_chunks,
            characters=stats.total_characters,
        )
        return placeholder

    def _fail(self, placeholder: Message, message: str) -> None:
        self.session.transcript.remove(placeholder.id)
        self.session.error = message
        self._set_state(TurnState.ERROR)
        return None

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> ChatService:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


async def _notify(on_update: UpdateCallback | None, message: Message) -> None:
    if on_update is None:
        return
    result = on_update(message)
    if inspect.isawaitable(result):
        await result


def _error_message(body: bytes) -> str | None:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"] or None
    return None
