# chat_relay/history/models.py
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]


class Message(BaseModel):
    """
    One transcript entry. Content may only grow while ``streaming`` is set.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    streaming: bool = False

    def append(self, text: str) -> None:
        if not self.streaming:
            raise ValueError(f"Message {self.id} is finalized and immutable")
        self.content += text

    def finalize(self) -> None:
        self.streaming = False

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class Transcript:
    """
    Ordered conversation history.

    Insertion order is the turn order sent upstream. Entries are only ever
    appended, removed individually (a discarded placeholder) or cleared.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def streaming_message(self) -> Message | None:
        return next((m for m in self._messages if m.streaming), None)

    def get(self, message_id: str) -> Message:
        for message in self._messages:
            if message.id == message_id:
                return message
        raise KeyError(message_id)

    def add_user_message(self, content: str) -> Message:
        message = Message(role="user", content=content)
        self._messages.append(message)
        return message

    def start_assistant_message(self) -> Message:
        """Append an empty assistant placeholder in the streaming state."""
        if self.streaming_message is not None:
            raise ValueError("Another assistant message is already streaming")
        message = Message(role="assistant", streaming=True)
        self._messages.append(message)
        return message

    def append_to(self, message_id: str, text: str) -> Message:
        message = self.get(message_id)
        message.append(text)
        return message

    def finalize(self, message_id: str) -> Message:
        message = self.get(message_id)
        message.finalize()
        return message

    def remove(self, message_id: str) -> None:
        self._messages = [m for m in self._messages if m.id != message_id]

    def clear(self) -> None:
        self._messages.clear()

    def to_payload(self, *, include_streaming: bool = False) -> list[dict[str, str]]:
        """Role/content pairs in turn order, skipping the live placeholder."""
        return [
            m.to_payload()
            for m in self._messages
            if include_streaming or not m.streaming
        ]
