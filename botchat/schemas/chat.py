"""Chat directory shapes and the UI message model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class AccessMode(StrEnum):
    """How the session may interact with a conversation."""

    PARTICIPANT = "participant"
    OBSERVED = "observed"  # visible but not writable


class Author(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageState(StrEnum):
    THINKING = "thinking"
    GENERATING = "generating"
    COMPLETE = "complete"  # terminal


# ── Directory (consumed from the API) ────────────────────────────────


class Bot(BaseModel):
    id: str
    display_name: str | None = None
    avatar_url: str | None = None
    type: str | None = None

    @property
    def label(self) -> str:
        return (self.display_name or "").strip() or self.id


class ChatSummary(BaseModel):
    """A conversation as listed by the directory."""

    id: str
    bot_id: str = ""
    kind: str = "direct"
    title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    access_mode: AccessMode = AccessMode.PARTICIPANT
    participant_role: str | None = None
    last_observed_at: datetime | None = None

    @field_validator("access_mode", mode="before")
    @classmethod
    def _normalize_access_mode(cls, value: Any) -> Any:
        # Server reports observed chats as "channel_identity_observed"
        if value is None or value == "":
            return AccessMode.PARTICIPANT
        if isinstance(value, str) and value.endswith("observed"):
            return AccessMode.OBSERVED
        return value


class ModelMessage(BaseModel):
    role: str = ""
    content: Any = None


class ChatResponse(BaseModel):
    messages: list[ModelMessage] = Field(default_factory=list)
    skills: list[str] | None = None
    model: str | None = None
    provider: str | None = None


class PersistedChatMessage(BaseModel):
    id: str = ""
    chat_id: str = ""
    bot_id: str = ""
    role: str
    content: Any = None
    created_at: str | None = None


# ── UI state ─────────────────────────────────────────────────────────


def new_message_id() -> str:
    return uuid.uuid4().hex


class ChatMessage(BaseModel):
    """One rendered message of the active conversation.

    The id is stable across state transitions; the store mutates text and
    state in place.
    """

    id: str = Field(default_factory=new_message_id)
    author: Author
    text: str = ""
    state: MessageState = MessageState.COMPLETE
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    label: str | None = None  # bot display label for assistant messages

    @property
    def is_complete(self) -> bool:
        return self.state == MessageState.COMPLETE
