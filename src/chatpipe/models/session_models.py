"""
Conversation models for chatpipe.
Provides Pydantic models for sessions and messages with runtime validation.
"""

from __future__ import annotations

import uuid

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from chatpipe.core.constants import ROLE_ASSISTANT, ROLE_USER

MessageRole = Literal["user", "assistant"]


def new_message_id() -> str:
    """Generate a locally unique message id. Ids are never reused."""
    return uuid.uuid4().hex


class Session(BaseModel):
    """Conversation session metadata, owned by the session store."""

    id: str = Field(..., min_length=1, description="Unique session identifier")
    title: str = Field(..., min_length=1, max_length=200)
    last_active_at: datetime = Field(default_factory=datetime.now)
    message_count: int = Field(default=0, ge=0, description="Non-negative message count")
    last_message: str | None = Field(default=None, description="Preview of the latest message")

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        """Titles are stored without surrounding whitespace."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped


class Message(BaseModel):
    """One entry of a conversation.

    ``streaming`` is only ever true on the in-flight assistant placeholder.
    Once it clears the message is final and the pipeline never edits it again.
    """

    id: str = Field(default_factory=new_message_id)
    role: MessageRole
    content: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    streaming: bool = False

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=ROLE_USER, content=content)

    @classmethod
    def placeholder(cls) -> Message:
        """Empty assistant message awaiting a streamed reply."""
        return cls(role=ROLE_ASSISTANT, content="", streaming=True)

    @property
    def is_user(self) -> bool:
        return self.role == ROLE_USER


__all__ = ["Message", "MessageRole", "Session", "new_message_id"]
