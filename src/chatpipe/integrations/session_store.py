"""
Session store interface and an in-memory reference implementation.

The storage format is owned by the host application; the pipeline only
needs these six operations.
"""

from __future__ import annotations

import uuid

from datetime import datetime
from typing import Protocol, runtime_checkable

from chatpipe.core.constants import LOG_PREVIEW_LENGTH
from chatpipe.models.session_models import Message, Session


@runtime_checkable
class SessionStore(Protocol):
    """Persistence collaborator for sessions and their messages."""

    async def create_session(self, title: str) -> Session: ...

    async def list_sessions(self) -> list[Session]: ...

    async def rename_session(self, session_id: str, title: str) -> Session: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def list_messages(self, session_id: str, limit: int, offset: int) -> list[Message]: ...

    async def append_message(self, session_id: str, message: Message) -> None: ...


class InMemorySessionStore:
    """Dictionary-backed SessionStore.

    Sessions are listed most recently active first. Unknown session ids raise
    KeyError, mirroring a not-found from a real backend.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, list[Message]] = {}

    async def create_session(self, title: str) -> Session:
        session = Session(id=uuid.uuid4().hex, title=title)
        self._sessions[session.id] = session
        self._messages[session.id] = []
        return session

    async def list_sessions(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.last_active_at, reverse=True)

    async def rename_session(self, session_id: str, title: str) -> Session:
        session = self._get(session_id)
        renamed = session.model_copy(update={"title": title.strip() or session.title})
        self._sessions[session_id] = renamed
        return renamed

    async def delete_session(self, session_id: str) -> None:
        self._get(session_id)
        del self._sessions[session_id]
        del self._messages[session_id]

    async def list_messages(self, session_id: str, limit: int, offset: int) -> list[Message]:
        self._get(session_id)
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be >= 0")
        messages = self._messages[session_id][offset : offset + limit]
        return [message.model_copy() for message in messages]

    async def append_message(self, session_id: str, message: Message) -> None:
        session = self._get(session_id)
        self._messages[session_id].append(message.model_copy())
        self._sessions[session_id] = session.model_copy(
            update={
                "message_count": session.message_count + 1,
                "last_message": message.content[:LOG_PREVIEW_LENGTH],
                "last_active_at": datetime.now(),
            }
        )

    def _get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"session not found: {session_id}") from None


__all__ = ["InMemorySessionStore", "SessionStore"]
