"""
Conversation manager: sessions, the active conversation, and sends.

Each session gets its own MessageStreamController, so a reply streaming in
one conversation keeps running when the user switches to another. Switching
never cancels; only an explicit cancel (or deleting the session) does.
"""

from __future__ import annotations

import re

from dataclasses import dataclass
from datetime import datetime

from chatpipe.core.constants import (
    DEFAULT_SESSION_TITLE_PREFIX,
    SESSION_TITLE_MAX_CHARS,
    Settings,
    get_settings,
)
from chatpipe.integrations.session_store import SessionStore
from chatpipe.models.error_models import SessionUnavailableError
from chatpipe.models.session_models import Message, Session
from chatpipe.streaming.cancellation import CancellationToken
from chatpipe.streaming.controller import Exchange, ExchangeState, MessageStreamController
from chatpipe.streaming.transport import TransportSelector
from chatpipe.utils.logger import ExchangeSummary, LoggerHook, ObservabilityHook, logger


def default_session_title(now: datetime | None = None) -> str:
    """Title for a session created on demand, e.g. "New chat 2024-05-01 14:03:22"."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return f"{DEFAULT_SESSION_TITLE_PREFIX} {stamp}"


def derive_title(text: str, max_chars: int = SESSION_TITLE_MAX_CHARS) -> str:
    """Short session title from the first user message."""
    collapsed = re.sub(r"\s+", " ", text).strip()
    if len(collapsed) <= max_chars:
        return collapsed
    return collapsed[: max_chars - 3].rstrip() + "..."


@dataclass
class ConversationContext:
    """Per-session state held by the manager."""

    controller: MessageStreamController
    history_loaded: bool = False
    loading_history: bool = False
    auto_titled: bool = False
    cancellation_token: CancellationToken | None = None


class ConversationManager:
    """Owns the session list and routes sends to the active conversation."""

    def __init__(
        self,
        store: SessionStore,
        selector: TransportSelector,
        hook: ObservabilityHook | None = None,
        settings: Settings | None = None,
    ):
        self._store = store
        self._selector = selector
        self._hook: ObservabilityHook = hook or LoggerHook()
        self._settings = settings or get_settings()
        self.sessions: list[Session] = []
        self.active_session_id: str | None = None
        self._contexts: dict[str, ConversationContext] = {}
        # Conversation shown before any session exists
        self._draft = self._new_controller()

    # ------------------------------------------------------------------
    # UI signals
    # ------------------------------------------------------------------

    @property
    def active_controller(self) -> MessageStreamController:
        context = self._active_context()
        return context.controller if context else self._draft

    @property
    def is_streaming(self) -> bool:
        """True while the active conversation has a send in flight."""
        return self.active_controller.in_flight

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.active_controller.messages

    def controller_for(self, session_id: str) -> MessageStreamController:
        return self._context(session_id).controller

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def load_sessions(self) -> list[Session]:
        """Refresh the session list and auto-select the most recent one if none is active."""
        self.sessions = await self._store.list_sessions()
        self._hook("info", "sessions.loaded", count=len(self.sessions))

        if self.active_session_id is None and self.sessions:
            await self.select(self._most_recent().id)
        return self.sessions

    async def select(self, session_id: str) -> MessageStreamController:
        """Make a session active, loading its history on first activation."""
        context = self._context(session_id)
        self.active_session_id = session_id

        if (
            not context.history_loaded
            and not context.loading_history
            and not context.controller.in_flight
            and len(context.controller) == 0
        ):
            # Sends are refused until the stored messages are in place
            context.loading_history = True
            try:
                history = await self._store.list_messages(session_id, self._settings.history_page_size, 0)
            finally:
                context.loading_history = False
            context.controller.load_history(history)
            context.history_loaded = True

        self._hook("debug", "session.selected", session_id=session_id)
        return context.controller

    async def create_session(self, title: str | None = None) -> Session:
        session = await self._store.create_session(title or default_session_title())
        self.sessions.insert(0, session)
        self._contexts[session.id] = ConversationContext(self._new_controller(session.id), history_loaded=True)
        self.active_session_id = session.id
        self._hook("info", "session.created", session_id=session.id)
        return session

    async def rename_session(self, session_id: str, title: str) -> Session:
        if not title.strip():
            raise ValueError("title must not be blank")
        renamed = await self._store.rename_session(session_id, title.strip())
        self._replace_session(renamed)
        if session_id in self._contexts:
            self._contexts[session_id].auto_titled = False
        return renamed

    async def delete_session(self, session_id: str) -> None:
        """Delete a session, cancelling its in-flight reply first."""
        context = self._contexts.get(session_id)
        if context is not None and context.controller.in_flight:
            await self._cancel_context(context, "session deleted")

        await self._store.delete_session(session_id)
        self.sessions = [s for s in self.sessions if s.id != session_id]
        self._contexts.pop(session_id, None)
        self._hook("info", "session.deleted", session_id=session_id)

        if self.active_session_id == session_id:
            self.active_session_id = None
            if self.sessions:
                await self.select(self._most_recent().id)

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    async def send(self, text: str, cancellation_token: CancellationToken | None = None) -> Exchange | None:
        """Send a message in the active conversation.

        Returns None for blank text or while the active conversation is busy.

        Raises:
            SessionUnavailableError: No session was active and one could not be created
        """
        if not text.strip():
            return None

        context = self._active_context()
        controller = context.controller if context else self._draft
        if controller.in_flight:
            self._hook("debug", "send.rejected", session_id=controller.session_id, state=controller.state.value)
            return None
        if context is not None and context.loading_history:
            self._hook("debug", "send.rejected", session_id=controller.session_id, reason="loading history")
            return None

        if context is None:
            context = await self._create_for_send(controller)

        token = cancellation_token or CancellationToken()
        context.cancellation_token = token
        try:
            exchange = await self._selector.send(context.controller, text, token)
        finally:
            context.cancellation_token = None

        await self._after_exchange(context, exchange, text)
        return exchange

    async def cancel(self, session_id: str | None = None, reason: str = "cancelled by user") -> bool:
        """Explicitly cancel the in-flight reply of a conversation (active by default)."""
        target = session_id or self.active_session_id
        if target is None or target not in self._contexts:
            return False
        context = self._contexts[target]
        if not context.controller.in_flight:
            return False
        await self._cancel_context(context, reason)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_controller(self, session_id: str | None = None) -> MessageStreamController:
        return MessageStreamController(session_id=session_id, hook=self._hook)

    def _active_context(self) -> ConversationContext | None:
        if self.active_session_id is None:
            return None
        return self._contexts.get(self.active_session_id)

    def _context(self, session_id: str) -> ConversationContext:
        if session_id not in self._contexts:
            if not any(s.id == session_id for s in self.sessions):
                raise KeyError(f"unknown session: {session_id}")
            self._contexts[session_id] = ConversationContext(self._new_controller(session_id))
        return self._contexts[session_id]

    def _most_recent(self) -> Session:
        return max(self.sessions, key=lambda s: s.last_active_at)

    def _replace_session(self, session: Session) -> None:
        self.sessions = [session if s.id == session.id else s for s in self.sessions]

    async def _create_for_send(self, controller: MessageStreamController) -> ConversationContext:
        controller.mark_awaiting_session()
        try:
            session = await self._store.create_session(default_session_title())
        except Exception as e:
            controller.abort_awaiting_session()
            raise SessionUnavailableError(f"could not create a session: {e}") from e

        controller.attach_session(session.id)
        context = ConversationContext(controller, history_loaded=True, auto_titled=True)
        self._contexts[session.id] = context
        self.sessions.insert(0, session)
        self.active_session_id = session.id
        self._draft = self._new_controller()
        self._hook("info", "session.created", session_id=session.id, on_demand=True)
        return context

    async def _cancel_context(self, context: ConversationContext, reason: str) -> None:
        if context.cancellation_token is not None:
            await context.cancellation_token.cancel(reason)
        else:
            context.controller.cancel_exchange(reason)

    async def _after_exchange(self, context: ConversationContext, exchange: Exchange, text: str) -> None:
        session_id = exchange.session_id
        reply = next((m for m in context.controller.messages if m.id == exchange.placeholder_id), None)

        logger.log_exchange(
            ExchangeSummary(
                user_input=text,
                response=reply.content if reply else "",
                outcome=exchange.state.value,
                used_fallback=exchange.used_fallback,
                duration_ms=exchange.duration_ms,
                session_id=session_id,
            )
        )

        if session_id not in self._contexts:
            # Deleted while the reply was in flight
            return

        if self._settings.persist_exchanges:
            await self._persist(context, exchange)

        if context.auto_titled and exchange.state is ExchangeState.COMPLETED:
            context.auto_titled = False
            try:
                renamed = await self._store.rename_session(session_id, derive_title(text))
            except Exception as e:
                self._hook("warning", "session.title_failed", session_id=session_id, error=str(e))
            else:
                self._replace_session(renamed)

    async def _persist(self, context: ConversationContext, exchange: Exchange) -> None:
        wanted = (exchange.user_message_id, exchange.placeholder_id)
        by_id = {m.id: m for m in context.controller.messages if m.id in wanted}
        for message_id in wanted:
            try:
                await self._store.append_message(exchange.session_id, by_id[message_id])
            except Exception as e:
                self._hook("error", "persist.failed", session_id=exchange.session_id, error=str(e))
                return


__all__ = [
    "ConversationContext",
    "ConversationManager",
    "default_session_title",
    "derive_title",
]
