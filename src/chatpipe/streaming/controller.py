"""
Per-conversation message state and the exchange state machine.

One MessageStreamController owns one conversation's message list. An
exchange moves through

    idle -> awaiting-session -> sending -> streaming -> completed | failed

and every exchange ends with exactly one terminal transition, which is also
the only place the placeholder's ``streaming`` flag is cleared.
"""

from __future__ import annotations

import time
import uuid

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from chatpipe.core.constants import CANCELLED_REPLY_NOTICE
from chatpipe.models.error_models import (
    ErrorCategory,
    ExchangeInFlightError,
    FailureKind,
    InvalidStateError,
    StreamConnectionError,
    get_error_message,
)
from chatpipe.models.event_models import Frame
from chatpipe.models.session_models import Message
from chatpipe.streaming.error_classifier import describe_error
from chatpipe.utils.logger import LoggerHook, ObservabilityHook


class ExchangeState(str, Enum):
    """Lifecycle of one send."""

    IDLE = "idle"
    AWAITING_SESSION = "awaiting-session"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


#: States in which a reply placeholder exists and is still streaming
STREAMING_STATES = frozenset({ExchangeState.SENDING, ExchangeState.STREAMING})

#: States in which a new send must be refused
IN_FLIGHT_STATES = STREAMING_STATES | {ExchangeState.AWAITING_SESSION}

TERMINAL_STATES = frozenset({ExchangeState.COMPLETED, ExchangeState.FAILED})


@dataclass
class Exchange:
    """Bookkeeping for one user message and its assistant reply."""

    user_message_id: str
    placeholder_id: str
    session_id: str
    user_text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ExchangeState = ExchangeState.SENDING
    error_category: ErrorCategory | None = None
    failure_kind: FailureKind | None = None
    used_fallback: bool = False
    used_local_reply: bool = False
    cancelled: bool = False
    started_at: float = field(default_factory=time.monotonic)
    ended_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration_ms(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at) * 1000


@dataclass(frozen=True)
class ControllerSnapshot:
    """What the presentation layer sees after every change."""

    session_id: str | None
    state: ExchangeState
    is_streaming: bool
    messages: tuple[Message, ...]


SnapshotListener = Callable[[ControllerSnapshot], None]


class MessageStreamController:
    """Authoritative state for one conversation's in-flight exchange.

    All mutations happen synchronously between transport suspensions, so no
    locking is needed in the single-threaded event loop.
    """

    def __init__(self, session_id: str | None = None, hook: ObservabilityHook | None = None):
        self.session_id = session_id
        self._hook: ObservabilityHook = hook or LoggerHook()
        self._messages: list[Message] = []
        self._by_id: dict[str, Message] = {}
        self._state = ExchangeState.IDLE
        self._exchange: Exchange | None = None
        self._listeners: list[SnapshotListener] = []

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExchangeState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        """True while a reply placeholder is in flight. Drives send-button disabling."""
        return self._state in STREAMING_STATES

    @property
    def in_flight(self) -> bool:
        """True from the moment a send is accepted until its terminal transition."""
        return self._state in IN_FLIGHT_STATES

    @property
    def current_exchange(self) -> Exchange | None:
        return self._exchange

    @property
    def messages(self) -> tuple[Message, ...]:
        """Copies of the message list; only the controller mutates the originals."""
        return tuple(message.model_copy() for message in self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot(
            session_id=self.session_id,
            state=self._state,
            is_streaming=self.is_streaming,
            messages=self.messages,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener for state changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Session attachment
    # ------------------------------------------------------------------

    def mark_awaiting_session(self) -> None:
        """A send arrived before any session exists; one is being created."""
        self._require_not_in_flight()
        self._set_state(ExchangeState.AWAITING_SESSION)
        self._hook("debug", "session.awaiting")
        self._emit()

    def attach_session(self, session_id: str) -> None:
        if self.is_streaming:
            raise ExchangeInFlightError("cannot change session while a reply is streaming")
        if not session_id.strip():
            raise ValueError("session_id must not be blank")
        self.session_id = session_id
        self._hook("debug", "session.attached", session_id=session_id)

    def abort_awaiting_session(self) -> None:
        """Session creation failed; return to idle without touching the message list."""
        if self._state is ExchangeState.AWAITING_SESSION:
            self._set_state(ExchangeState.IDLE)
            self._hook("warning", "session.unavailable")
            self._emit()

    def load_history(self, messages: Iterable[Message]) -> None:
        """Seed an empty, idle conversation with stored messages."""
        if self.in_flight or self._messages:
            raise InvalidStateError("history can only be loaded into an empty idle conversation")
        for message in messages:
            self._append(message.model_copy(update={"streaming": False}))
        self._hook("debug", "history.loaded", session_id=self.session_id, count=len(self._messages))
        self._emit()

    # ------------------------------------------------------------------
    # Exchange lifecycle
    # ------------------------------------------------------------------

    def begin_exchange(self, text: str) -> Exchange:
        """Append the user message and an empty streaming placeholder."""
        if self.is_streaming:
            raise ExchangeInFlightError("a reply is already streaming in this conversation")
        if not text.strip():
            raise ValueError("message text must not be blank")
        if not self.session_id or not self.session_id.strip():
            raise InvalidStateError("no session attached")

        user_message = Message.user(text)
        placeholder = Message.placeholder()
        self._append(user_message)
        self._append(placeholder)

        self._exchange = Exchange(
            user_message_id=user_message.id,
            placeholder_id=placeholder.id,
            session_id=self.session_id,
            user_text=text,
        )
        self._set_state(ExchangeState.SENDING)
        self._hook("info", "exchange.started", session_id=self.session_id, exchange_id=self._exchange.id)
        self._emit()
        return self._exchange

    def mark_transport_accepted(self) -> None:
        if self._state is ExchangeState.SENDING:
            self._set_state(ExchangeState.STREAMING)
            self._hook("debug", "exchange.streaming", session_id=self.session_id)
            self._emit()

    def handle_frame(self, frame: Frame) -> bool:
        """Apply one decoded frame.

        Returns:
            True when the exchange is over and the caller should stop reading
        """
        if not self.is_streaming:
            self._hook("debug", "frame.ignored", event_type=frame.event, state=self._state.value)
            return True

        if self._state is ExchangeState.SENDING:
            self._set_state(ExchangeState.STREAMING)

        if frame.is_message:
            self._append_content(frame.data)
            self._emit()
            return False

        if frame.is_error:
            category, explanation = describe_error(frame.data)
            exchange = self._active_exchange()
            exchange.error_category = category
            exchange.failure_kind = FailureKind.UPSTREAM_ERROR
            self._placeholder().content = explanation
            self._hook("warning", "frame.error", session_id=self.session_id, category=category.value)
            self._finish(ExchangeState.FAILED)
            return True

        if frame.is_done:
            self._finish(ExchangeState.COMPLETED)
            return True

        self._hook("debug", "frame.unhandled", event_type=frame.event)
        return False

    def complete_stream(self) -> bool:
        """The [DONE] sentinel arrived: keep accumulated content as the reply."""
        if not self.is_streaming:
            return False
        return self._finish(ExchangeState.COMPLETED)

    def finish_stream_eof(self) -> bool:
        """The stream closed without a terminal frame or sentinel.

        Accumulated content is accepted as the reply. With nothing received
        the stream is treated as broken so the caller can fall back.
        """
        if not self.is_streaming:
            return False
        if not self._placeholder().content:
            raise StreamConnectionError("stream ended before any reply content arrived")
        self._hook("warning", "stream.eof_without_done", session_id=self.session_id)
        return self._finish(ExchangeState.COMPLETED)

    def apply_fallback_result(self, content: str) -> bool:
        """Install the one-shot reply, replacing any partial streamed text."""
        if not self.is_streaming:
            return False
        self._active_exchange().used_fallback = True
        self._placeholder().content = content
        return self._finish(ExchangeState.COMPLETED)

    def apply_local_reply(
        self, content: str, category: ErrorCategory, kind: FailureKind | None = None
    ) -> bool:
        """Install a locally generated substitute after every remote path failed."""
        if not self.is_streaming:
            return False
        exchange = self._active_exchange()
        exchange.used_fallback = True
        exchange.used_local_reply = True
        exchange.error_category = category
        exchange.failure_kind = kind
        self._placeholder().content = content
        return self._finish(ExchangeState.FAILED)

    def cancel_exchange(self, reason: str | None = None) -> bool:
        """Stop the in-flight reply, keeping whatever text already arrived."""
        if self._state is ExchangeState.AWAITING_SESSION:
            self.abort_awaiting_session()
            return True
        if not self.is_streaming:
            return False
        exchange = self._active_exchange()
        exchange.cancelled = True
        placeholder = self._placeholder()
        if not placeholder.content:
            placeholder.content = CANCELLED_REPLY_NOTICE
        self._hook("info", "exchange.cancelled", session_id=self.session_id, reason=reason)
        return self._finish(ExchangeState.FAILED)

    def ensure_finalized(self) -> bool:
        """Last-resort terminal transition so no placeholder is left streaming."""
        if not self.is_streaming:
            return False
        placeholder = self._placeholder()
        if not placeholder.content:
            placeholder.content = get_error_message(ErrorCategory.UNKNOWN)
        exchange = self._active_exchange()
        exchange.error_category = exchange.error_category or ErrorCategory.UNKNOWN
        self._hook("error", "exchange.force_finalized", session_id=self.session_id)
        return self._finish(ExchangeState.FAILED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_not_in_flight(self) -> None:
        if self.in_flight:
            raise ExchangeInFlightError("an exchange is already in flight")

    def _set_state(self, state: ExchangeState) -> None:
        self._state = state
        if self._exchange is not None and not self._exchange.is_terminal:
            if state in STREAMING_STATES or state in TERMINAL_STATES:
                self._exchange.state = state

    def _append(self, message: Message) -> None:
        if message.id in self._by_id:
            raise InvalidStateError(f"duplicate message id {message.id}")
        self._messages.append(message)
        self._by_id[message.id] = message

    def _active_exchange(self) -> Exchange:
        if self._exchange is None:
            raise InvalidStateError("no exchange in flight")
        return self._exchange

    def _placeholder(self) -> Message:
        return self._by_id[self._active_exchange().placeholder_id]

    def _append_content(self, text: str) -> None:
        placeholder = self._placeholder()
        if not placeholder.streaming:
            raise InvalidStateError("finalized messages are immutable")
        placeholder.content += text

    def _finish(self, state: ExchangeState) -> bool:
        exchange = self._exchange
        if exchange is None or exchange.is_terminal:
            self._hook("warning", "exchange.duplicate_terminal", session_id=self.session_id, state=state.value)
            return False

        self._placeholder().streaming = False
        exchange.ended_at = time.monotonic()
        self._set_state(state)
        self._hook(
            "info",
            "exchange.finished",
            session_id=self.session_id,
            exchange_id=exchange.id,
            state=state.value,
            fallback=exchange.used_fallback,
            category=exchange.error_category.value if exchange.error_category else None,
        )
        self._emit()
        return True

    def _emit(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self._hook("warning", "listener.failed", error=str(e))


__all__ = [
    "IN_FLIGHT_STATES",
    "ControllerSnapshot",
    "Exchange",
    "ExchangeState",
    "MessageStreamController",
    "SnapshotListener",
]
