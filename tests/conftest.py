"""Shared test fixtures for the chatpipe test suite.

Provides a recording observability hook, settings isolation, and small
fakes for the completion service and streaming transport.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock

import pytest

from chatpipe.core.constants import Settings, get_settings
from chatpipe.models.event_models import CompletionResult, StreamRequest
from chatpipe.streaming.controller import MessageStreamController

# ============================================================================
# Test Isolation: Settings Cache
# ============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and CHATPIPE_* overrides between tests."""
    for key in ("CHATPIPE_BASE_URL", "CHATPIPE_DEBUG", "CHATPIPE_LOG_DIR", "CHATPIPE_LOG_CONTENT"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with fast timers and no .env lookup."""
    return Settings(_env_file=None, settle_delay_seconds=0.01)


# ============================================================================
# Observability
# ============================================================================


@dataclass
class RecordingHook:
    """ObservabilityHook that keeps every event for assertions."""

    events: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    def __call__(self, level: str, event: str, **fields: Any) -> None:
        self.events.append((level, event, fields))

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]

    def find(self, event: str) -> list[dict[str, Any]]:
        return [fields for _, name, fields in self.events if name == event]


@pytest.fixture
def hook() -> RecordingHook:
    return RecordingHook()


@pytest.fixture
def controller(hook: RecordingHook) -> MessageStreamController:
    """Controller attached to a session and ready to send."""
    return MessageStreamController(session_id="session-1", hook=hook)


# ============================================================================
# Transport fakes
# ============================================================================


class ScriptedTransport:
    """StreamingTransport that replays a fixed list of chunks.

    ``fail_on_open`` raises before any chunk; ``fail_after`` raises once that
    many chunks have been yielded.
    """

    def __init__(
        self,
        chunks: Iterable[bytes | str] = (),
        fail_on_open: Exception | None = None,
        fail_after: int | None = None,
        failure: Exception | None = None,
    ):
        self.chunks = list(chunks)
        self.fail_on_open = fail_on_open
        self.fail_after = fail_after
        self.failure = failure or ConnectionError("connection reset by peer")
        self.requests: list[StreamRequest] = []
        self.chunks_read = 0
        self.closed = False

    @asynccontextmanager
    async def open(self, request: StreamRequest) -> AsyncIterator[AsyncIterator[bytes | str]]:
        self.requests.append(request)
        if self.fail_on_open is not None:
            raise self.fail_on_open
        try:
            yield self._iterate()
        finally:
            self.closed = True

    async def _iterate(self) -> AsyncIterator[bytes | str]:
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise self.failure
            self.chunks_read += 1
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise self.failure


@pytest.fixture
def one_shot() -> AsyncMock:
    """CompletionService mock returning a fixed reply."""
    service = AsyncMock()
    service.send_one_shot.return_value = CompletionResult(content="one-shot reply")
    return service


@pytest.fixture
def make_transport() -> type[ScriptedTransport]:
    """Factory for ScriptedTransport instances."""
    return ScriptedTransport
