"""Tests for application bootstrap and AppState wiring."""

from __future__ import annotations

import json

from unittest.mock import patch

import httpx
import pytest

from chatpipe.app.bootstrap import initialize_application, load_settings
from chatpipe.core.constants import Settings
from chatpipe.integrations.session_store import InMemorySessionStore
from chatpipe.streaming.controller import ExchangeState

from conftest import RecordingHook


def _backend(stream_status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/chat/stream":
            if stream_status != 200:
                return httpx.Response(stream_status)
            body = b"event: message\ndata: streamed\n\ndata: [DONE]\n\n"
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})
        if request.url.path == "/api/chat/send":
            message = json.loads(request.content)["message"]
            return httpx.Response(200, json={"content": f"one-shot: {message}"})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class TestInitializeApplication:
    """Tests for initialize_application."""

    @pytest.mark.asyncio
    async def test_streaming_round_trip(self, settings: Settings, hook: RecordingHook) -> None:
        state = await initialize_application(settings=settings, transport=_backend(), hook=hook)
        try:
            exchange = await state.manager.send("hello")
        finally:
            await state.aclose()

        assert exchange is not None
        assert exchange.state is ExchangeState.COMPLETED
        assert state.manager.messages[-1].content == "streamed"
        assert state.http_client.is_closed

    @pytest.mark.asyncio
    async def test_stream_rejection_uses_one_shot(self, settings: Settings, hook: RecordingHook) -> None:
        state = await initialize_application(settings=settings, transport=_backend(stream_status=503), hook=hook)
        try:
            exchange = await state.manager.send("hello")
        finally:
            await state.aclose()

        assert exchange is not None
        assert exchange.used_fallback is True
        assert state.manager.messages[-1].content == "one-shot: hello"

    @pytest.mark.asyncio
    async def test_streaming_disabled(self, hook: RecordingHook) -> None:
        settings = Settings(_env_file=None, supports_streaming_transport=False, settle_delay_seconds=0.01)

        state = await initialize_application(settings=settings, transport=_backend(), hook=hook)
        try:
            await state.manager.send("hello")
        finally:
            await state.aclose()

        assert state.selector.streaming_enabled is False
        assert state.manager.messages[-1].content == "one-shot: hello"

    @pytest.mark.asyncio
    async def test_existing_sessions_are_activated(self, settings: Settings, hook: RecordingHook) -> None:
        store = InMemorySessionStore()
        session = await store.create_session("existing")

        state = await initialize_application(settings=settings, store=store, transport=_backend(), hook=hook)
        await state.aclose()

        assert state.manager.active_session_id == session.id


class TestLoadSettings:
    """Tests for load_settings."""

    def test_invalid_configuration_exits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CHATPIPE_BASE_URL", "not-a-url")

        with patch("chatpipe.app.bootstrap.load_dotenv"), pytest.raises(SystemExit) as exc_info:
            load_settings()

        assert exc_info.value.code == 1

    def test_valid_configuration(self) -> None:
        with patch("chatpipe.app.bootstrap.load_dotenv"):
            settings = load_settings()

        assert settings.base_url.startswith("http")
