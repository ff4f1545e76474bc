"""Tests for transport selection: stream, one-shot fallback and local replies."""

from __future__ import annotations

import asyncio
import json

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import httpx
import pytest

from chatpipe.models.error_models import (
    ERROR_CATEGORY_MESSAGES,
    ErrorCategory,
    FailureKind,
    InvalidStateError,
    StreamConnectionError,
    UpstreamError,
)
from chatpipe.models.event_models import CompletionResult
from chatpipe.streaming.cancellation import CancellationToken
from chatpipe.streaming.controller import ExchangeState, MessageStreamController
from chatpipe.streaming.fallback_replies import HELP_REPLY, LocalReplyRules, ReplyRule
from chatpipe.streaming.transport import HttpxStreamingTransport, TransportSelector

from conftest import RecordingHook, ScriptedTransport


def _reply(controller: MessageStreamController) -> str:
    return controller.messages[-1].content


class TestStreamingPath:
    """Tests for replies delivered over the stream."""

    @pytest.mark.asyncio
    async def test_frames_then_done_sentinel(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        """Two message frames then [DONE] give the concatenated reply."""
        transport = ScriptedTransport([b"event: message\ndata: A\n\n", b"event: message\ndata: B\n\ndata: [DONE]\n"])
        selector = TransportSelector(one_shot, transport, hook=hook)

        exchange = await selector.send(controller, "hi")

        assert _reply(controller) == "AB"
        assert controller.messages[-1].streaming is False
        assert exchange.state is ExchangeState.COMPLETED
        assert exchange.used_fallback is False
        one_shot.send_one_shot.assert_not_called()
        assert transport.requests[0].to_payload() == {"sessionId": "session-1", "message": "hi"}

    @pytest.mark.asyncio
    async def test_split_chunks(self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook) -> None:
        transport = ScriptedTransport(["event: message\ndata: Hel", "lo\n\n", "event: done\ndata: \n"])
        selector = TransportSelector(one_shot, transport, hook=hook)

        await selector.send(controller, "hi")

        assert _reply(controller) == "Hello"

    @pytest.mark.asyncio
    async def test_bytes_after_sentinel_are_not_read(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        transport = ScriptedTransport(
            [b"event: message\ndata: A\ndata: [DONE]\n", b"event: message\ndata: ignored\n"]
        )
        selector = TransportSelector(one_shot, transport, hook=hook)

        await selector.send(controller, "hi")

        assert _reply(controller) == "A"
        assert transport.chunks_read == 1
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_error_frame_ends_exchange_without_fallback(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        transport = ScriptedTransport([b"event: error\ndata: timeout\n\n"])
        selector = TransportSelector(one_shot, transport, hook=hook)

        exchange = await selector.send(controller, "hi")

        assert _reply(controller) == ERROR_CATEGORY_MESSAGES[ErrorCategory.TIMEOUT]
        assert exchange.state is ExchangeState.FAILED
        one_shot.send_one_shot.assert_not_called()

    @pytest.mark.asyncio
    async def test_eof_with_content_completes(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        transport = ScriptedTransport([b"event: message\ndata: partial\n"])
        selector = TransportSelector(one_shot, transport, hook=hook)

        exchange = await selector.send(controller, "hi")

        assert exchange.state is ExchangeState.COMPLETED
        assert _reply(controller) == "partial"
        one_shot.send_one_shot.assert_not_called()


class TestOneShotFallback:
    """Tests for demotion to the one-shot call."""

    @pytest.mark.asyncio
    async def test_no_streaming_capability_goes_straight_to_one_shot(
        self, controller: MessageStreamController, hook: RecordingHook
    ) -> None:
        service = AsyncMock()
        service.send_one_shot.return_value = CompletionResult(content="Hi")
        transport = ScriptedTransport([b"event: message\ndata: never\n"])
        selector = TransportSelector(service, transport, supports_streaming_transport=False, hook=hook)

        exchange = await selector.send(controller, "hello")

        assert _reply(controller) == "Hi"
        assert controller.messages[-1].streaming is False
        assert exchange.used_fallback is True
        assert transport.requests == []
        service.send_one_shot.assert_awaited_once_with("session-1", "hello")

    @pytest.mark.asyncio
    async def test_open_failure_invokes_one_shot_exactly_once(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        transport = ScriptedTransport(fail_on_open=httpx.ConnectError("refused"))
        selector = TransportSelector(one_shot, transport, hook=hook)

        exchange = await selector.send(controller, "hi")

        one_shot.send_one_shot.assert_awaited_once()
        assert _reply(controller) == "one-shot reply"
        assert exchange.state is ExchangeState.COMPLETED
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_mid_stream_failure_replaces_partial_content(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        transport = ScriptedTransport([b"event: message\ndata: par\n"], fail_after=1)
        selector = TransportSelector(one_shot, transport, hook=hook)

        await selector.send(controller, "hi")

        assert _reply(controller) == "one-shot reply"
        one_shot.send_one_shot.assert_awaited_once()
        assert hook.find("stream.failed")[0]["kind"] == FailureKind.CONNECTION_ERROR.value

    @pytest.mark.asyncio
    async def test_empty_stream_falls_back(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        transport = ScriptedTransport([b": keep-alive\n"])
        selector = TransportSelector(one_shot, transport, hook=hook)

        await selector.send(controller, "hi")

        assert _reply(controller) == "one-shot reply"


class TestLocalReply:
    """Tests for the last-resort substitute reply."""

    @pytest.mark.asyncio
    async def test_both_paths_fail_for_help_text(
        self, controller: MessageStreamController, hook: RecordingHook
    ) -> None:
        service = AsyncMock()
        service.send_one_shot.side_effect = httpx.ConnectError("refused")
        transport = ScriptedTransport(fail_on_open=StreamConnectionError("stream rejected", status_code=503))
        selector = TransportSelector(service, transport, hook=hook)

        exchange = await selector.send(controller, "I need help")

        assert _reply(controller) == HELP_REPLY
        assert controller.messages[-1].streaming is False
        assert exchange.state is ExchangeState.FAILED
        assert exchange.used_local_reply is True
        assert exchange.error_category is ErrorCategory.NETWORK
        service.send_one_shot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blank_one_shot_content_uses_local_reply(
        self, controller: MessageStreamController, hook: RecordingHook
    ) -> None:
        service = AsyncMock()
        service.send_one_shot.return_value = CompletionResult(content="   ")
        selector = TransportSelector(service, None, hook=hook)

        exchange = await selector.send(controller, "anything")

        assert exchange.used_local_reply is True
        assert _reply(controller).strip()

    @pytest.mark.asyncio
    async def test_upstream_status_is_classified(
        self, controller: MessageStreamController, hook: RecordingHook
    ) -> None:
        service = AsyncMock()
        service.send_one_shot.side_effect = UpstreamError("rejected", status_code=401)
        selector = TransportSelector(service, supports_streaming_transport=False, hook=hook)

        exchange = await selector.send(controller, "hello")

        assert exchange.error_category is ErrorCategory.AUTH
        assert exchange.failure_kind is FailureKind.UPSTREAM_ERROR

    @pytest.mark.asyncio
    async def test_custom_rules(self, controller: MessageStreamController, hook: RecordingHook) -> None:
        service = AsyncMock()
        service.send_one_shot.side_effect = RuntimeError("down")
        rules = LocalReplyRules([ReplyRule("all", lambda _t: True, "custom offline reply")])
        selector = TransportSelector(service, reply_rules=rules, hook=hook)

        await selector.send(controller, "x")

        assert _reply(controller) == "custom offline reply"


class TestCancellation:
    """Tests for explicit cancellation of an in-flight exchange."""

    @pytest.mark.asyncio
    async def test_token_cancels_stalled_stream_without_fallback(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        release = asyncio.Event()

        class StalledTransport(ScriptedTransport):
            async def _iterate(self) -> AsyncIterator[bytes | str]:
                yield b"event: message\ndata: partial\n"
                await release.wait()
                yield b"event: message\ndata: never\n"

        selector = TransportSelector(one_shot, StalledTransport(), hook=hook)
        token = CancellationToken()

        task = asyncio.create_task(selector.send(controller, "hi", token))
        while _reply(controller) != "partial":
            await asyncio.sleep(0)
        await token.cancel("user pressed stop")
        exchange = await task

        assert exchange.cancelled is True
        assert exchange.state is ExchangeState.FAILED
        assert _reply(controller) == "partial"
        assert controller.messages[-1].streaming is False
        one_shot.send_one_shot.assert_not_called()
        assert task.cancelled() is False

    @pytest.mark.asyncio
    async def test_already_cancelled_token(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        token = CancellationToken()
        await token.cancel()
        selector = TransportSelector(one_shot, ScriptedTransport([b"data: x\n"]), hook=hook)

        exchange = await selector.send(controller, "hi", token)

        assert exchange.cancelled is True
        one_shot.send_one_shot.assert_not_called()

    @pytest.mark.asyncio
    async def test_external_task_cancellation_propagates(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        release = asyncio.Event()

        class StalledTransport(ScriptedTransport):
            async def _iterate(self) -> AsyncIterator[bytes | str]:
                await release.wait()
                yield b""

        selector = TransportSelector(one_shot, StalledTransport(), hook=hook)
        task = asyncio.create_task(selector.send(controller, "hi"))
        while controller.state is not ExchangeState.STREAMING:
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.messages[-1].streaming is False
        assert controller.current_exchange is not None
        assert controller.current_exchange.cancelled is True


class TestHttpxStreamingTransport:
    """Tests for the httpx-backed transport via MockTransport."""

    @pytest.mark.asyncio
    async def test_streams_reply_from_http(self, controller: MessageStreamController, hook: RecordingHook) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = b"event: message\ndata: Hel\n\nevent: message\ndata: lo\n\ndata: [DONE]\n\n"
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            selector = TransportSelector(
                AsyncMock(), HttpxStreamingTransport(client, "http://backend/api/chat/stream"), hook=hook
            )
            await selector.send(controller, "hi")

        assert _reply(controller) == "Hello"
        assert seen[0].headers["accept"] == "text/event-stream"
        assert json.loads(seen[0].content) == {"sessionId": "session-1", "message": "hi"}

    @pytest.mark.asyncio
    async def test_non_success_status_falls_back(
        self, controller: MessageStreamController, one_shot: AsyncMock, hook: RecordingHook
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, content=b"bad gateway")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            selector = TransportSelector(one_shot, HttpxStreamingTransport(client, "http://backend/s"), hook=hook)
            await selector.send(controller, "hi")

        assert _reply(controller) == "one-shot reply"
        one_shot.send_one_shot.assert_awaited_once()


class TestFinalization:
    """Tests that every exit path leaves the placeholder settled."""

    @pytest.mark.asyncio
    async def test_request_build_failure_finalizes_placeholder(
        self,
        controller: MessageStreamController,
        one_shot: AsyncMock,
        hook: RecordingHook,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken_request(**kwargs: object) -> None:
            raise ValueError("invalid request body")

        monkeypatch.setattr("chatpipe.streaming.transport.StreamRequest", broken_request)
        selector = TransportSelector(one_shot, ScriptedTransport(), hook=hook)

        with pytest.raises(ValueError, match="invalid request body"):
            await selector.send(controller, "hello")

        assert controller.is_streaming is False
        assert controller.messages[-1].streaming is False
        assert controller.state is ExchangeState.FAILED
        assert "exchange.force_finalized" in hook.names()
        one_shot.send_one_shot.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_session_id_never_starts_an_exchange(self, one_shot: AsyncMock, hook: RecordingHook) -> None:
        controller = MessageStreamController(session_id="", hook=hook)
        selector = TransportSelector(one_shot, ScriptedTransport(), hook=hook)

        with pytest.raises(InvalidStateError):
            await selector.send(controller, "hello")

        assert controller.is_streaming is False
        assert len(controller) == 0
