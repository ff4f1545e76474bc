"""
Transport selection for one exchange: stream, one-shot, or local reply.

The selector tries the streaming transport first. Any failure while opening,
reading or decoding the stream demotes the exchange to exactly one one-shot
completion call; streaming is never retried. When that also fails, a locally
generated substitute reply is installed. Whatever happens, the exchange ends
with a single terminal transition and the placeholder is never left streaming.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import httpx

from chatpipe.integrations.completion_service import CompletionService
from chatpipe.models.error_models import (
    ChatPipeError,
    FailureKind,
    StreamConnectionError,
    TransportUnavailableError,
    UpstreamError,
)
from chatpipe.models.event_models import StreamRequest
from chatpipe.streaming.cancellation import CancellationToken
from chatpipe.streaming.controller import Exchange, MessageStreamController
from chatpipe.streaming.error_classifier import classify_error
from chatpipe.streaming.fallback_replies import LocalReplyRules
from chatpipe.streaming.frame_parser import FrameParser
from chatpipe.utils.logger import LoggerHook, ObservabilityHook

ChunkStream = AsyncIterator[bytes | str]


class StreamingTransport(Protocol):
    """Opens a chunked text-event stream for one request."""

    def open(self, request: StreamRequest) -> AbstractAsyncContextManager[ChunkStream]: ...


class HttpxStreamingTransport:
    """StreamingTransport over an httpx streaming POST."""

    def __init__(self, client: httpx.AsyncClient, url: str):
        self._client = client
        self._url = url

    @asynccontextmanager
    async def open(self, request: StreamRequest) -> AsyncIterator[ChunkStream]:
        async with self._client.stream(
            "POST",
            self._url,
            json=request.to_payload(),
            headers={"Accept": "text/event-stream"},
        ) as response:
            if not response.is_success:
                raise StreamConnectionError(
                    f"stream rejected with HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            yield response.aiter_bytes()


def failure_kind(failure: BaseException) -> FailureKind:
    """Pipeline stage for a failure; bare transport exceptions count as connection errors."""
    if isinstance(failure, ChatPipeError):
        return failure.kind
    return FailureKind.CONNECTION_ERROR


class TransportSelector:
    """Runs one exchange through stream, one-shot and local reply tiers."""

    def __init__(
        self,
        completion_service: CompletionService,
        streaming_transport: StreamingTransport | None = None,
        supports_streaming_transport: bool = True,
        reply_rules: LocalReplyRules | None = None,
        hook: ObservabilityHook | None = None,
    ):
        self._completion = completion_service
        self._transport = streaming_transport
        self._supports_streaming = supports_streaming_transport and streaming_transport is not None
        self._rules = reply_rules or LocalReplyRules()
        self._hook: ObservabilityHook = hook or LoggerHook()

    @property
    def streaming_enabled(self) -> bool:
        return self._supports_streaming

    async def send(
        self,
        controller: MessageStreamController,
        text: str,
        cancellation_token: CancellationToken | None = None,
    ) -> Exchange:
        """Send one user message and drive the reply to a terminal state.

        Raises:
            ExchangeInFlightError: The conversation already has a reply streaming
            asyncio.CancelledError: Only when the calling task itself was cancelled
        """
        exchange = controller.begin_exchange(text)

        task = asyncio.current_task()

        def cancel_task() -> None:
            if task is not None:
                task.cancel()

        token = cancellation_token
        watching = token is not None and task is not None and not token.is_cancelled
        if watching and token is not None:
            token.on_cancel(cancel_task)

        try:
            request = StreamRequest(session_id=exchange.session_id, message=text)
            await self._deliver(controller, request, token)
        except asyncio.CancelledError:
            if token is None or not token.is_cancelled:
                controller.cancel_exchange("task cancelled")
                raise
            if watching and task is not None:
                # The token cancelled this task; absorb that request only
                task.uncancel()
            controller.cancel_exchange(token.cancel_reason)
        finally:
            if watching and token is not None:
                token.remove_callback(cancel_task)
            controller.ensure_finalized()

        return exchange

    async def _deliver(
        self,
        controller: MessageStreamController,
        request: StreamRequest,
        token: CancellationToken | None,
    ) -> None:
        if token is not None:
            token.check()

        failure: Exception
        if not self._supports_streaming:
            failure = TransportUnavailableError("streaming transport is not available")
            self._hook("info", "transport.unavailable", session_id=request.session_id)
        else:
            try:
                await self._stream(controller, request, token)
                return
            except Exception as e:
                failure = e
                self._hook(
                    "warning",
                    "stream.failed",
                    session_id=request.session_id,
                    kind=failure_kind(e).value,
                    error=str(e) or type(e).__name__,
                )

        if not controller.is_streaming:
            # Reply already finalized (e.g. error while closing the response)
            return

        if token is not None:
            token.check()
        await self._fall_back(controller, request, failure)

    async def _stream(
        self,
        controller: MessageStreamController,
        request: StreamRequest,
        token: CancellationToken | None,
    ) -> None:
        if self._transport is None:
            raise TransportUnavailableError("no streaming transport configured")

        parser = FrameParser()
        async with self._transport.open(request) as chunks:
            controller.mark_transport_accepted()
            async for chunk in chunks:
                if token is not None:
                    token.check()
                for frame in parser.feed(chunk):
                    if controller.handle_frame(frame):
                        return
                if parser.done:
                    controller.complete_stream()
                    return

        if parser.skipped_lines:
            self._hook("debug", "stream.skipped_lines", count=parser.skipped_lines)
        if parser.pending:
            self._hook("debug", "stream.discarded_tail", chars=len(parser.pending))
        controller.finish_stream_eof()

    async def _fall_back(
        self,
        controller: MessageStreamController,
        request: StreamRequest,
        failure: Exception,
    ) -> None:
        self._hook("info", "fallback.one_shot", session_id=request.session_id, kind=failure_kind(failure).value)
        try:
            result = await self._completion.send_one_shot(request.session_id, request.message)
        except Exception as e:
            self._reply_locally(controller, request, e)
            return

        if not result.content.strip():
            self._reply_locally(controller, request, UpstreamError("one-shot reply was empty"))
            return

        controller.apply_fallback_result(result.content)

    def _reply_locally(
        self,
        controller: MessageStreamController,
        request: StreamRequest,
        failure: Exception,
    ) -> None:
        category = classify_error(failure)
        rule = self._rules.match(request.message)
        self._hook(
            "warning",
            "fallback.local_reply",
            session_id=request.session_id,
            category=category.value,
            rule=rule.name,
            error=str(failure) or type(failure).__name__,
        )
        controller.apply_local_reply(rule.response, category, failure_kind(failure))


__all__ = ["HttpxStreamingTransport", "StreamingTransport", "TransportSelector", "failure_kind"]
