"""
One-shot completion service: request a whole reply in one call.

Used by the transport selector when streaming is unavailable or fails.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from pydantic import ValidationError

from chatpipe.models.error_models import UpstreamError
from chatpipe.models.event_models import CompletionResult, StreamRequest
from chatpipe.utils.logger import LoggerHook, ObservabilityHook


@runtime_checkable
class CompletionService(Protocol):
    """Interface for the non-streaming completion call."""

    async def send_one_shot(self, session_id: str, text: str) -> CompletionResult: ...


class HttpCompletionService:
    """CompletionService over HTTP: POST {"sessionId", "message"} and read {"content"}."""

    def __init__(self, client: httpx.AsyncClient, url: str, hook: ObservabilityHook | None = None):
        self._client = client
        self._url = url
        self._hook: ObservabilityHook = hook or LoggerHook()

    async def send_one_shot(self, session_id: str, text: str) -> CompletionResult:
        """Request a complete reply.

        Raises:
            UpstreamError: Non-2xx status or a body that is not a completion
            httpx.HTTPError: Transport failures propagate unchanged for classification
        """
        request = StreamRequest(session_id=session_id, message=text)
        self._hook("debug", "one_shot.request", session_id=session_id, url=self._url)

        response = await self._client.post(self._url, json=request.to_payload())
        if not response.is_success:
            raise UpstreamError(
                f"one-shot call failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            result = CompletionResult.model_validate_json(response.content)
        except ValidationError as e:
            raise UpstreamError(f"malformed one-shot response: {e.error_count()} error(s)") from e

        self._hook("debug", "one_shot.response", session_id=session_id, chars=len(result.content))
        return result


__all__ = ["CompletionService", "HttpCompletionService"]
