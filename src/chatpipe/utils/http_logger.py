"""
HTTP request/response logging for debugging backend traffic.

Hooks into httpx event hooks. Streaming bodies are never consumed here; only
status and headers are recorded for them.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from chatpipe.utils.logger import logger

SENSITIVE_HEADERS = frozenset({"authorization", "api-key", "x-api-key", "cookie"})


class HTTPLogger:
    """Logs HTTP requests and responses for debugging."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._request_data: dict[int, dict[str, Any]] = {}

    async def log_request(self, request: httpx.Request) -> None:
        """Log an outgoing request with its JSON payload."""
        if not self.enabled:
            return

        try:
            body_str = request.content.decode("utf-8") if request.content else ""
            body_json = json.loads(body_str) if body_str else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            body_json = {"_error": f"Unreadable body: {e!s}"}

        self._request_data[id(request)] = {"method": request.method, "url": str(request.url)}
        logger.info(
            f"HTTP Request: {request.method} {request.url}",
            event="http.request",
            method=request.method,
            url=str(request.url),
            headers=self._sanitize_headers(dict(request.headers)),
            payload=body_json,
        )

    async def log_response(self, response: httpx.Response) -> None:
        """Log status for a response; the body is left untouched for streams."""
        if not self.enabled:
            return

        request_data = self._request_data.pop(id(response.request), {})
        logger.info(
            f"HTTP Response: {response.status_code} "
            f"{request_data.get('method', 'UNKNOWN')} {request_data.get('url', 'UNKNOWN')}",
            event="http.response",
            status_code=response.status_code,
            content_type=response.headers.get("content-type", ""),
        )

    def _sanitize_headers(self, headers: dict[str, str]) -> dict[str, str]:
        """Mask credential headers, keeping the last 4 characters."""
        sanitized = headers.copy()
        for key, value in headers.items():
            if key.lower() in SENSITIVE_HEADERS:
                sanitized[key] = f"***{value[-4:]}" if len(value) > 4 else "***"
        return sanitized


def create_logging_client(
    enabled: bool = True,
    timeout: httpx.Timeout | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging hooks."""
    http_logger = HTTPLogger(enabled=enabled)

    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }

    return httpx.AsyncClient(event_hooks=event_hooks, timeout=timeout, transport=transport)
