"""
HTTP client factory.
Centralizes httpx.AsyncClient creation with consistent timeouts for streaming.
"""

from __future__ import annotations

import httpx

from chatpipe.core.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_POOL_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
    Settings,
)
from chatpipe.utils.http_logger import create_logging_client


def create_http_client(
    enable_logging: bool = False,
    connect_timeout: float | None = None,
    read_timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create HTTP client with proper timeouts for streaming.

    The read timeout bounds the gap between streamed chunks, not the whole reply.

    Args:
        enable_logging: Enable HTTP request/response logging
        connect_timeout: Connect timeout in seconds
        read_timeout: Read timeout in seconds
        transport: Optional transport override (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    timeout = httpx.Timeout(
        connect=connect_timeout if connect_timeout is not None else DEFAULT_CONNECT_TIMEOUT,
        read=read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    if enable_logging:
        return create_logging_client(enabled=True, timeout=timeout, transport=transport)

    return httpx.AsyncClient(timeout=timeout, transport=transport)


def create_http_client_from_settings(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return create_http_client(
        enable_logging=settings.http_request_logging,
        connect_timeout=settings.connect_timeout,
        read_timeout=settings.read_timeout,
        transport=transport,
    )
