"""
Best-effort classification of failures into user-facing error categories.

Accepts whatever the pipeline has at hand: an exception, an HTTP status code,
or the payload of an ``error`` frame. Every input maps to exactly one
ErrorCategory and classification has no side effects.
"""

from __future__ import annotations

import httpx

from chatpipe.models.error_models import STATUS_TO_CATEGORY, ChatPipeError, ErrorCategory, get_error_message

# Ordered substring rules over the lower-cased failure text. First match wins.
TEXT_RULES: list[tuple[ErrorCategory, tuple[str, ...]]] = [
    (ErrorCategory.TIMEOUT, ("timeout", "timed out", "deadline exceeded", "超时")),
    (
        ErrorCategory.AUTH,
        ("unauthorized", "forbidden", "api key", "api_key", "apikey", "authentication", "permission denied", "401", "403"),
    ),
    (
        ErrorCategory.QUOTA,
        ("quota", "rate limit", "rate_limit", "ratelimit", "too many requests", "billing", "429"),
    ),
    (
        ErrorCategory.NETWORK,
        ("network", "connection", "connect", "unreachable", "dns", "socket", "offline", "refused", "网络"),
    ),
    (ErrorCategory.MODEL, ("model", "context length", "context_length", "token limit", "overloaded", "模型")),
]

# Exception types checked before falling back to text rules
TYPE_RULES: list[tuple[type[BaseException], ErrorCategory]] = [
    (httpx.TimeoutException, ErrorCategory.TIMEOUT),
    (TimeoutError, ErrorCategory.TIMEOUT),
    (httpx.NetworkError, ErrorCategory.NETWORK),
    (ConnectionError, ErrorCategory.NETWORK),
]


def classify_status(status_code: int) -> ErrorCategory:
    """Map an HTTP status code onto a category."""
    if status_code in STATUS_TO_CATEGORY:
        return STATUS_TO_CATEGORY[status_code]
    if 500 <= status_code < 600:
        return ErrorCategory.MODEL
    return ErrorCategory.UNKNOWN


def classify_text(text: str) -> ErrorCategory:
    """Match failure text against the ordered substring rules."""
    lowered = text.lower()
    for category, needles in TEXT_RULES:
        if any(needle in lowered for needle in needles):
            return category
    return ErrorCategory.UNKNOWN


def classify_error(failure: BaseException | int | str | None) -> ErrorCategory:
    """Classify a raw failure signal.

    Args:
        failure: Exception, HTTP status code, error-frame payload, or None

    Returns:
        The matching ErrorCategory (UNKNOWN when nothing matches)
    """
    if failure is None:
        return ErrorCategory.UNKNOWN

    # bool is an int subclass and carries no status information
    if isinstance(failure, bool):
        return ErrorCategory.UNKNOWN

    if isinstance(failure, int):
        return classify_status(failure)

    if isinstance(failure, str):
        return classify_text(failure)

    for exc_type, category in TYPE_RULES:
        if isinstance(failure, exc_type):
            return category

    status_code: int | None = None
    if isinstance(failure, httpx.HTTPStatusError):
        status_code = failure.response.status_code
    elif isinstance(failure, ChatPipeError):
        status_code = failure.status_code

    if status_code is not None:
        category = classify_status(status_code)
        if category is not ErrorCategory.UNKNOWN:
            return category

    text = str(failure) or type(failure).__name__
    return classify_text(text)


def describe_error(failure: BaseException | int | str | None) -> tuple[ErrorCategory, str]:
    """Classify a failure and return it with its explanatory message."""
    category = classify_error(failure)
    return category, get_error_message(category)


__all__ = ["classify_error", "classify_status", "classify_text", "describe_error"]
