"""
Error taxonomy for the chat response pipeline.

Two axes are kept separate:
- FailureKind: where in the pipeline a failure happened (drives recovery)
- ErrorCategory: what the upstream failure means to the user (drives the message)
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Pipeline stage a failure belongs to."""

    TRANSPORT_UNAVAILABLE = "transport-unavailable"
    CONNECTION_ERROR = "connection-error"
    PROTOCOL_ERROR = "protocol-error"
    UPSTREAM_ERROR = "upstream-error"
    RENDER_ERROR = "render-error"


class ErrorCategory(str, Enum):
    """User-facing classification of an upstream failure."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    QUOTA = "quota"
    MODEL = "model"
    UNKNOWN = "unknown"


#: Explanatory text installed into a failed assistant message, one per category
ERROR_CATEGORY_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: (
        "Unable to reach the assistant service. Please check your network connection and try again."
    ),
    ErrorCategory.TIMEOUT: "The assistant took too long to respond. Please try again in a moment.",
    ErrorCategory.AUTH: (
        "The assistant service rejected the request credentials. Please check the API key configuration."
    ),
    ErrorCategory.QUOTA: (
        "The assistant service usage limit has been reached. Please wait a while and try again."
    ),
    ErrorCategory.MODEL: (
        "The assistant model could not generate a reply. Please try again or rephrase your message."
    ),
    ErrorCategory.UNKNOWN: "Sorry, something went wrong while generating a reply.",
}

# HTTP status code mappings for error categories
STATUS_TO_CATEGORY: dict[int, ErrorCategory] = {
    401: ErrorCategory.AUTH,
    403: ErrorCategory.AUTH,
    402: ErrorCategory.QUOTA,
    429: ErrorCategory.QUOTA,
    408: ErrorCategory.TIMEOUT,
    504: ErrorCategory.TIMEOUT,
    502: ErrorCategory.NETWORK,
    503: ErrorCategory.NETWORK,
    404: ErrorCategory.MODEL,
    422: ErrorCategory.MODEL,
    500: ErrorCategory.MODEL,
}


def get_error_message(category: ErrorCategory) -> str:
    """Get the user-facing explanatory message for a category."""
    return ERROR_CATEGORY_MESSAGES.get(category, ERROR_CATEGORY_MESSAGES[ErrorCategory.UNKNOWN])


class ChatPipeError(Exception):
    """Base class for pipeline errors."""

    kind: FailureKind = FailureKind.UPSTREAM_ERROR

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransportUnavailableError(ChatPipeError):
    """The runtime cannot open the streaming transport."""

    kind = FailureKind.TRANSPORT_UNAVAILABLE


class StreamConnectionError(ChatPipeError):
    """The stream could not be opened, broke while reading, or ended without a reply."""

    kind = FailureKind.CONNECTION_ERROR


class UpstreamError(ChatPipeError):
    """The backend reported a failure (error frame or non-OK one-shot response)."""

    kind = FailureKind.UPSTREAM_ERROR


class RenderError(ChatPipeError):
    """Rich rendering of a message failed."""

    kind = FailureKind.RENDER_ERROR


class InvalidStateError(ChatPipeError):
    """An operation was attempted in a state that does not allow it."""


class ExchangeInFlightError(InvalidStateError):
    """A send was attempted while the conversation already has a reply streaming."""


class SessionUnavailableError(ChatPipeError):
    """No session exists and one could not be created."""


__all__ = [
    "ERROR_CATEGORY_MESSAGES",
    "STATUS_TO_CATEGORY",
    "ChatPipeError",
    "ErrorCategory",
    "ExchangeInFlightError",
    "FailureKind",
    "InvalidStateError",
    "RenderError",
    "SessionUnavailableError",
    "StreamConnectionError",
    "TransportUnavailableError",
    "UpstreamError",
    "get_error_message",
]
