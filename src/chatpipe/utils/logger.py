"""
Logging setup for chatpipe using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- <log_dir>/conversations.jsonl: JSON format for exchange history
- <log_dir>/errors.jsonl: JSON format for error tracking

File destinations are only attached when a log directory is configured.
Components receive an ObservabilityHook instead of reaching for the module
logger directly, so tests can capture structured events.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from pythonjsonlogger import json as jsonlogger

from chatpipe.core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    LOGGER_ID_LENGTH,
    get_settings,
)

# PII Redaction patterns
REDACTION_PATTERNS = [
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b", "[EMAIL]"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
    (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
    (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
]

# LogRecord attributes that structured fields must not overwrite
_RESERVED_RECORD_KEYS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class ExchangeSummary:
    """Structured representation of one finished exchange for logging."""

    user_input: str
    response: str
    outcome: str
    used_fallback: bool = False
    duration_ms: float | None = None
    session_id: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class ConversationFilter(logging.Filter):
    """Filter to allow all INFO level logs for conversations"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that adds colors to log levels and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_fmt = f"[{record.levelname}]"

        if record.levelno == logging.DEBUG:
            level_fmt = f"{self.GREY}{level_fmt}{self.RESET}"
        elif record.levelno == logging.INFO:
            level_fmt = f"{self.GREEN}{level_fmt}{self.RESET}"
        elif record.levelno == logging.WARNING:
            level_fmt = f"{self.YELLOW}{level_fmt}{self.RESET}"
        elif record.levelno == logging.ERROR:
            level_fmt = f"{self.RED}{level_fmt}{self.RESET}"
        elif record.levelno == logging.CRITICAL:
            level_fmt = f"{self.BOLD_RED}{level_fmt}{self.RESET}"

        record.asctime = self.formatTime(record, "%H:%M:%S")
        message = f"{record.asctime} {level_fmt} {record.name} - {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(
    name: str = "chatpipe",
    debug: bool | None = None,
    log_dir: str | Path | None = None,
) -> logging.Logger:
    """
    Set up logging with console and optional JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides CHATPIPE_DEBUG env var)
        log_dir: Directory for JSON log files; console only when None

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []
    logger.propagate = False

    if debug is None:
        debug = os.getenv("CHATPIPE_DEBUG", "false").lower() in ("true", "1", "yes")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    if log_dir is None:
        return logger

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # --- Conversation Log Handler (JSON) ---
    conv_handler = logging.handlers.RotatingFileHandler(
        log_path / "conversations.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_CONVERSATIONS,
        encoding="utf-8",
    )
    conv_handler.setLevel(logging.INFO)
    conv_handler.addFilter(ConversationFilter())
    conv_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(component_id)s %(event)s %(ms)s",
            timestamp=True,
        )
    )
    logger.addHandler(conv_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_path / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class ChatLogger:
    """
    High-level logging interface for chatpipe.
    Wraps standard Python logging with convenience methods.
    """

    def __init__(self, name: str = "chatpipe", debug: bool | None = None, log_dir: str | Path | None = None):
        self.logger = setup_logging(name, debug=debug, log_dir=log_dir)
        self.component_id = uuid.uuid4().hex[:LOGGER_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        kwargs.setdefault("component_id", self.component_id)
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        """Debug level logging"""
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Info level logging"""
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Warning level logging"""
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().log_content)
        except Exception:
            # Settings may be invalid while the app reports the validation error
            return False

    def _redact_content(self, text: str) -> str:
        """Redact PII from text using defined patterns."""
        if not text:
            return text

        redacted = text
        for pattern, replacement in REDACTION_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted)
        return redacted

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        if len(text) > LOG_PREVIEW_LENGTH:
            preview += "..."
        return preview

    def log_exchange(self, summary: ExchangeSummary) -> None:
        """Log a finished exchange. Content previews are hidden unless enabled."""
        should_log_content = self._should_log_content()

        if should_log_content:
            user_preview = self._preview(summary.user_input)
            response_preview = self._preview(summary.response)
        else:
            user_preview = "[HIDDEN]"
            response_preview = "[HIDDEN]"

        msg_parts = [f"User: {user_preview} → AI: {response_preview}", f"[{summary.outcome}]"]
        if summary.used_fallback:
            msg_parts.append("[fallback]")
        if summary.duration_ms is not None:
            msg_parts.append(f"[{summary.duration_ms:.0f}ms]")

        extra_data: dict[str, Any] = {
            "event": "exchange.logged",
            "timestamp": summary.timestamp,
            "session_id": summary.session_id,
            "chars_input": len(summary.user_input),
            "chars_response": len(summary.response),
            "outcome": summary.outcome,
            "fallback": summary.used_fallback,
            "content_logging": should_log_content,
        }
        if summary.duration_ms is not None:
            extra_data["ms"] = int(summary.duration_ms)

        self.logger.info(" ".join(msg_parts), extra=self._enrich_context(extra_data))


class ObservabilityHook(Protocol):
    """Structured event sink passed into every pipeline component."""

    def __call__(self, level: str, event: str, **fields: Any) -> None: ...


class LoggerHook:
    """ObservabilityHook that forwards events to a ChatLogger."""

    def __init__(self, chat_logger: ChatLogger | None = None):
        self._logger = chat_logger or logger

    def __call__(self, level: str, event: str, **fields: Any) -> None:
        levelno = LEVELS.get(level, logging.INFO)
        detail = " ".join(f"{key}={value}" for key, value in fields.items())
        message = f"{event} {detail}" if detail else event
        # "message" and friends are reserved LogRecord attributes
        extra = {f"f_{key}" if key in _RESERVED_RECORD_KEYS else key: value for key, value in fields.items()}
        extra["event"] = event
        self._logger.logger.log(levelno, message, extra=self._logger._enrich_context(extra))


def _create_logger() -> ChatLogger:
    try:
        settings = get_settings()
        return ChatLogger(debug=settings.debug, log_dir=settings.log_dir)
    except Exception as e:
        # Invalid configuration is reported by bootstrap; keep console logging available
        sys.stderr.write(f"chatpipe: using console logging only ({e})\n")
        return ChatLogger()


# Global logger instance
logger = _create_logger()
