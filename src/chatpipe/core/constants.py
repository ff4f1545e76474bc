"""
Constants and configuration for chatpipe.
Centralizes protocol literals, timing values and runtime configuration.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

# ============================================================================
# Text-Event Stream Protocol
# ============================================================================

#: Line prefix that sets the event type for following data lines
SSE_EVENT_PREFIX = "event: "

#: Line prefix carrying one payload for the current event type
SSE_DATA_PREFIX = "data: "

#: Data payload that terminates the stream. Parsing stops as soon as it is seen.
STREAM_DONE_SENTINEL = "[DONE]"

#: Event type for an incremental content delta
EVENT_MESSAGE = "message"

#: Event type for an upstream failure reported inside the stream
EVENT_ERROR = "error"

#: Event type for graceful end of reply
EVENT_DONE = "done"

#: Default endpoint for the streaming chat call
DEFAULT_STREAM_PATH = "/api/chat/stream"

#: Default endpoint for the one-shot completion call
DEFAULT_ONE_SHOT_PATH = "/api/chat/send"

# ============================================================================
# Message Roles
# ============================================================================

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

# ============================================================================
# Rendering
# ============================================================================

#: Pause between a reply finishing and switching it to rich rendering (seconds).
#: Avoids re-parsing markup on every trailing frame.
DEFAULT_SETTLE_DELAY_SECONDS = 0.1

#: Console width used when rendering Markdown to formatted text
RENDER_CONSOLE_WIDTH = 100

#: Notice shown next to literal text when rich rendering fails
RENDER_FAILURE_NOTICE = "Formatting failed, showing raw text."

# ============================================================================
# Conversations
# ============================================================================

#: Messages fetched from the session store when a conversation is first opened
HISTORY_PAGE_SIZE = 100

#: Prefix for sessions created on demand (followed by a local timestamp)
DEFAULT_SESSION_TITLE_PREFIX = "New chat"

#: Maximum characters of the first user message used as a derived title
SESSION_TITLE_MAX_CHARS = 30

#: Assistant content installed when an in-flight reply is cancelled before any text arrived
CANCELLED_REPLY_NOTICE = "Reply cancelled."

# ============================================================================
# HTTP Transport Timeouts
# ============================================================================

DEFAULT_CONNECT_TIMEOUT = 10.0  # Time to establish connection
DEFAULT_READ_TIMEOUT = 120.0  # Gap allowed between streamed chunks
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of conversation log backups to retain during rotation.
LOG_BACKUP_COUNT_CONVERSATIONS = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

#: Maximum characters to show in log previews for user input/response.
LOG_PREVIEW_LENGTH = 50

#: Length of the per-logger component id
LOGGER_ID_LENGTH = 8


# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================


class Settings(BaseSettings):
    """Environment settings with validation.

    Loads from CHATPIPE_* environment variables and .env file.
    Validates at startup to fail fast on configuration errors.
    """

    # Assistant backend
    base_url: str = Field(default="http://127.0.0.1:34115", description="Base URL of the assistant backend")
    stream_path: str = Field(default=DEFAULT_STREAM_PATH, description="Text-event stream endpoint path")
    one_shot_path: str = Field(default=DEFAULT_ONE_SHOT_PATH, description="One-shot completion endpoint path")

    # Host-embedded runtimes without a streaming channel set this to False
    supports_streaming_transport: bool = Field(
        default=True,
        description="Whether the runtime can open the streaming transport",
    )

    # Timing
    settle_delay_seconds: float = Field(default=DEFAULT_SETTLE_DELAY_SECONDS, description="Render settling delay")
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, description="HTTP connect timeout (s)")
    read_timeout: float = Field(default=DEFAULT_READ_TIMEOUT, description="HTTP read timeout (s)")

    # Conversations
    history_page_size: int = Field(default=HISTORY_PAGE_SIZE, ge=1, description="Messages loaded per conversation")
    persist_exchanges: bool = Field(
        default=False,
        description="Append finalized messages through the session store",
    )

    # Diagnostics
    debug: bool = Field(default=False, description="Enable debug logging")
    log_dir: str | None = Field(default=None, description="Directory for JSON log files (disabled when unset)")
    http_request_logging: bool = Field(default=False, description="Enable HTTP request/response logging")
    log_content: bool = Field(default=False, description="Include redacted message previews in logs")

    model_config = SettingsConfigDict(
        env_prefix="CHATPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("stream_path", "one_shot_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Endpoint paths are absolute."""
        if not v.startswith("/"):
            raise ValueError("endpoint paths must start with '/'")
        return v

    @field_validator("settle_delay_seconds", "connect_timeout", "read_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Delays and timeouts cannot be negative."""
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @property
    def stream_url(self) -> str:
        return f"{self.base_url}{self.stream_path}"

    @property
    def one_shot_url(self) -> str:
        return f"{self.base_url}{self.one_shot_path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to ensure we only load and validate settings once.
    Raises validation errors at startup if config is invalid.
    """
    return Settings()
