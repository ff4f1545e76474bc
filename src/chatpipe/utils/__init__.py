"""
Utils Module - Infrastructure Utilities
=======================================

Modules:
    logger: Console and rotating JSON logging plus the ObservabilityHook
    http_logger: httpx event hooks for request/response logging
    client_factory: httpx.AsyncClient creation with streaming timeouts

Logging (logger.py):
    - Console handler: Human-readable format to stderr
    - Conversation handler: JSON Lines to <log_dir>/conversations.jsonl
    - Error handler: JSON Lines to <log_dir>/errors.jsonl
    File handlers are attached only when CHATPIPE_LOG_DIR is set.
"""
