"""Application initialization for chatpipe.

Loads the environment, validates settings, and wires the HTTP client,
collaborators, transport selector, conversation manager and renderer into
an AppState.
"""

from __future__ import annotations

import sys

import httpx

from dotenv import load_dotenv

from chatpipe.app.state import AppState
from chatpipe.core.constants import PROJECT_ROOT, Settings, get_settings
from chatpipe.core.conversations import ConversationManager
from chatpipe.integrations.completion_service import CompletionService, HttpCompletionService
from chatpipe.integrations.session_store import InMemorySessionStore, SessionStore
from chatpipe.streaming.render import RenderTransitionController
from chatpipe.streaming.transport import HttpxStreamingTransport, TransportSelector
from chatpipe.utils.client_factory import create_http_client_from_settings
from chatpipe.utils.logger import LoggerHook, ObservabilityHook, logger


def load_settings() -> Settings:
    """Load .env and validate settings, exiting with a readable message on failure.

    Raises:
        SystemExit: If configuration validation fails
    """
    load_dotenv(PROJECT_ROOT / ".env")

    try:
        return get_settings()
    except Exception as e:
        sys.stderr.write(f"Error: Configuration validation failed: {e}\n")
        sys.stderr.write("Please check the CHATPIPE_* variables in your environment or .env file:\n")
        sys.stderr.write("CHATPIPE_BASE_URL (http:// or https://)\n")
        sys.stderr.write("CHATPIPE_STREAM_PATH / CHATPIPE_ONE_SHOT_PATH (must start with '/')\n")
        sys.exit(1)


async def initialize_application(
    settings: Settings | None = None,
    store: SessionStore | None = None,
    completion_service: CompletionService | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    hook: ObservabilityHook | None = None,
) -> AppState:
    """Build the pipeline and load the session list.

    Args:
        settings: Pre-validated settings (loaded from the environment when None)
        store: Session store (in-memory when None)
        completion_service: One-shot service (HTTP against settings when None)
        transport: httpx transport override, used by tests
        hook: Observability hook shared by all components

    Returns:
        AppState ready for the UI loop
    """
    settings = settings or load_settings()
    hook = hook or LoggerHook()

    http_client = create_http_client_from_settings(settings, transport=transport)
    if settings.http_request_logging:
        logger.info("HTTP request/response logging enabled")

    store = store or InMemorySessionStore()
    completion_service = completion_service or HttpCompletionService(http_client, settings.one_shot_url, hook=hook)

    streaming_transport = None
    if settings.supports_streaming_transport:
        streaming_transport = HttpxStreamingTransport(http_client, settings.stream_url)
    else:
        logger.info("Streaming transport disabled; replies use the one-shot call")

    selector = TransportSelector(
        completion_service,
        streaming_transport=streaming_transport,
        supports_streaming_transport=settings.supports_streaming_transport,
        hook=hook,
    )
    manager = ConversationManager(store, selector, hook=hook, settings=settings)
    render = RenderTransitionController(settle_delay=settings.settle_delay_seconds, hook=hook)

    state = AppState(
        settings=settings,
        http_client=http_client,
        store=store,
        completion_service=completion_service,
        selector=selector,
        manager=manager,
        render=render,
    )

    await manager.load_sessions()
    if manager.active_session_id is not None:
        await state.activate(manager.active_session_id)
    else:
        render.attach(manager.active_controller)

    logger.info(f"chatpipe initialized against {settings.base_url} ({len(manager.sessions)} sessions)")
    return state
