"""Application state for chatpipe.

AppState is the single container for the objects built at startup. It is
passed explicitly to whatever drives the UI rather than kept in module globals.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from chatpipe.core.constants import Settings
from chatpipe.core.conversations import ConversationManager
from chatpipe.integrations.completion_service import CompletionService
from chatpipe.integrations.session_store import SessionStore
from chatpipe.streaming.controller import MessageStreamController
from chatpipe.streaming.render import RenderTransitionController
from chatpipe.streaming.transport import TransportSelector


@dataclass
class AppState:
    """Pipeline objects wired together by bootstrap.

    Attributes:
        settings: Validated runtime configuration
        http_client: Shared client for the stream and one-shot calls
        store: Session persistence collaborator
        completion_service: One-shot completion collaborator
        selector: Stream / one-shot / local reply selection
        manager: Sessions and the active conversation
        render: Literal/rich display state for the active conversation
    """

    settings: Settings
    http_client: httpx.AsyncClient
    store: SessionStore
    completion_service: CompletionService
    selector: TransportSelector
    manager: ConversationManager
    render: RenderTransitionController

    async def activate(self, session_id: str) -> MessageStreamController:
        """Select a conversation and point the renderer at it."""
        controller = await self.manager.select(session_id)
        self.render.attach(controller)
        return controller

    async def aclose(self) -> None:
        """Stop render timers and close the HTTP client."""
        self.render.close()
        await self.http_client.aclose()
