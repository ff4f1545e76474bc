"""
Decides when a message is shown as literal text and when as rich text.

Partial Markdown is unstable to format (open code fences, half-written
tables), so a reply stays literal while it streams and for a short settling
period after it finalizes. Only then is it rendered once. A rendering
failure falls back to the literal text plus a notice and never propagates.
"""

from __future__ import annotations

import asyncio
import io

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from rich.console import Console
from rich.markdown import Markdown

from chatpipe.core.constants import DEFAULT_SETTLE_DELAY_SECONDS, RENDER_CONSOLE_WIDTH, RENDER_FAILURE_NOTICE
from chatpipe.models.error_models import RenderError
from chatpipe.models.session_models import Message
from chatpipe.streaming.controller import ControllerSnapshot, MessageStreamController
from chatpipe.utils.logger import LoggerHook, ObservabilityHook

Renderer = Callable[[str], str]


class RenderMode(str, Enum):
    LITERAL = "literal"
    RICH = "rich"


@dataclass(frozen=True)
class RenderView:
    """How one message should currently be displayed."""

    message_id: str
    mode: RenderMode
    text: str
    notice: str | None = None


RenderListener = Callable[[RenderView], None]


def render_markdown(text: str) -> str:
    """Render Markdown to ANSI-styled terminal text.

    Raises:
        RenderError: rich could not render the input
    """
    console = Console(
        file=io.StringIO(),
        record=True,
        width=RENDER_CONSOLE_WIDTH,
        force_terminal=True,
        color_system="standard",
    )
    try:
        console.print(Markdown(text))
    except Exception as e:
        raise RenderError(f"markdown rendering failed: {e}") from e
    return console.export_text(styles=True)


class RenderTransitionController:
    """Tracks a RenderView per message and debounces the switch to rich mode.

    Usage:
        render = RenderTransitionController()
        render.subscribe(print_view)
        render.attach(controller)
        ...
        render.close()
    """

    def __init__(
        self,
        renderer: Renderer = render_markdown,
        settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS,
        hook: ObservabilityHook | None = None,
    ):
        if settle_delay < 0:
            raise ValueError("settle_delay must be >= 0")
        self._renderer = renderer
        self._settle_delay = settle_delay
        self._hook: ObservabilityHook = hook or LoggerHook()
        self._views: dict[str, RenderView] = {}
        # Content each view was produced from, for change detection
        self._sources: dict[str, str] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[RenderListener] = []
        self._detach: Callable[[], None] | None = None

    def view(self, message_id: str) -> RenderView | None:
        return self._views.get(message_id)

    def is_pending(self, message_id: str) -> bool:
        """True while a settle timer is armed for the message."""
        return message_id in self._timers

    def subscribe(self, listener: RenderListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self, controller: MessageStreamController) -> None:
        """Follow a conversation's snapshots and sync its current messages."""
        if self._detach is not None:
            self._detach()
        self._detach = controller.subscribe(self._on_snapshot)
        for message in controller.messages:
            self.sync(message)

    def sync(self, message: Message) -> RenderView:
        """Reconcile one message with its current view.

        Settled messages arm a timer on the running loop. Outside a loop the
        view stays literal and the next sync from inside one arms the timer.
        """
        if message.is_user or message.streaming or not message.content.strip():
            self._cancel_timer(message.id)
            return self._publish(RenderView(message.id, RenderMode.LITERAL, message.content), message.content)

        if self._sources.get(message.id) == message.content:
            current = self._views[message.id]
            # Already rich, already failed, or a timer for this exact content is armed
            if current.mode is RenderMode.RICH or current.notice or message.id in self._timers:
                return current

        self._cancel_timer(message.id)
        view = self._publish(RenderView(message.id, RenderMode.LITERAL, message.content), message.content)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._hook("debug", "render.settle_deferred", message_id=message.id)
            return view
        self._timers[message.id] = loop.call_later(self._settle_delay, self._settle, message.id, message.content)
        return view

    def close(self) -> None:
        """Cancel all pending timers and stop following the controller."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if self._detach is not None:
            self._detach()
            self._detach = None

    def _on_snapshot(self, snapshot: ControllerSnapshot) -> None:
        for message in snapshot.messages:
            self.sync(message)

    def _settle(self, message_id: str, content: str) -> None:
        self._timers.pop(message_id, None)
        if self._sources.get(message_id) != content:
            return

        try:
            rendered = self._renderer(content)
        except Exception as e:
            self._hook("warning", "render.failed", message_id=message_id, kind=RenderError.kind.value, error=str(e))
            self._publish(RenderView(message_id, RenderMode.LITERAL, content, RENDER_FAILURE_NOTICE), content)
            return

        self._hook("debug", "render.rich", message_id=message_id, chars=len(content))
        self._publish(RenderView(message_id, RenderMode.RICH, rendered), content)

    def _cancel_timer(self, message_id: str) -> None:
        handle = self._timers.pop(message_id, None)
        if handle is not None:
            handle.cancel()

    def _publish(self, view: RenderView, source: str) -> RenderView:
        self._sources[view.message_id] = source
        if self._views.get(view.message_id) == view:
            return view
        self._views[view.message_id] = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                self._hook("warning", "render.listener_failed", error=str(e))
        return view


__all__ = ["RenderMode", "RenderTransitionController", "RenderView", "render_markdown"]
