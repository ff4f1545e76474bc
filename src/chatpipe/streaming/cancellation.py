"""
Explicit cancellation of an in-flight reply.

Switching conversations never cancels a reply. The conversation manager
hands a token to ``TransportSelector.send``, which registers a callback that
cancels the sending task, so a stalled read is interrupted immediately. The
stream loop also calls ``check`` before each chunk it processes.
"""

from __future__ import annotations

import asyncio

from collections.abc import Callable

from chatpipe.utils.logger import logger

CancelCallback = Callable[[], None]


class CancellationToken:
    """One-shot stop signal for a single exchange.

    Usage:
        token = CancellationToken()
        exchange_task = asyncio.create_task(manager.send("hi", token))
        ...
        await token.cancel("user pressed stop")
    """

    __slots__ = ("_callbacks", "_reason", "_cancelled")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def cancel_reason(self) -> str | None:
        """Reason given to ``cancel``; recorded on the cancelled exchange."""
        return self._reason

    async def cancel(self, reason: str | None = None) -> None:
        """Mark the exchange cancelled and fire the registered callbacks once."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._fire(callback)

    def on_cancel(self, callback: CancelCallback) -> CancelCallback:
        """Register a callback; runs right away when the token is already cancelled."""
        if self._cancelled:
            self._fire(callback)
        else:
            self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: CancelCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def check(self) -> None:
        """Raise asyncio.CancelledError once the token is cancelled.

        Called by the stream loop between chunks and before the fallback call.
        """
        if self._cancelled:
            raise asyncio.CancelledError(self._reason or "exchange cancelled")

    def _fire(self, callback: CancelCallback) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback failed: {e}", event="cancel.callback_failed")


__all__ = ["CancelCallback", "CancellationToken"]
