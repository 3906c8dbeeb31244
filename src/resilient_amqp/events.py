"""Named lifecycle events with sync or async listeners."""

from __future__ import annotations

import asyncio
import logging
from inspect import isawaitable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventEmitter:
    """Registers listeners per event name and calls them on ``emit``.

    Plain callables run inline, in registration order. When a listener returns
    an awaitable it is scheduled as a task; the emitter keeps a reference to
    it until it finishes and logs any exception it ends with. ``error``
    events without listeners are logged instead of being lost.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[Callable[..., Any], bool]]] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    # ── Registration ─────────────────────────────────────────────

    def on(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Call ``listener`` every time ``event`` is emitted."""
        self._listeners.setdefault(event, []).append((listener, False))
        return listener

    def once(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Call ``listener`` the next time ``event`` is emitted, then drop it."""
        self._listeners.setdefault(event, []).append((listener, True))
        return listener

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        """Remove the first registration of ``listener`` for ``event``."""
        entries = self._listeners.get(event, [])
        for index, (registered, _) in enumerate(entries):
            if registered == listener:
                del entries[index]
                break
        if not entries:
            self._listeners.pop(event, None)

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Drop every listener, or only those of ``event``."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def has_listener(self, event: str, listener: Callable[..., Any]) -> bool:
        return any(
            registered == listener for registered, _ in self._listeners.get(event, [])
        )

    # ── Emitting ─────────────────────────────────────────────────

    def emit(self, event: str, *args: Any) -> bool:
        """Notify the listeners of ``event``; return whether there were any."""
        entries = self._listeners.get(event)
        if not entries:
            if event == "error":
                logger.error(
                    "Unhandled 'error' event on %s: %r", type(self).__name__, args
                )
            return False

        snapshot = list(entries)
        remaining = [entry for entry in entries if not entry[1]]
        if remaining:
            self._listeners[event] = remaining
        else:
            self._listeners.pop(event, None)

        for listener, _ in snapshot:
            try:
                result = listener(*args)
            except Exception:
                logger.exception(
                    "Error in %r listener %s",
                    event,
                    getattr(listener, "__name__", listener),
                )
                raise
            if isawaitable(result):
                self._track(event, result)
        return True

    def _track(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async %r listener failed", event, exc_info=t.exception()
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for listener tasks scheduled so far (testing and shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
