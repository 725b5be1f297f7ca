"""Event subscription and dispatching.

EventEmitter keeps named handler lists the same way the connection keeps
protocol event handlers. Handlers may be plain callables or coroutine
functions; coroutine results are scheduled as background tasks.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)


class ConnectionEvents:
    DISCONNECTED = "disconnected"


class SessionEvents:
    DISCONNECTED = "disconnected"


class BrowserEvents:
    TARGET_CREATED = "targetcreated"
    TARGET_DESTROYED = "targetdestroyed"
    TARGET_CHANGED = "targetchanged"
    DISCONNECTED = "disconnected"


class ContextEvents:
    CLOSE = "close"


class PageEvents:
    CLOSE = "close"


class EventEmitter:
    """Named publish/subscribe fan-out.

    Sync handlers run inline, in subscription order, so a handler that
    raises propagates to whoever emitted the event.
    """

    def __init__(self):
        self._event_handlers: Dict[str, List[Callable[..., Any]]] = {}
        self._handler_tasks: Set["asyncio.Future"] = set()

    def subscribe(self, event_name: str, callback: Callable[..., Any]) -> None:
        """Register callback for event."""
        self._event_handlers.setdefault(event_name, []).append(callback)

    def unsubscribe(self, event_name: str, callback: Callable[..., Any]) -> None:
        """Remove event callback.

        Args:
            event_name: Event name
            callback: Previously registered callback function
        """
        handlers = self._event_handlers.get(event_name)
        if not handlers:
            logger.warning(f"Callback not found for event: {event_name}")
            return
        try:
            handlers.remove(callback)
        except ValueError:
            logger.warning(f"Callback not found for event: {event_name}")
            return
        if not handlers:
            del self._event_handlers[event_name]

    def once(self, event_name: str, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Register callback that is removed after its first invocation.

        Returns:
            The wrapper actually registered, usable with unsubscribe()
        """

        def wrapper(*args):
            self.unsubscribe(event_name, wrapper)
            return callback(*args)

        self.subscribe(event_name, wrapper)
        return wrapper

    def listener_count(self, event_name: str) -> int:
        return len(self._event_handlers.get(event_name, []))

    def emit(self, event_name: str, *args: Any) -> bool:
        """Dispatch event to a snapshot of the registered handlers.

        Returns:
            True if at least one handler was registered
        """
        handlers = list(self._event_handlers.get(event_name, []))
        for handler in handlers:
            result = handler(*args)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_tasks.discard)
                task.add_done_callback(_log_handler_failure(event_name))
        return bool(handlers)


def _log_handler_failure(event_name: str) -> Callable[["asyncio.Future"], None]:
    def callback(task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Event handler error for {event_name}: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    return callback
