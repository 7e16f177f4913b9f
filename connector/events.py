"""Publish/subscribe for session lifecycle events.

The session manager owns an ``EventBus`` instead of inheriting from one;
observers register through ``SessionManager.subscribe``.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Set

from connector.obs.logger import log_event


LOGIN = "login"
LOGOUT = "logout"
RENEW = "renew"
INACTIVITY = "inactivity"

EVENTS = (LOGIN, LOGOUT, RENEW, INACTIVITY)

Handler = Callable[[Any], Any]


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._tasks: Set[asyncio.Future] = set()

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event``; returns a callable that unsubscribes it."""
        self._handlers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers(self, event: str) -> List[Handler]:
        return list(self._handlers.get(event, []))

    def emit(self, event: str, payload: Any = None) -> None:
        """Call every handler for ``event``.

        A failing handler is logged and skipped so observers can never break
        a lifecycle transition. Coroutine handlers are scheduled on the
        running loop and kept until they finish.
        """
        for handler in self.handlers(event):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(lambda t, name=event: self._task_done(name, t))
            except Exception as e:
                log_event("event_handler_error", level="ERROR", event_name=event, error=repr(e))

    def _task_done(self, event: str, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_event("event_handler_error", level="ERROR", event_name=event, error=repr(task.exception()))

    async def wait_idle(self) -> None:
        """Wait for every coroutine handler started by ``emit``."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
