"""
In-process event bus for proctor lifecycle events.

``emit`` is awaited by the mutating call that produced the event, so
subscribers observe events in the same order the session changed. Each
subscriber is invoked at most once per emit; a failing subscriber is logged
and skipped, never retried, and never fails the caller.
"""
from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

SESSION_STARTED    = "proctor.session.started"
SESSION_ENDED      = "proctor.session.ended"
VIOLATION_RECORDED = "proctor.violation.recorded"
SESSION_TERMINATED = "proctor.session.terminated"

ALL_EVENTS = "*"

Handler = Callable[[str, dict[str, Any]], Union[Awaitable[None], None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: Handler) -> None:
        """Register ``handler`` for ``event_name`` (or ``"*"`` for every event)."""
        self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        handlers = [*self._handlers.get(event_name, []), *self._handlers.get(ALL_EVENTS, [])]
        for handler in handlers:
            try:
                result = handler(event_name, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("Subscriber %r failed for %s: %s",
                             handler, event_name, exc, exc_info=True)
