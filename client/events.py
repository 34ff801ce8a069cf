from __future__ import annotations
import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Set

from shared.envelope import Event
from shared.log import get_logger

logger = get_logger(__name__)


EventCallback = Callable[[Event], Any]


@dataclass(eq=False)
class EventListener:
    """Registration handle. Two handles are equal only if they are the same object."""
    event_type: Optional[str]       # None means every event
    callback: EventCallback

    def matches(self, event_type: str) -> bool:
        return self.event_type is None or self.event_type == event_type


class EventDispatcher:
    """
    Fan-out of inbound events to registered listeners.

    Listeners run synchronously in registration order. A listener returning
    an awaitable has it scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._listeners: List[EventListener] = []
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._listeners)

    def add_event_listener(self, event_type: Optional[str], callback: EventCallback) -> EventListener:
        listener = EventListener(event_type, callback)
        self._listeners.append(listener)
        return listener

    def remove_event_listener(self, listener: EventListener) -> None:
        for index, registered in enumerate(self._listeners):
            if registered is listener:
                del self._listeners[index]
                return

    def clear(self) -> None:
        self._listeners.clear()

    def dispatch(self, event: Event) -> int:
        """Deliver ``event``; returns the number of listeners invoked."""
        delivered = 0
        # Listeners may add or remove registrations while we iterate
        for listener in list(self._listeners):
            if not listener.matches(event.event_type):
                continue
            delivered += 1
            try:
                result = listener.callback(event)
            except Exception as e:
                logger.error("Event listener failed: %s", e, exc_info=True, extra={"event_type": event.event_type})
                continue
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result), event.event_type)
        return delivered

    def _track(self, task: asyncio.Future, event_type: str) -> None:
        """Keep a strong reference to listener tasks until completion."""
        self._tasks.add(task)

        def _done(_task: asyncio.Future) -> None:
            self._tasks.discard(_task)
            if not _task.cancelled() and _task.exception() is not None:
                logger.error("Event listener failed: %s", _task.exception(), extra={"event_type": event_type})

        task.add_done_callback(_done)
