"""In-memory event bus implementation."""

from __future__ import annotations

from typing import Any, Dict, List, Type

from shared.domain.bus import IEventBus, IEventHandler
from shared.domain.events import DomainEvent


class InMemoryEventBus(IEventBus):
    """In-process dispatch keyed by event class name."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[IEventHandler]] = {}

    def subscribe(self, event_class: Type[DomainEvent], handler: IEventHandler) -> None:
        handlers = self._handlers.setdefault(event_class.__name__, [])
        if handler not in handlers:
            handlers.append(handler)

    def publish(self, event_name: str, payload: Dict[str, Any]) -> int:
        """Dispatch *payload* to every handler of *event_name*.

        Returns the number of handlers invoked.  Handler exceptions
        propagate so the outbox relay can mark the row as failed.
        """
        handlers = self._handlers.get(event_name, [])
        for handler in handlers:
            handler.handle(payload)
        return len(handlers)


event_bus = InMemoryEventBus()
