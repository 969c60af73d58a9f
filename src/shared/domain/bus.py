"""Domain bus interfaces for in-process event handling.

Handlers receive the JSON payload stored in the outbox, not the original
event object, because delivery happens after the producing transaction has
committed (possibly in another process).
"""

from __future__ import annotations

from typing import Any, Dict, Protocol, Type

from shared.domain.events import DomainEvent


class IEventHandler(Protocol):
    def handle(self, payload: Dict[str, Any]) -> None: ...


class IEventBus(Protocol):
    def publish(self, event_name: str, payload: Dict[str, Any]) -> int: ...

    def subscribe(
        self, event_class: Type[DomainEvent], handler: IEventHandler
    ) -> None: ...
