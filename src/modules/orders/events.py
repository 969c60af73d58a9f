"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderPlaced(DomainEvent):
    """Raised when checkout creates an order."""

    user_id: str = ""
    final_amount: str = "0.00"


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised on every fulfillment transition, cancellation included."""

    old_status: str = ""
    new_status: str = ""


@dataclass(frozen=True)
class PaymentStatusChanged(DomainEvent):
    """Raised on every payment transition."""

    old_status: str = ""
    new_status: str = ""
