"""Order state machine.

Two status dimensions live on the order: fulfillment (``order_status``)
and payment (``payment_status``).  The functions here validate and apply
transitions on an in-memory ``Order``; they never touch the database, so
the caller decides the unit of work.  A rejected transition raises before
any attribute is modified.

Actor rules:
- the fulfilling artisan (owner of any product in the order) may move the
  order to processing / shipped / delivered and may cancel it while the
  table allows;
- the customer who placed the order may cancel it only while pending;
- anyone else is refused with ``Forbidden``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from modules.orders.constants import FULFILLMENT_STATES, OrderStatus, PaymentStatus
from modules.orders.events import OrderStatusChanged, PaymentStatusChanged
from modules.orders.exceptions import (
    Forbidden,
    InvalidPaymentTransition,
    InvalidStatusTransition,
)

if TYPE_CHECKING:
    from modules.orders.models import Order


def transition_order_status(order: Order, target: str) -> str:
    """Move ``order_status`` to *target*; return the previous status."""
    if not order.can_transition_to(target):
        raise InvalidStatusTransition(order.order_status, target)
    previous = order.order_status
    order.order_status = target
    order.add_domain_event(
        OrderStatusChanged(aggregate_id=order.id, old_status=previous, new_status=target)
    )
    return previous


def transition_payment_status(
    order: Order, target: str, details: Optional[Dict[str, Any]] = None
) -> str:
    """Move ``payment_status`` to *target*, merging *details* into the bag."""
    if not order.can_transition_payment_to(target):
        raise InvalidPaymentTransition(order.payment_status, target)
    previous = order.payment_status
    order.payment_status = target
    if details:
        order.merge_payment_details(details)
    order.add_domain_event(
        PaymentStatusChanged(aggregate_id=order.id, old_status=previous, new_status=target)
    )
    return previous


def apply_payment_success(order: Order, details: Optional[Dict[str, Any]] = None) -> bool:
    """Mark the order paid and auto-advance a pending order to processing.

    Returns ``True`` when the fulfillment status was advanced.  Stock
    commitment is the caller's job and must happen in the same unit of
    work.
    """
    transition_payment_status(order, PaymentStatus.PAID, details)
    if order.order_status == OrderStatus.PENDING:
        transition_order_status(order, OrderStatus.PROCESSING)
        return True
    return False


def authorize_fulfillment(order: Order, target: str, is_fulfiller: bool) -> None:
    if not is_fulfiller:
        raise Forbidden("Only the fulfilling artisan may update this order.")
    if target not in FULFILLMENT_STATES or not order.can_transition_to(target):
        raise InvalidStatusTransition(order.order_status, target)


def authorize_cancellation(order: Order, is_owner: bool, is_fulfiller: bool) -> None:
    if is_fulfiller:
        if not order.can_transition_to(OrderStatus.CANCELLED):
            raise InvalidStatusTransition(order.order_status, OrderStatus.CANCELLED)
        return
    if not is_owner:
        raise Forbidden("Not authorized to cancel this order.")
    if order.order_status != OrderStatus.PENDING:
        raise InvalidStatusTransition(order.order_status, OrderStatus.CANCELLED)
