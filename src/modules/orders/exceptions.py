"""Order domain exceptions.

Raised by the service layer when business rules are violated.  Views
catch them and translate each into a fixed HTTP response; messages of
transition and authorization errors are never echoed to the client.
"""

from __future__ import annotations

from typing import List, Sequence


class OrderError(Exception):
    """Base class for every order business-rule failure."""


class OrderValidationError(OrderError):
    """Missing or malformed input; safe to show to the caller verbatim."""


class OrderNotFound(OrderError):
    """The requested order does not exist."""


class ProductNotFound(OrderError):
    """A product referenced by an order item does not exist."""


class ProductNotApproved(OrderError):
    """A product referenced by an order item is not approved for sale."""


class InsufficientStock(OrderError):
    """Not enough unreserved stock to satisfy an order item."""


class OrderItemsRejected(OrderValidationError):
    """One or more checkout items failed validation.

    ``errors`` holds every individual ``ProductNotFound``,
    ``ProductNotApproved`` or ``InsufficientStock`` so the caller can fix
    the whole cart at once.
    """

    def __init__(self, errors: Sequence[OrderError]) -> None:
        self.errors: List[OrderError] = list(errors)
        super().__init__("; ".join(str(error) for error in self.errors))


class Forbidden(OrderError):
    """The actor may not perform this action on the order."""


class InvalidStatusTransition(OrderError):
    """The order-status edge is not in the transition table."""

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Cannot transition order from {source} to {target}.")


class InvalidPaymentTransition(OrderError):
    """The payment-status edge is not in the transition table."""

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Cannot transition payment from {source} to {target}.")


class ConcurrentOrderUpdate(OrderError):
    """The order changed since it was read (optimistic version check)."""
