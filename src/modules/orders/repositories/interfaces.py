"""Order repository interface.

The order aggregate (order, items, status history) is one consistency
boundary.  Writes are atomic, and ``save`` refuses to overwrite an order
that changed since it was read.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository, Page

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory


class IOrderRepository(IRepository["Order"]):
    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` carries the order columns plus ``items``: a list of dicts
        with ``product_id``, ``quantity`` and ``unit_price``.
        """

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order holding a row lock until the transaction ends."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]: ...

    @abstractmethod
    def get_by_transaction_id(self, transaction_id: str) -> Optional[Order]: ...

    @abstractmethod
    def list_by_user(self, user_id: int, page: int = 1, page_size: int = 20) -> Page[Order]:
        """Orders placed by *user_id*, newest first."""

    @abstractmethod
    def list_by_product_owner(
        self, artisan_id: int, page: int = 1, page_size: int = 20
    ) -> Page[Order]:
        """Orders containing at least one product created by *artisan_id*."""

    @abstractmethod
    def is_fulfilled_by(self, order_id: UUID, artisan_id: int) -> bool: ...

    @abstractmethod
    def add_history(
        self,
        order_id: UUID,
        field: str,
        new_status: str,
        old_status: str = "",
        actor_id: Optional[int] = None,
        notes: str = "",
    ) -> OrderStatusHistory:
        """Append one row to the order's audit trail."""

    @abstractmethod
    def list_abandoned(self, cutoff: datetime, limit: int = 100) -> List[Order]:
        """Unpaid processor-payment orders still pending and older than *cutoff*."""
