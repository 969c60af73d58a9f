"""Product catalogue contract consumed by the order engine.

Stock operations are single check-and-apply statements: each returns
``True`` when applied (or when the product does not track stock) and
``False`` when the check failed, leaving the row untouched.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.products.models import Product


class IProductRepository(IRepository["Product"]):
    @abstractmethod
    def get_many(self, ids: Iterable[str]) -> Dict[str, Product]:
        """Return live products keyed by ``str(id)``; missing ids are absent."""

    @abstractmethod
    def reserve_stock(self, id: str, quantity: int) -> bool:
        """Hold *quantity* units for an unpaid order."""

    @abstractmethod
    def release_stock(self, id: str, quantity: int) -> bool:
        """Return a reservation that will not be paid."""

    @abstractmethod
    def commit_stock(self, id: str, quantity: int) -> bool:
        """Turn a reservation into a real decrement of ``stock_quantity``."""

    @abstractmethod
    def restock(self, id: str, quantity: int) -> bool:
        """Put committed units back on the shelf."""
