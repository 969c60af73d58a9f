"""Checkout item validation against the product catalogue."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

import structlog

from modules.orders.dtos import PlaceOrderItemDTO, ValidatedItem
from modules.orders.exceptions import (
    InsufficientStock,
    OrderError,
    OrderItemsRejected,
    ProductNotApproved,
    ProductNotFound,
)

if TYPE_CHECKING:
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class OrderItemValidator:
    """Resolve cart lines to catalogue products, all-or-nothing.

    Every line is checked so the caller gets the complete list of
    problems in one ``OrderItemsRejected``.  The stock check here is
    advisory; the authoritative check is the atomic reservation done by
    the service afterwards.
    """

    def __init__(
        self, product_repository: IProductRepository, enforce_stock: bool = True
    ) -> None:
        self._product_repo = product_repository
        self._enforce_stock = enforce_stock

    def validate(self, items: Sequence[PlaceOrderItemDTO]) -> List[ValidatedItem]:
        products = self._product_repo.get_many(str(item.product_id) for item in items)

        errors: List[OrderError] = []
        validated: List[ValidatedItem] = []
        for item in items:
            product = products.get(str(item.product_id))
            if product is None:
                errors.append(ProductNotFound(f"Product {item.product_id} not found."))
                continue
            if not product.is_approved:
                errors.append(
                    ProductNotApproved(f"Product {product.title} is not approved for sale.")
                )
                continue
            available = product.available_quantity
            if self._enforce_stock and available is not None and available < item.quantity:
                errors.append(
                    InsufficientStock(
                        f"Product {product.title}: requested {item.quantity}, "
                        f"available {available}."
                    )
                )
                continue
            validated.append(
                ValidatedItem(
                    product_id=product.id,
                    owner_id=product.created_by_id,
                    quantity=item.quantity,
                    unit_price=product.price,
                    tracks_stock=self._enforce_stock and product.tracks_stock,
                )
            )

        if errors:
            logger.info("order.items_rejected", error_count=len(errors))
            raise OrderItemsRejected(errors)
        return validated
