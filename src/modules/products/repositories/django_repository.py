"""Django ORM implementation of the product catalogue.

Follows the Null Object convention: look-ups return ``None`` instead of
raising, and stock operations report failure through their return value.
Every stock operation is one conditional ``UPDATE`` so the check and the
write cannot interleave with a concurrent checkout.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.db.models.functions import Greatest

from modules.products.models import Product
from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class ProductDjangoRepository(IProductRepository):
    def get_by_id(self, id: str) -> Optional[Product]:
        try:
            return Product.objects.alive().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_many(self, ids: Iterable[str]) -> Dict[str, Product]:
        valid_ids = []
        for raw in ids:
            try:
                Product._meta.pk.to_python(raw)
            except ValidationError:
                continue
            valid_ids.append(raw)
        products = Product.objects.alive().filter(id__in=valid_ids)
        return {str(product.id): product for product in products}

    @transaction.atomic
    def save(self, entity: Product) -> Product:
        entity.save()
        logger.info("product.saved", product_id=str(entity.id))
        return entity

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def reserve_stock(self, id: str, quantity: int) -> bool:
        updated = Product.objects.filter(
            id=id,
            stock_quantity__isnull=False,
            stock_quantity__gte=F("reserved_quantity") + quantity,
        ).update(reserved_quantity=F("reserved_quantity") + quantity)
        return self._applied(id, updated, "product.stock_reserved", quantity)

    def release_stock(self, id: str, quantity: int) -> bool:
        updated = Product.objects.filter(
            id=id,
            stock_quantity__isnull=False,
        ).update(reserved_quantity=Greatest(F("reserved_quantity") - quantity, 0))
        return self._applied(id, updated, "product.stock_released", quantity)

    def commit_stock(self, id: str, quantity: int) -> bool:
        updated = Product.objects.filter(
            id=id,
            stock_quantity__isnull=False,
            stock_quantity__gte=quantity,
        ).update(
            stock_quantity=F("stock_quantity") - quantity,
            reserved_quantity=Greatest(F("reserved_quantity") - quantity, 0),
        )
        return self._applied(id, updated, "product.stock_committed", quantity)

    def restock(self, id: str, quantity: int) -> bool:
        updated = Product.objects.filter(
            id=id,
            stock_quantity__isnull=False,
        ).update(stock_quantity=F("stock_quantity") + quantity)
        return self._applied(id, updated, "product.restocked", quantity)

    def _applied(self, id: str, updated: int, event: str, quantity: int) -> bool:
        if updated:
            logger.info(event, product_id=str(id), quantity=quantity)
            return True
        # Untracked products accept every stock operation.
        untracked = Product.objects.filter(id=id, stock_quantity__isnull=True).exists()
        if not untracked:
            logger.warning(f"{event}_rejected", product_id=str(id), quantity=quantity)
        return untracked
