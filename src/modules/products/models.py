"""Marketplace product listing (catalogue side of checkout).

Only the fields the order engine reads are modelled here: price,
approval flag, owning artisan and optional stock tracking.

Stock tracking is per product: ``stock_quantity IS NULL`` means the
artisan does not track inventory and every quantity is available.
``reserved_quantity`` counts units held by unpaid orders, so the sellable
amount is ``stock_quantity - reserved_quantity``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import SoftDeleteModel


class Product(SoftDeleteModel):
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=100, blank=True, default="")
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="products",
    )
    is_approved = models.BooleanField(default=False)
    stock_quantity = models.PositiveIntegerField(null=True, blank=True, default=None)
    reserved_quantity = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "products"
        ordering = ["title"]
        indexes = [
            models.Index(fields=["created_by"], name="products_owner_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="products_price_positive",
            ),
        ]

    @property
    def tracks_stock(self) -> bool:
        return self.stock_quantity is not None

    @property
    def available_quantity(self) -> Optional[int]:
        """Units that can still be reserved, ``None`` when untracked."""
        if self.stock_quantity is None:
            return None
        return max(self.stock_quantity - self.reserved_quantity, 0)

    def __str__(self) -> str:
        return self.title
