"""Order, OrderItem and OrderStatusHistory models.

Invariants held by the aggregate:
- ``OrderItem.unit_price`` is a snapshot of the catalogue price at checkout
  and is never re-read from the product.
- ``final_amount == total_amount + shipping_cost + tax_amount``.
- The shipping address is written once at creation.
- ``payment_details`` only ever grows: ``merge_payment_details`` overlays
  keys, it never replaces the whole bag.
- ``version`` increases on every persisted update; the repository rejects
  a write whose version is stale.
"""

from __future__ import annotations

import secrets
from typing import Any, Dict

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.orders.constants import (
    OFFLINE_PAYMENT_METHODS,
    TERMINAL_STATES,
    VALID_PAYMENT_TRANSITIONS,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StatusField,
)
from shared.domain.events import DomainEventMixin

SHIPPING_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "street",
    "city",
    "state",
    "country",
    "zip_code",
    "phone",
    "notes",
)


class Order(DomainEventMixin, BaseModel):
    """Order aggregate root.

    ``order_number`` (``ORD-YYYYMMDD-XXXXXX``) is what customers see; the
    UUIDv7 ``id`` is used for every internal reference.
    """

    order_number = models.CharField(max_length=20, unique=True, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    final_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="usd")

    shipping_first_name = models.CharField(max_length=100)
    shipping_last_name = models.CharField(max_length=100)
    shipping_street = models.CharField(max_length=255)
    shipping_city = models.CharField(max_length=100)
    shipping_state = models.CharField(max_length=100)
    shipping_country = models.CharField(max_length=100)
    shipping_zip_code = models.CharField(max_length=20)
    shipping_phone = models.CharField(max_length=30)
    shipping_notes = models.TextField(blank=True, default="")

    order_status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    payment_details = models.JSONField(default=dict, blank=True)
    payment_transaction_id = models.CharField(
        max_length=255, blank=True, default="", db_index=True
    )
    stock_committed = models.BooleanField(default=False)

    tracking_number = models.CharField(max_length=100, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    estimated_delivery = models.DateField(null=True, blank=True)

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )
    version = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="orders_user_created_idx"),
            models.Index(fields=["order_status"], name="orders_status_idx"),
            models.Index(fields=["payment_status"], name="orders_payment_status_idx"),
        ]

    # ------------------------------------------------------------------
    # State machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.order_status in TERMINAL_STATES

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_offline_payment(self) -> bool:
        return self.payment_method in OFFLINE_PAYMENT_METHODS

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.order_status, set())

    def can_transition_payment_to(self, new_status: str) -> bool:
        return new_status in VALID_PAYMENT_TRANSITIONS.get(self.payment_status, set())

    # ------------------------------------------------------------------
    # Payment metadata
    # ------------------------------------------------------------------

    def merge_payment_details(self, details: Dict[str, Any]) -> None:
        merged = dict(self.payment_details or {})
        merged.update({key: value for key, value in details.items() if value is not None})
        self.payment_details = merged

    @property
    def shipping_address(self) -> Dict[str, str]:
        return {name: getattr(self, f"shipping_{name}") for name in SHIPPING_ADDRESS_FIELDS}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{timezone.now():%Y%m%d}-{suffix}"

    def __str__(self) -> str:
        return f"{self.order_number} ({self.order_status}/{self.payment_status})"


class OrderItem(BaseModel):
    """Line item: product reference, quantity and frozen unit price."""

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, editable=False)

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
        ]

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.subtotal = self.quantity * self.unit_price
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.product_id} x{self.quantity} @ {self.unit_price}"


class OrderStatusHistory(BaseModel):
    """Append-only audit row for one transition of either status field.

    ``actor`` is ``None`` when the system made the change (payment
    reconciliation, abandoned-checkout reaper).
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    field = models.CharField(max_length=20, choices=StatusField.choices)
    old_status = models.CharField(max_length=20, blank=True, default="")
    new_status = models.CharField(max_length=20)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["order", "created_at"], name="osh_order_created_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.order_id} {self.field}: {self.old_status} -> {self.new_status}"
