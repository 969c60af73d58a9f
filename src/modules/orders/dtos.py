"""Order DTOs for the service layer.

Framework-agnostic, immutable (``frozen=True``) Pydantic v2 models.  They
are the contract between the API layer (DRF serializers) and
``OrderService``; malformed input is rejected here, before any product or
order is touched.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.orders.constants import PaymentMethod

# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class ShippingAddressDTO(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    country: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=20)
    phone: str = Field(min_length=1, max_length=30)
    notes: str = ""


class PlaceOrderItemDTO(BaseModel):
    """One cart line; the price is resolved from the catalogue, never sent."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class PlaceOrderDTO(BaseModel):
    """Checkout request.

    Validates:
    - ``items`` is non-empty and lists each product once.
    - ``shipping_cost`` is not negative.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    items: List[PlaceOrderItemDTO]
    shipping_address: ShippingAddressDTO
    payment_method: PaymentMethod
    shipping_cost: Decimal = Decimal("0.00")
    notes: str = ""
    idempotency_key: Optional[str] = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[PlaceOrderItemDTO]
    ) -> List[PlaceOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @field_validator("shipping_cost")
    @classmethod
    def shipping_cost_not_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Shipping cost cannot be negative.")
        return v

    @model_validator(mode="after")
    def no_duplicate_products(self):
        product_ids = [item.product_id for item in self.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Duplicate product IDs are not allowed in the same order.")
        return self


# ---------------------------------------------------------------------------
# Internal / output DTOs
# ---------------------------------------------------------------------------


class ValidatedItem(BaseModel):
    """A cart line after catalogue validation, price frozen."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    owner_id: int
    quantity: int
    unit_price: Decimal
    tracks_stock: bool = False


class OrderTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_amount: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    final_amount: Decimal


class PaymentIntentDTO(BaseModel):
    """What the client needs to complete payment out-of-band."""

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    client_secret: str
    transaction_id: str
    amount: Decimal
    currency: str
