"""Order totals calculation.

Pure functions over priced lines: nothing here reads the database or
mutates its arguments.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol, Union

from modules.orders.constants import DEFAULT_TAX_RATE
from modules.orders.dtos import OrderTotals

CENT = Decimal("0.01")

Number = Union[Decimal, int, str]


class PricedLine(Protocol):
    quantity: int
    unit_price: Decimal


def quantize_money(value: Number) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_subtotal(items: Iterable[PricedLine]) -> Decimal:
    return quantize_money(
        sum((Decimal(item.unit_price) * item.quantity for item in items), Decimal("0"))
    )


def calculate_order_totals(
    items: Iterable[PricedLine],
    shipping_cost: Number = Decimal("0"),
    tax_rate: Optional[Number] = None,
) -> OrderTotals:
    """Compute subtotal, tax and final amount for *items*.

    Tax applies to the subtotal only (shipping is not taxed).  Each
    component is rounded to cents before summing so that
    ``final_amount == total_amount + shipping_cost + tax_amount`` holds
    exactly on the stored values.
    """
    rate = DEFAULT_TAX_RATE if tax_rate is None else Decimal(tax_rate)
    subtotal = calculate_subtotal(items)
    shipping = quantize_money(shipping_cost)
    tax = quantize_money(subtotal * rate)
    return OrderTotals(
        total_amount=subtotal,
        shipping_cost=shipping,
        tax_amount=tax,
        final_amount=subtotal + shipping + tax,
    )
