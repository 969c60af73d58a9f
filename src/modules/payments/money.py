"""Conversion between Decimal amounts and processor minor units."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from modules.payments.constants import ZERO_DECIMAL_CURRENCIES


def _exponent(currency: str) -> int:
    return 0 if currency.lower() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Union[Decimal, str, int], currency: str) -> int:
    """``Decimal("12.34"), "usd"`` → ``1234``; ``Decimal("500"), "jpy"`` → ``500``."""
    scaled = Decimal(amount).scaleb(_exponent(currency))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    exponent = _exponent(currency)
    return Decimal(amount).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))
