"""Read-only report projections.

Each report is one function returning one frozen model; the field set is
fixed so callers never have to probe the result for keys.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict

from django.db.models import Count, Q, Sum
from pydantic import BaseModel, ConfigDict

from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.models import Order, OrderItem


class OrderStatusCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_orders: int
    by_order_status: Dict[str, int]
    by_payment_status: Dict[str, int]
    paid_revenue: Decimal


class ArtisanSalesSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    artisan_id: int
    order_count: int
    awaiting_fulfillment: int
    units_sold: int
    gross_sales: Decimal


def _counts(field: str, choices) -> Dict[str, int]:
    rows = Order.objects.values(field).annotate(n=Count("id")).order_by()
    counts = {value: 0 for value in choices.values}
    counts.update({row[field]: row["n"] for row in rows})
    return counts


def order_status_counts() -> OrderStatusCounts:
    """Platform-wide totals for the staff dashboard."""
    revenue = Order.objects.filter(payment_status=PaymentStatus.PAID).aggregate(
        total=Sum("final_amount")
    )["total"]
    return OrderStatusCounts(
        total_orders=Order.objects.count(),
        by_order_status=_counts("order_status", OrderStatus),
        by_payment_status=_counts("payment_status", PaymentStatus),
        paid_revenue=revenue or Decimal("0.00"),
    )


def artisan_sales_summary(artisan_id: int) -> ArtisanSalesSummary:
    """Sales of one artisan's products.

    Units and gross sales count only lines of paid orders; cancelled and
    refunded orders are excluded.
    """
    lines = OrderItem.objects.filter(product__created_by_id=artisan_id)
    sold = lines.filter(order__payment_status=PaymentStatus.PAID).exclude(
        order__order_status=OrderStatus.CANCELLED
    )
    sales = sold.aggregate(units=Sum("quantity"), gross=Sum("subtotal"))
    orders = lines.aggregate(
        total=Count("order", distinct=True),
        awaiting=Count(
            "order",
            distinct=True,
            filter=Q(order__order_status__in=[OrderStatus.PENDING, OrderStatus.PROCESSING]),
        ),
    )
    return ArtisanSalesSummary(
        artisan_id=artisan_id,
        order_count=orders["total"],
        awaiting_fulfillment=orders["awaiting"],
        units_sold=sales["units"] or 0,
        gross_sales=sales["gross"] or Decimal("0.00"),
    )
