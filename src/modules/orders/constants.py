"""Order domain constants.

Status choices and the two transition tables driving the order state
machine (fulfillment and payment dimensions).
"""

from decimal import Decimal

from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    CARD = "card", "Card"
    UPI = "upi", "UPI"
    NETBANKING = "netbanking", "Net banking"
    COD = "cod", "Cash on delivery"
    STRIPE = "stripe", "Stripe"
    PAYPAL = "paypal", "PayPal"
    RAZORPAY = "razorpay", "Razorpay"


class StatusField(models.TextChoices):
    ORDER = "order_status", "Order status"
    PAYMENT = "payment_status", "Payment status"


VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

VALID_PAYMENT_TRANSITIONS: dict[str, set[str]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

TERMINAL_STATES: set[str] = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
TERMINAL_PAYMENT_STATES: set[str] = {PaymentStatus.REFUNDED}
SETTLED_PAYMENT_STATES: set[str] = {PaymentStatus.PAID, PaymentStatus.REFUNDED}

# Targets an artisan may request through the fulfillment endpoint.
FULFILLMENT_STATES: set[str] = {
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
}

# Methods settled offline; no processor intent is ever created for them.
OFFLINE_PAYMENT_METHODS: set[str] = {PaymentMethod.COD}

# Order statuses from which a paid order may still be refunded.
REFUNDABLE_STATES: set[str] = {OrderStatus.PROCESSING, OrderStatus.SHIPPED}

DEFAULT_TAX_RATE = Decimal("0.18")
DEFAULT_REFUND_WINDOW_DAYS = 7
DEFAULT_PAYMENT_TTL_MINUTES = 60 * 24

ORDER_NUMBER_MAX_RETRIES = 5
