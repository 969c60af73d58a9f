import django.core.validators
import django.db.models.deletion
import uuid6
from django.conf import settings
from django.db import migrations, models

ORDER_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
    ("cancelled", "Cancelled"),
]

PAYMENT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("paid", "Paid"),
    ("failed", "Failed"),
    ("refunded", "Refunded"),
]

PAYMENT_METHOD_CHOICES = [
    ("card", "Card"),
    ("upi", "UPI"),
    ("netbanking", "Net banking"),
    ("cod", "Cash on delivery"),
    ("stripe", "Stripe"),
    ("paypal", "PayPal"),
    ("razorpay", "Razorpay"),
]


def _base_fields():
    return [
        (
            "id",
            models.UUIDField(
                default=uuid6.uuid7, editable=False, primary_key=True, serialize=False
            ),
        ),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("products", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                *_base_fields(),
                ("order_number", models.CharField(editable=False, max_length=20, unique=True)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "shipping_cost",
                    models.DecimalField(decimal_places=2, default=0, max_digits=12),
                ),
                ("tax_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("final_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("shipping_first_name", models.CharField(max_length=100)),
                ("shipping_last_name", models.CharField(max_length=100)),
                ("shipping_street", models.CharField(max_length=255)),
                ("shipping_city", models.CharField(max_length=100)),
                ("shipping_state", models.CharField(max_length=100)),
                ("shipping_country", models.CharField(max_length=100)),
                ("shipping_zip_code", models.CharField(max_length=20)),
                ("shipping_phone", models.CharField(max_length=30)),
                ("shipping_notes", models.TextField(blank=True, default="")),
                (
                    "order_status",
                    models.CharField(
                        choices=ORDER_STATUS_CHOICES, default="pending", max_length=20
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=PAYMENT_STATUS_CHOICES, default="pending", max_length=20
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(choices=PAYMENT_METHOD_CHOICES, max_length=20),
                ),
                ("payment_details", models.JSONField(blank=True, default=dict)),
                (
                    "payment_transaction_id",
                    models.CharField(blank=True, db_index=True, default="", max_length=255),
                ),
                ("stock_committed", models.BooleanField(default=False)),
                ("tracking_number", models.CharField(blank=True, default="", max_length=100)),
                ("notes", models.TextField(blank=True, default="")),
                ("estimated_delivery", models.DateField(blank=True, null=True)),
                (
                    "idempotency_key",
                    models.CharField(blank=True, max_length=255, null=True, unique=True),
                ),
                ("version", models.PositiveIntegerField(default=1)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "-created_at"], name="orders_user_created_idx"),
                    models.Index(fields=["order_status"], name="orders_status_idx"),
                    models.Index(fields=["payment_status"], name="orders_payment_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                *_base_fields(),
                (
                    "quantity",
                    models.PositiveIntegerField(
                        validators=[django.core.validators.MinValueValidator(1)]
                    ),
                ),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "subtotal",
                    models.DecimalField(decimal_places=2, editable=False, max_digits=12),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.order",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="order_items",
                        to="products.product",
                    ),
                ),
            ],
            options={
                "db_table": "order_items",
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gte", 1)),
                        name="order_items_quantity_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderStatusHistory",
            fields=[
                *_base_fields(),
                (
                    "field",
                    models.CharField(
                        choices=[
                            ("order_status", "Order status"),
                            ("payment_status", "Payment status"),
                        ],
                        max_length=20,
                    ),
                ),
                ("old_status", models.CharField(blank=True, default="", max_length=20)),
                ("new_status", models.CharField(max_length=20)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="status_history",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "db_table": "order_status_history",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["order", "created_at"], name="osh_order_created_idx"),
                ],
            },
        ),
    ]
