"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import FULFILLMENT_STATES, PaymentMethod
from modules.orders.models import Order, OrderItem, OrderStatusHistory

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class PlaceOrderItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class ShippingAddressSerializer(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    street = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    country = serializers.CharField(max_length=100)
    zip_code = serializers.CharField(max_length=20)
    phone = serializers.CharField(max_length=30)
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class PlaceOrderSerializer(serializers.Serializer):
    """Validates the checkout payload; prices are never accepted from clients."""

    items = PlaceOrderItemSerializer(many=True, allow_empty=False)
    shipping_address = ShippingAddressSerializer()
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)
    shipping_cost = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, default="0.00"
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True)

    def validate_items(self, value):
        product_ids = [item["product_id"] for item in value]
        if len(product_ids) != len(set(product_ids)):
            raise serializers.ValidationError(
                "Duplicate product IDs are not allowed in the same order."
            )
        return value


class FulfillmentUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=sorted(FULFILLMENT_STATES))
    tracking_number = serializers.CharField(required=False, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True)
    estimated_delivery = serializers.DateField(required=False)


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, default="", allow_blank=True)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    product_title = serializers.CharField(source="product.title", read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_title",
            "quantity",
            "unit_price",
            "subtotal",
        ]
        read_only_fields = fields


class StatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "field",
            "old_status",
            "new_status",
            "actor_id",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items and history."""

    items = OrderItemSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    shipping_address = serializers.DictField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "order_status",
            "payment_status",
            "payment_method",
            "payment_details",
            "total_amount",
            "shipping_cost",
            "tax_amount",
            "final_amount",
            "currency",
            "shipping_address",
            "tracking_number",
            "notes",
            "estimated_delivery",
            "created_at",
            "updated_at",
            "items",
            "status_history",
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order lists (no history)."""

    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "order_status",
            "payment_status",
            "payment_method",
            "final_amount",
            "currency",
            "created_at",
            "items",
        ]
        read_only_fields = fields


def paginated(page, serializer_class) -> dict:
    """Envelope a repository ``Page`` the way DRF's page-number pagination does."""
    return {
        "count": page.total,
        "page": page.page,
        "page_size": page.page_size,
        "pages": page.pages,
        "results": serializer_class(page.items, many=True).data,
    }
