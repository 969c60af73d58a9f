"""Payment DRF serializers."""

from __future__ import annotations

from rest_framework import serializers

from modules.payments.constants import PaymentOutcome


class CreateIntentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    currency = serializers.CharField(max_length=3, required=False)


class PaymentStatusSerializer(serializers.Serializer):
    """Client report of the out-of-band payment result."""

    order_id = serializers.UUIDField()
    transaction_id = serializers.CharField(max_length=255)
    status = serializers.ChoiceField(choices=PaymentOutcome.choices)
    error = serializers.CharField(required=False, default="", allow_blank=True)


class PaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    client_secret = serializers.CharField()
    transaction_id = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()


class PaymentStateSerializer(serializers.Serializer):
    order_id = serializers.UUIDField(source="id")
    order_status = serializers.CharField()
    payment_status = serializers.CharField()
    payment_details = serializers.DictField()
