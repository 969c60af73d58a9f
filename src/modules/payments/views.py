"""Payment API views.

The client-reported callback, the status poll and the processor webhook
all go through ``PaymentIntentBridge``; none of them can mark an order
paid without the processor confirming it.
"""

from __future__ import annotations

import structlog
from asgiref.sync import async_to_sync
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.core.exceptions import InfrastructureError
from modules.orders.exceptions import OrderError
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.payments.bridge import PaymentIntentBridge
from modules.payments.exceptions import PaymentError
from modules.payments.processors import get_payment_processor
from modules.payments.responses import payment_error_response
from modules.payments.serializers import (
    CreateIntentSerializer,
    PaymentIntentSerializer,
    PaymentStateSerializer,
    PaymentStatusSerializer,
)
from modules.products.repositories.django_repository import ProductDjangoRepository

logger = structlog.get_logger(__name__)

HANDLED_ERRORS = (OrderError, PaymentError, InfrastructureError)


class PaymentView(APIView):
    """Base for payment endpoints; builds the bridge per request."""

    def get_bridge(self) -> PaymentIntentBridge:
        service = OrderService(OrderDjangoRepository(), ProductDjangoRepository())
        return PaymentIntentBridge(service, get_payment_processor())


class PaymentIntentView(PaymentView):
    def post(self, request: Request) -> Response:
        """POST /api/v1/payments/intents/"""
        serializer = CreateIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            intent = async_to_sync(self.get_bridge().create_intent)(
                data["order_id"],
                request.user.id,
                amount=data.get("amount"),
                currency=data.get("currency"),
            )
        except HANDLED_ERRORS as exc:
            return payment_error_response(exc)
        return Response(
            PaymentIntentSerializer(intent.model_dump()).data, status=status.HTTP_201_CREATED
        )


class PaymentStatusView(PaymentView):
    def post(self, request: Request) -> Response:
        """POST /api/v1/payments/status/"""
        serializer = PaymentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            order = async_to_sync(self.get_bridge().reconcile)(
                data["order_id"],
                data["status"],
                data["transaction_id"],
                error=data["error"],
                actor_id=request.user.id,
            )
        except HANDLED_ERRORS as exc:
            return payment_error_response(exc)
        return Response(PaymentStateSerializer(order).data)


class PaymentStatusPollView(PaymentView):
    def get(self, request: Request, order_id) -> Response:
        """GET /api/v1/payments/status/{order_id}/?transaction_id=..."""
        try:
            order = async_to_sync(self.get_bridge().refresh_status)(
                order_id,
                request.user.id,
                request.query_params.get("transaction_id", ""),
            )
        except HANDLED_ERRORS as exc:
            return payment_error_response(exc)
        return Response(PaymentStateSerializer(order).data)


class PaymentWebhookView(PaymentView):
    """POST /api/v1/payments/webhook/

    Unauthenticated; trust comes from the processor signature.
    """

    permission_classes = [AllowAny]
    authentication_classes: list = []
    throttle_classes: list = []

    def post(self, request: Request) -> Response:
        signature = request.headers.get("Stripe-Signature", "")
        try:
            order = async_to_sync(self.get_bridge().reconcile_webhook)(request.body, signature)
        except HANDLED_ERRORS as exc:
            return payment_error_response(exc)
        if order is None:
            return Response({"received": True, "handled": False})
        logger.info("payment.webhook_handled", order_id=str(order.id))
        return Response({"received": True, "handled": True})
