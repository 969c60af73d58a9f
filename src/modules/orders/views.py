"""Order API views.

Exposes ``OrderService`` (async) over synchronous DRF views through
``async_to_sync``.  Domain exceptions are caught and translated into
fixed HTTP responses by ``error_response``; anything else propagates.
"""

from __future__ import annotations

from typing import Tuple

from asgiref.sync import async_to_sync
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import ViewSet

from modules.core.exceptions import InfrastructureError
from modules.orders.dtos import PlaceOrderDTO
from modules.orders.exceptions import OrderError
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.responses import error_response
from modules.orders.serializers import (
    CancelOrderSerializer,
    FulfillmentUpdateSerializer,
    OrderListSerializer,
    OrderSerializer,
    PlaceOrderSerializer,
    paginated,
)
from modules.orders.services import OrderService
from modules.payments.bridge import PaymentIntentBridge
from modules.payments.exceptions import PaymentError
from modules.payments.processors import get_payment_processor
from modules.payments.responses import payment_error_response
from modules.products.repositories.django_repository import ProductDjangoRepository

MAX_PAGE_SIZE = 100


def _page_params(request: Request) -> Tuple[int, int]:
    try:
        page = int(request.query_params.get("page", 1))
        page_size = int(request.query_params.get("page_size", 20))
    except ValueError:
        return 1, 20
    return max(page, 1), min(max(page_size, 1), MAX_PAGE_SIZE)


class OrderViewSet(ViewSet):
    """Orders of the authenticated user, and of the artisan fulfilling them.

    Does **not** extend ``ModelViewSet``: all ORM access goes through the
    service/repository layer.
    """

    lookup_value_regex = "[0-9a-fA-F-]{36}"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = OrderService(
            order_repository=OrderDjangoRepository(),
            product_repository=ProductDjangoRepository(),
        )

    def get_throttles(self) -> list[BaseThrottle]:
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve", "artisan"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header.
        """
        serializer = PlaceOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        dto = PlaceOrderDTO(
            user_id=request.user.id,
            items=data["items"],
            shipping_address=data["shipping_address"],
            payment_method=data["payment_method"],
            shipping_cost=data["shipping_cost"],
            notes=data["notes"],
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        try:
            order = async_to_sync(self._service.place_order)(dto)
        except (OrderError, InfrastructureError) as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/: orders placed by the caller, newest first."""
        page, page_size = _page_params(request)
        try:
            result = async_to_sync(self._service.list_user_orders)(
                request.user.id, page, page_size
            )
        except InfrastructureError as exc:
            return error_response(exc)
        return Response(paginated(result, OrderListSerializer))

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = async_to_sync(self._service.get_order)(
                pk, request.user.id, request.user.is_staff
            )
        except (OrderError, InfrastructureError) as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=["get"])
    def artisan(self, request: Request) -> Response:
        """GET /api/v1/orders/artisan/: orders containing the caller's products."""
        page, page_size = _page_params(request)
        try:
            result = async_to_sync(self._service.list_artisan_orders)(
                request.user.id, page, page_size
            )
        except InfrastructureError as exc:
            return error_response(exc)
        return Response(paginated(result, OrderSerializer))

    @action(detail=False, methods=["get"], url_path="artisan/summary")
    def artisan_summary(self, request: Request) -> Response:
        """GET /api/v1/orders/artisan/summary/"""
        try:
            summary = async_to_sync(self._service.artisan_summary)(request.user.id)
        except InfrastructureError as exc:
            return error_response(exc)
        return Response(summary.model_dump(mode="json"))

    @action(detail=False, methods=["get"], permission_classes=[IsAdminUser])
    def stats(self, request: Request) -> Response:
        try:
            counts = async_to_sync(self._service.order_stats)()
        except InfrastructureError as exc:
            return error_response(exc)
        return Response(counts.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Fulfillment / cancellation
    # ------------------------------------------------------------------

    @action(detail=True, methods=["patch"], url_path="status")
    def update_status(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/orders/{pk}/status/

        Artisan-only.  Cancellations go through ``/cancel/``.
        """
        serializer = FulfillmentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            order = async_to_sync(self._service.update_fulfillment_status)(
                pk,
                request.user.id,
                data["status"],
                tracking_number=data.get("tracking_number"),
                notes=data.get("notes"),
                estimated_delivery=data.get("estimated_delivery"),
            )
        except (OrderError, InfrastructureError) as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Cancels an order and gives its stock back.
        """
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            order = async_to_sync(self._service.cancel_order)(
                pk, request.user.id, serializer.validated_data["reason"]
            )
        except (OrderError, InfrastructureError) as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data)

    # ------------------------------------------------------------------
    # Payment follow-ups
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path="retry-payment")
    def retry_payment(self, request: Request, pk: str | None = None) -> Response:
        try:
            order = async_to_sync(self._service.retry_payment)(pk, request.user.id)
        except (OrderError, InfrastructureError) as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=["post"])
    def refund(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/refund/

        Full refund within the refund window while processing or shipped.
        """
        try:
            bridge = PaymentIntentBridge(self._service, get_payment_processor())
            order = async_to_sync(bridge.refund)(pk, request.user.id)
        except (OrderError, PaymentError, InfrastructureError) as exc:
            return payment_error_response(exc)
        return Response(OrderSerializer(order).data)
