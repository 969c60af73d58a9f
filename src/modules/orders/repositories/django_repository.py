"""Django ORM implementation of the Order repository.

Concurrency control is two-layered: ``get_for_update`` takes a row lock
for the duration of the caller's transaction, and ``save`` performs a
conditional ``UPDATE ... WHERE version = <read version>`` so a stale
in-memory order can never overwrite a newer one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, QuerySet
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.core.repositories.interfaces import Page
from modules.orders.constants import (
    OFFLINE_PAYMENT_METHODS,
    ORDER_NUMBER_MAX_RETRIES,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.exceptions import ConcurrentOrderUpdate
from modules.orders.models import Order, OrderItem, OrderStatusHistory
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

# Columns never rewritten by ``save``.
_IMMUTABLE_FIELDS = {"id", "created_at", "updated_at", "version", "order_number", "user"}


class OrderDjangoRepository(IOrderRepository):
    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        items = data.pop("items")
        order = Order(order_number=self._unique_order_number(), **data)
        order.save()

        for item_data in items:
            OrderItem(
                order=order,
                product_id=item_data["product_id"],
                quantity=item_data["quantity"],
                unit_price=item_data["unit_price"],
            ).save()

        logger.info("order.persisted", order_id=str(order.id), item_count=len(items))
        return order

    @staticmethod
    def _unique_order_number() -> str:
        for _ in range(ORDER_NUMBER_MAX_RETRIES):
            candidate = Order.generate_order_number()
            if not Order.objects.filter(order_number=candidate).exists():
                return candidate
        raise RuntimeError(
            f"Failed to generate unique order_number after "
            f"{ORDER_NUMBER_MAX_RETRIES} attempts"
        )

    # ------------------------------------------------------------------
    # Save (optimistic version check + outbox)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        if entity._state.adding:
            entity.save()
        else:
            now = timezone.now()
            values = {
                field.attname: getattr(entity, field.attname)
                for field in Order._meta.concrete_fields
                if field.name not in _IMMUTABLE_FIELDS
            }
            updated = Order.objects.filter(pk=entity.pk, version=entity.version).update(
                **values, updated_at=now, version=F("version") + 1
            )
            if not updated:
                logger.warning(
                    "order.stale_write_rejected",
                    order_id=str(entity.id),
                    version=entity.version,
                )
                raise ConcurrentOrderUpdate(f"Order {entity.id} was modified concurrently.")
            entity.version += 1
            entity.updated_at = now

        events = entity.domain_events
        for event in events:
            OutboxEvent.objects.create(
                event_type=event.event_name,
                aggregate_id=str(event.aggregate_id),
                payload=event.to_payload(),
                topic="orders",
            )
        entity.clear_domain_events()

        logger.info(
            "order.saved",
            order_id=str(entity.id),
            version=entity.version,
            event_count=len(events),
        )
        return entity

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _with_relations(self) -> QuerySet:
        return Order.objects.select_related("user").prefetch_related(
            "items__product", "status_history"
        )

    def get_by_id(self, id: str) -> Optional[Order]:
        try:
            return self._with_relations().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Order]:
        try:
            return (
                Order.objects.select_for_update()
                .prefetch_related("items")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return self._with_relations().filter(idempotency_key=key).first()

    def get_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        if not transaction_id:
            return None
        return self._with_relations().filter(payment_transaction_id=transaction_id).first()

    def list_by_user(self, user_id: int, page: int = 1, page_size: int = 20) -> Page[Order]:
        return self._paginate(self._with_relations().filter(user_id=user_id), page, page_size)

    def list_by_product_owner(
        self, artisan_id: int, page: int = 1, page_size: int = 20
    ) -> Page[Order]:
        owned_ids = (
            OrderItem.objects.filter(product__created_by_id=artisan_id)
            .values("order_id")
            .distinct()
        )
        queryset = self._with_relations().filter(id__in=owned_ids)
        return self._paginate(queryset, page, page_size)

    def is_fulfilled_by(self, order_id: UUID, artisan_id: int) -> bool:
        return OrderItem.objects.filter(
            order_id=order_id, product__created_by_id=artisan_id
        ).exists()

    def list_abandoned(self, cutoff: datetime, limit: int = 100) -> List[Order]:
        return list(
            Order.objects.filter(
                order_status=OrderStatus.PENDING,
                payment_status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED],
                created_at__lt=cutoff,
            )
            .exclude(payment_method__in=OFFLINE_PAYMENT_METHODS)
            .order_by("created_at")[:limit]
        )

    @staticmethod
    def _paginate(queryset: QuerySet, page: int, page_size: int) -> Page[Order]:
        page = max(page, 1)
        page_size = max(page_size, 1)
        queryset = queryset.order_by("-created_at", "-id")
        total = queryset.count()
        offset = (page - 1) * page_size
        return Page(
            items=list(queryset[offset : offset + page_size]),
            total=total,
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def add_history(
        self,
        order_id: UUID,
        field: str,
        new_status: str,
        old_status: str = "",
        actor_id: Optional[int] = None,
        notes: str = "",
    ) -> OrderStatusHistory:
        history = OrderStatusHistory.objects.create(
            order_id=order_id,
            field=field,
            old_status=old_status,
            new_status=new_status,
            actor_id=actor_id,
            notes=notes,
        )
        logger.info(
            "order.history_added",
            order_id=str(order_id),
            field=field,
            old_status=old_status,
            new_status=new_status,
        )
        return history
