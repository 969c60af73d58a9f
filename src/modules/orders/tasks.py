"""Background tasks of the orders module."""

from datetime import timedelta

import structlog
from asgiref.sync import async_to_sync
from celery import shared_task
from django.conf import settings

from modules.core.exceptions import InfrastructureError
from modules.orders.constants import DEFAULT_PAYMENT_TTL_MINUTES
from modules.orders.exceptions import OrderError
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.payments.bridge import PaymentIntentBridge
from modules.payments.exceptions import PaymentError
from modules.payments.processors import get_payment_processor
from modules.products.repositories.django_repository import ProductDjangoRepository

logger = structlog.get_logger(__name__)


@shared_task(name="orders.expire_abandoned_orders")
def expire_abandoned_orders(limit: int = 100) -> dict:
    """Cancel processor-paid orders left unpaid past ``ORDER_PAYMENT_TTL_MINUTES``.

    Each candidate is first checked with the processor, so a payment that
    succeeded late is reconciled instead of cancelled.  Cash-on-delivery
    orders are never selected.
    """
    ttl = timedelta(
        minutes=getattr(settings, "ORDER_PAYMENT_TTL_MINUTES", DEFAULT_PAYMENT_TTL_MINUTES)
    )
    service = OrderService(OrderDjangoRepository(), ProductDjangoRepository())
    bridge = PaymentIntentBridge(service, get_payment_processor())

    expired = skipped = errors = 0
    for order in async_to_sync(service.list_abandoned_orders)(ttl, limit):
        try:
            if async_to_sync(bridge.expire_if_abandoned)(order):
                expired += 1
            else:
                skipped += 1
        except (OrderError, PaymentError, InfrastructureError) as exc:
            logger.warning(
                "order.expiry_failed",
                order_id=str(order.id),
                error_type=type(exc).__name__,
            )
            errors += 1

    logger.info("order.expiry_run", expired=expired, skipped=skipped, errors=errors)
    return {"expired": expired, "skipped": skipped, "errors": errors}
