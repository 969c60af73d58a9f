"""Event handlers for Orders domain events.

Handlers run in the outbox relay, after the producing transaction has
committed, and receive the stored JSON payload.
"""

from __future__ import annotations

from typing import Any, Dict

import structlog

from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderPlacedHandler(IEventHandler):
    def handle(self, payload: Dict[str, Any]) -> None:
        logger.info(
            "order.placed_notified",
            order_id=payload.get("aggregate_id"),
            user_id=payload.get("user_id"),
            final_amount=payload.get("final_amount"),
        )


class OrderStatusChangedHandler(IEventHandler):
    def handle(self, payload: Dict[str, Any]) -> None:
        logger.info(
            "order.status_change_notified",
            order_id=payload.get("aggregate_id"),
            old_status=payload.get("old_status"),
            new_status=payload.get("new_status"),
        )


class PaymentStatusChangedHandler(IEventHandler):
    def handle(self, payload: Dict[str, Any]) -> None:
        logger.info(
            "payment.status_change_notified",
            order_id=payload.get("aggregate_id"),
            old_status=payload.get("old_status"),
            new_status=payload.get("new_status"),
        )


order_placed_handler = OrderPlacedHandler()
order_status_changed_handler = OrderStatusChangedHandler()
payment_status_changed_handler = PaymentStatusChangedHandler()
