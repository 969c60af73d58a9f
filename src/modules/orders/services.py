"""Order service layer (use cases).

Every public operation is a coroutine.  The database part of each
operation runs as one synchronous ``transaction.atomic`` unit of work
through ``sync_to_async``; the caller never blocks the event loop, and a
failure anywhere in the unit of work rolls back stock and status changes
together.

Per-order mutations lock the order row and re-check the transition under
the lock, and ``IOrderRepository.save`` rejects stale versions, so two
concurrent requests can never both commit a transition from the same
state.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, TypeVar
from uuid import UUID

import structlog
from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from modules.core.exceptions import InfrastructureError
from modules.orders.constants import (
    DEFAULT_REFUND_WINDOW_DAYS,
    DEFAULT_TAX_RATE,
    REFUNDABLE_STATES,
    OrderStatus,
    PaymentStatus,
    StatusField,
)
from modules.orders.events import OrderPlaced
from modules.orders.exceptions import (
    Forbidden,
    InsufficientStock,
    InvalidPaymentTransition,
    InvalidStatusTransition,
    OrderNotFound,
    OrderValidationError,
)
from modules.orders.reports import (
    ArtisanSalesSummary,
    OrderStatusCounts,
    artisan_sales_summary,
    order_status_counts,
)
from modules.orders.state_machine import (
    apply_payment_success,
    authorize_cancellation,
    authorize_fulfillment,
    transition_order_status,
    transition_payment_status,
)
from modules.orders.totals import calculate_order_totals
from modules.orders.validators import OrderItemValidator

if TYPE_CHECKING:
    from datetime import date

    from modules.core.repositories.interfaces import Page
    from modules.orders.dtos import PlaceOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)

R = TypeVar("R")


class OrderService:
    """Application service for order use cases.

    Receives repositories via constructor injection (DIP).  Policy knobs
    default to the ``ORDER_*`` Django settings.
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        product_repository: IProductRepository,
        *,
        tax_rate: Optional[Decimal] = None,
        enforce_stock: Optional[bool] = None,
        currency: Optional[str] = None,
    ) -> None:
        self._order_repo = order_repository
        self._product_repo = product_repository
        self._tax_rate = Decimal(
            str(tax_rate if tax_rate is not None else getattr(settings, "ORDER_TAX_RATE", DEFAULT_TAX_RATE))
        )
        self._enforce_stock = (
            enforce_stock
            if enforce_stock is not None
            else getattr(settings, "ORDER_ENFORCE_STOCK", True)
        )
        self._currency = (currency or getattr(settings, "PAYMENT_CURRENCY", "usd")).lower()
        self._validator = OrderItemValidator(product_repository, self._enforce_stock)

    async def _run(self, func: Callable[..., R], *args: Any) -> R:
        try:
            return await sync_to_async(func)(*args)
        except DatabaseError as exc:
            logger.exception("order.infrastructure_error", operation=func.__name__)
            raise InfrastructureError("Order storage is unavailable.") from exc

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def place_order(self, dto: PlaceOrderDTO) -> Order:
        """Validate the cart, reserve stock and persist a pending order.

        Raises:
            OrderItemsRejected: one or more items are missing, unapproved
                or out of stock.
            InsufficientStock: a concurrent checkout took the last units
                between validation and reservation.
            OrderValidationError: the idempotency key belongs to another user.
        """
        return await self._run(self._place_order, dto)

    @transaction.atomic
    def _place_order(self, dto: PlaceOrderDTO) -> Order:
        log = logger.bind(user_id=dto.user_id)
        log.info("order.checkout_started", item_count=len(dto.items))

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(dto.idempotency_key)
            if existing:
                if existing.user_id != dto.user_id:
                    raise OrderValidationError("Idempotency key already used.")
                log.info("order.idempotency_hit", order_id=str(existing.id))
                return existing

        items = self._validator.validate(dto.items)
        totals = calculate_order_totals(items, dto.shipping_cost, self._tax_rate)

        # Sorted to keep a stable lock order across concurrent checkouts.
        for item in sorted(items, key=lambda i: str(i.product_id)):
            if item.tracks_stock and not self._product_repo.reserve_stock(
                str(item.product_id), item.quantity
            ):
                log.warning("order.reservation_failed", product_id=str(item.product_id))
                raise InsufficientStock(
                    f"Product {item.product_id}: requested {item.quantity} "
                    f"exceeds available stock."
                )

        address = dto.shipping_address
        order = self._order_repo.create(
            {
                "user_id": dto.user_id,
                "items": [
                    {
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                    }
                    for item in items
                ],
                **totals.model_dump(),
                "currency": self._currency,
                "payment_method": dto.payment_method,
                "notes": dto.notes,
                "idempotency_key": dto.idempotency_key,
                **{f"shipping_{name}": value for name, value in address.model_dump().items()},
            }
        )
        order.add_domain_event(
            OrderPlaced(
                aggregate_id=order.id,
                user_id=str(dto.user_id),
                final_amount=str(order.final_amount),
            )
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order_id=order.id,
            field=StatusField.ORDER,
            new_status=OrderStatus.PENDING,
            actor_id=dto.user_id,
            notes="Order placed",
        )

        log.info(
            "order.placed",
            order_id=str(order.id),
            final_amount=str(order.final_amount),
            payment_method=order.payment_method,
        )
        return self._order_repo.get_by_id(str(order.id)) or order

    # ------------------------------------------------------------------
    # Fulfillment & cancellation
    # ------------------------------------------------------------------

    async def update_fulfillment_status(
        self,
        order_id: UUID,
        actor_id: int,
        new_status: str,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
        estimated_delivery: Optional[date] = None,
    ) -> Order:
        """Advance fulfillment on behalf of the artisan.

        Raises:
            OrderNotFound, Forbidden, InvalidStatusTransition,
            InsufficientStock (cash-on-delivery stock commit).
        """
        return await self._run(
            self._update_fulfillment_status,
            order_id,
            actor_id,
            new_status,
            tracking_number,
            notes,
            estimated_delivery,
        )

    @transaction.atomic
    def _update_fulfillment_status(
        self,
        order_id: UUID,
        actor_id: int,
        new_status: str,
        tracking_number: Optional[str],
        notes: Optional[str],
        estimated_delivery: Optional[date],
    ) -> Order:
        order = self._lock(order_id)
        log = logger.bind(
            order_id=str(order_id), current_status=order.order_status, new_status=new_status
        )
        try:
            authorize_fulfillment(
                order, new_status, self._order_repo.is_fulfilled_by(order.id, actor_id)
            )
        except (Forbidden, InvalidStatusTransition):
            log.warning("order.fulfillment_rejected", actor_id=actor_id)
            raise

        # Cash orders never see a processor success, so their reservation
        # turns into a real decrement when the artisan starts processing.
        if new_status == OrderStatus.PROCESSING and order.is_offline_payment:
            self._commit_stock(order)

        previous = transition_order_status(order, new_status)
        if tracking_number:
            order.tracking_number = tracking_number
        if notes:
            order.notes = notes
        if estimated_delivery:
            order.estimated_delivery = estimated_delivery
        self._order_repo.save(order)
        self._order_repo.add_history(
            order.id, StatusField.ORDER, new_status, previous, actor_id, notes or ""
        )

        log.info("order.fulfillment_updated", actor_id=actor_id)
        return self._order_repo.get_by_id(str(order.id))

    async def cancel_order(self, order_id: UUID, actor_id: int, reason: str = "") -> Order:
        """Cancel an order and give its stock back.

        The customer may cancel only while pending; the fulfilling artisan
        may cancel pending or processing orders.

        Raises:
            OrderNotFound, Forbidden, InvalidStatusTransition.
        """
        return await self._run(self._cancel_order, order_id, actor_id, reason)

    @transaction.atomic
    def _cancel_order(self, order_id: UUID, actor_id: int, reason: str) -> Order:
        order = self._lock(order_id)
        log = logger.bind(order_id=str(order_id), current_status=order.order_status)
        try:
            authorize_cancellation(
                order,
                is_owner=order.user_id == actor_id,
                is_fulfiller=self._order_repo.is_fulfilled_by(order.id, actor_id),
            )
        except (Forbidden, InvalidStatusTransition):
            log.warning("order.cancel_rejected", actor_id=actor_id)
            raise

        self._cancel(order, actor_id, reason or "Order cancelled")
        log.info("order.cancelled", actor_id=actor_id)
        return self._order_repo.get_by_id(str(order.id))

    # ------------------------------------------------------------------
    # Payment state (driven by the payment bridge)
    # ------------------------------------------------------------------

    async def record_payment_success(
        self, order_id: UUID, transaction_id: str, details: Dict[str, Any]
    ) -> Order:
        """Commit a processor-verified success exactly once.

        An order that is already paid is returned unchanged.  Stock is
        committed in the same unit of work; if any tracked product lacks
        stock the whole operation rolls back and the order stays unpaid.

        Raises:
            OrderNotFound, InsufficientStock, InvalidPaymentTransition.
        """
        return await self._run(self._record_payment_success, order_id, transaction_id, details)

    @transaction.atomic
    def _record_payment_success(
        self, order_id: UUID, transaction_id: str, details: Dict[str, Any]
    ) -> Order:
        order = self._lock(order_id)
        log = logger.bind(order_id=str(order_id), transaction_id=transaction_id)

        if order.payment_status == PaymentStatus.PAID:
            log.info("payment.already_paid")
            return self._order_repo.get_by_id(str(order.id))

        if order.payment_status == PaymentStatus.FAILED:
            # A later attempt on the same intent succeeded: re-open first.
            transition_payment_status(order, PaymentStatus.PENDING)
            self._order_repo.add_history(
                order.id,
                StatusField.PAYMENT,
                PaymentStatus.PENDING,
                PaymentStatus.FAILED,
                notes="Payment retried",
            )

        previous_status = order.order_status
        if order.order_status == OrderStatus.CANCELLED:
            log.warning("payment.received_for_cancelled_order")
            details = {**details, "requires_refund": True}
            transition_payment_status(order, PaymentStatus.PAID, details)
        else:
            self._commit_stock(order)
            apply_payment_success(order, details)

        order.payment_transaction_id = transaction_id
        self._order_repo.save(order)
        self._order_repo.add_history(
            order.id,
            StatusField.PAYMENT,
            PaymentStatus.PAID,
            PaymentStatus.PENDING,
            notes=f"Verified transaction {transaction_id}",
        )
        if order.order_status != previous_status:
            self._order_repo.add_history(
                order.id,
                StatusField.ORDER,
                order.order_status,
                previous_status,
                notes="Advanced on payment",
            )

        log.info("payment.recorded", order_status=order.order_status)
        return self._order_repo.get_by_id(str(order.id))

    async def record_payment_failure(
        self, order_id: UUID, transaction_id: str, details: Dict[str, Any]
    ) -> Order:
        """Mark the payment failed; repeating the failure is a no-op.

        Raises:
            OrderNotFound, InvalidPaymentTransition (e.g. already paid).
        """
        return await self._run(self._record_payment_failure, order_id, transaction_id, details)

    @transaction.atomic
    def _record_payment_failure(
        self, order_id: UUID, transaction_id: str, details: Dict[str, Any]
    ) -> Order:
        order = self._lock(order_id)
        log = logger.bind(order_id=str(order_id), transaction_id=transaction_id)
        if order.payment_status == PaymentStatus.FAILED:
            log.info("payment.already_failed")
            return self._order_repo.get_by_id(str(order.id))

        previous = transition_payment_status(order, PaymentStatus.FAILED, details)
        if transaction_id:
            order.payment_transaction_id = transaction_id
        self._order_repo.save(order)
        self._order_repo.add_history(
            order.id,
            StatusField.PAYMENT,
            PaymentStatus.FAILED,
            previous,
            notes=details.get("error") or "",
        )
        log.info("payment.failed_recorded")
        return self._order_repo.get_by_id(str(order.id))

    async def retry_payment(self, order_id: UUID, actor_id: int) -> Order:
        """Re-open a failed payment (failed → pending) for the customer."""
        return await self._run(self._retry_payment, order_id, actor_id)

    @transaction.atomic
    def _retry_payment(self, order_id: UUID, actor_id: int) -> Order:
        order = self._lock(order_id)
        if order.user_id != actor_id:
            raise Forbidden("Not authorized to pay for this order.")
        if order.is_terminal:
            raise InvalidPaymentTransition(order.payment_status, PaymentStatus.PENDING)
        previous = transition_payment_status(
            order, PaymentStatus.PENDING, {"retried_at": timezone.now().isoformat()}
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order.id, StatusField.PAYMENT, PaymentStatus.PENDING, previous, actor_id
        )
        logger.info("payment.retry_opened", order_id=str(order_id))
        return self._order_repo.get_by_id(str(order.id))

    def ensure_refundable(self, order: Order, actor_id: int) -> None:
        """Check the refund policy: owner, paid, in transit, within the window.

        Raises:
            Forbidden, InvalidPaymentTransition, OrderValidationError.
        """
        if order.user_id != actor_id:
            raise Forbidden("Not authorized to refund this order.")
        if order.payment_status != PaymentStatus.PAID:
            raise InvalidPaymentTransition(order.payment_status, PaymentStatus.REFUNDED)
        if order.order_status not in REFUNDABLE_STATES:
            raise InvalidStatusTransition(order.order_status, OrderStatus.CANCELLED)
        window = timedelta(
            days=getattr(settings, "ORDER_REFUND_WINDOW_DAYS", DEFAULT_REFUND_WINDOW_DAYS)
        )
        if timezone.now() - order.created_at > window:
            raise OrderValidationError("The refund window for this order has closed.")

    async def record_refund(self, order_id: UUID, details: Dict[str, Any]) -> Order:
        """Mark a paid order refunded; a processing order is also cancelled."""
        return await self._run(self._record_refund, order_id, details)

    @transaction.atomic
    def _record_refund(self, order_id: UUID, details: Dict[str, Any]) -> Order:
        order = self._lock(order_id)
        if order.payment_status == PaymentStatus.REFUNDED:
            logger.info("payment.already_refunded", order_id=str(order_id))
            return self._order_repo.get_by_id(str(order.id))

        previous = transition_payment_status(order, PaymentStatus.REFUNDED, details)
        self._order_repo.add_history(
            order.id, StatusField.PAYMENT, PaymentStatus.REFUNDED, previous, notes="Refunded"
        )
        if order.order_status == OrderStatus.PROCESSING:
            self._cancel(order, None, "Cancelled after refund")
        else:
            self._order_repo.save(order)

        logger.info("payment.refund_recorded", order_id=str(order_id))
        return self._order_repo.get_by_id(str(order.id))

    # ------------------------------------------------------------------
    # Abandoned checkouts
    # ------------------------------------------------------------------

    async def list_abandoned_orders(self, ttl: timedelta, limit: int = 100) -> list:
        return await self._run(self._order_repo.list_abandoned, timezone.now() - ttl, limit)

    async def expire_order(self, order_id: UUID) -> Optional[Order]:
        """Cancel an unpaid pending order and release its reservation.

        Returns ``None`` when the order moved on in the meantime.
        """
        return await self._run(self._expire_order, order_id)

    @transaction.atomic
    def _expire_order(self, order_id: UUID) -> Optional[Order]:
        order = self._lock(order_id)
        if order.order_status != OrderStatus.PENDING or order.payment_status not in (
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
        ):
            return None
        order.merge_payment_details({"expired_at": timezone.now().isoformat()})
        self._cancel(order, None, "Payment not completed in time")
        logger.info("order.expired", order_id=str(order_id))
        return order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: UUID, actor_id: int, is_staff: bool = False) -> Order:
        """Return the order if the actor placed it, fulfils it or is staff.

        Raises:
            OrderNotFound, Forbidden.
        """
        return await self._run(self._get_order, order_id, actor_id, is_staff)

    async def find_order(self, order_id: UUID) -> Order:
        """Fetch an order without an access check (system callers only)."""
        return await self._run(self._find_order, order_id)

    def _find_order(self, order_id: UUID) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _get_order(self, order_id: UUID, actor_id: int, is_staff: bool) -> Order:
        order = self._find_order(order_id)
        if is_staff or order.user_id == actor_id:
            return order
        if self._order_repo.is_fulfilled_by(order.id, actor_id):
            return order
        raise Forbidden("Not authorized to access this order.")

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        return await self._run(self._order_repo.get_by_transaction_id, transaction_id)

    async def list_user_orders(self, user_id: int, page: int = 1, page_size: int = 20) -> Page:
        return await self._run(self._order_repo.list_by_user, user_id, page, page_size)

    async def list_artisan_orders(
        self, artisan_id: int, page: int = 1, page_size: int = 20
    ) -> Page:
        return await self._run(
            self._order_repo.list_by_product_owner, artisan_id, page, page_size
        )

    async def order_stats(self) -> OrderStatusCounts:
        """Marketplace-wide counts by status and paid revenue (staff)."""
        return await self._run(order_status_counts)

    async def artisan_summary(self, artisan_id: int) -> ArtisanSalesSummary:
        return await self._run(artisan_sales_summary, artisan_id)

    # ------------------------------------------------------------------
    # Helpers (run inside the caller's transaction)
    # ------------------------------------------------------------------

    def _lock(self, order_id: UUID) -> Order:
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _cancel(self, order: Order, actor_id: Optional[int], notes: str) -> None:
        self._return_stock(order)
        previous = transition_order_status(order, OrderStatus.CANCELLED)
        self._order_repo.save(order)
        self._order_repo.add_history(
            order.id, StatusField.ORDER, OrderStatus.CANCELLED, previous, actor_id, notes
        )

    def _commit_stock(self, order: Order) -> None:
        if order.stock_committed:
            return
        if self._enforce_stock:
            for item in sorted(order.items.all(), key=lambda i: str(i.product_id)):
                if not self._product_repo.commit_stock(str(item.product_id), item.quantity):
                    raise InsufficientStock(
                        f"Product {item.product_id} no longer has {item.quantity} "
                        f"unit(s) in stock."
                    )
        order.stock_committed = True

    def _return_stock(self, order: Order) -> None:
        if not self._enforce_stock:
            return
        for item in sorted(order.items.all(), key=lambda i: str(i.product_id)):
            if order.stock_committed:
                self._product_repo.restock(str(item.product_id), item.quantity)
            else:
                self._product_repo.release_stock(str(item.product_id), item.quantity)
        order.stock_committed = False
