"""Bridge between orders and the payment processor.

Nothing here trusts a client's word about a payment: every reported
outcome is preceded by a server-side lookup of the transaction, which
must carry this order's id in its metadata.  A ``paid`` commit further
requires the transaction to be succeeded and to match the order total
in minor units.  The client callback, the status poll and the processor
webhook all converge on ``_apply``, which is idempotent.

Processor calls are awaited outside any database transaction; the order
service opens its own unit of work afterwards.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Optional, Union
from uuid import UUID

import structlog
from django.utils import timezone

from modules.orders.constants import SETTLED_PAYMENT_STATES, PaymentStatus
from modules.orders.dtos import PaymentIntentDTO
from modules.orders.exceptions import (
    Forbidden,
    InvalidPaymentTransition,
    OrderValidationError,
)
from modules.orders.totals import quantize_money
from modules.payments.constants import PaymentOutcome, TransactionStatus
from modules.payments.exceptions import PaymentProcessorError, PaymentVerificationFailed
from modules.payments.money import from_minor_units, to_minor_units

if TYPE_CHECKING:
    from modules.orders.models import Order
    from modules.orders.services import OrderService
    from modules.payments.processors import IPaymentProcessor, ProcessorTransaction

logger = structlog.get_logger(__name__)


class PaymentIntentBridge:
    def __init__(self, order_service: OrderService, processor: IPaymentProcessor) -> None:
        self._orders = order_service
        self._processor = processor

    # ------------------------------------------------------------------
    # Intent creation
    # ------------------------------------------------------------------

    async def create_intent(
        self,
        order_id: UUID,
        actor_id: int,
        amount: Optional[Union[Decimal, str]] = None,
        currency: Optional[str] = None,
    ) -> PaymentIntentDTO:
        """Open a processor transaction for the order's final amount.

        The order itself is not modified; the transaction id comes back
        through ``reconcile``.

        Raises:
            OrderValidationError: bad amount or currency, or a
                cash-on-delivery order.
            InvalidPaymentTransition: payment is not pending.
            Forbidden: the actor did not place the order.
            PaymentProcessorError: the processor call failed.
        """
        order = await self._orders.find_order(order_id)
        if order.user_id != actor_id:
            raise Forbidden("Not authorized to pay for this order.")

        if amount is not None:
            try:
                requested = Decimal(str(amount))
            except InvalidOperation as exc:
                raise OrderValidationError("Invalid amount provided.") from exc
            if requested <= 0:
                raise OrderValidationError("Invalid amount provided.")
            if quantize_money(requested) != order.final_amount:
                raise OrderValidationError("Amount does not match the order total.")

        currency = (currency or order.currency).lower()
        if currency != order.currency:
            raise OrderValidationError("Currency does not match the order.")
        if order.is_offline_payment:
            raise OrderValidationError("Cash on delivery orders are paid on delivery.")
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidPaymentTransition(order.payment_status, PaymentStatus.PAID)

        transaction = await self._processor.create_transaction(
            to_minor_units(order.final_amount, currency),
            currency,
            {"order_id": str(order.id), "user_id": str(order.user_id)},
        )
        logger.info(
            "payment.intent_created",
            order_id=str(order.id),
            transaction_id=transaction.id,
            amount=str(order.final_amount),
        )
        return PaymentIntentDTO(
            order_id=order.id,
            client_secret=transaction.client_secret,
            transaction_id=transaction.id,
            amount=order.final_amount,
            currency=currency,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        order_id: UUID,
        outcome: str,
        transaction_id: str,
        error: str = "",
        actor_id: Optional[int] = None,
    ) -> Order:
        """Apply a reported payment outcome to the order.

        ``actor_id`` is ``None`` for processor-initiated calls.  Both
        outcomes are checked against the processor before anything is
        stored, so a made-up transaction id never reaches the order.

        Raises:
            PaymentVerificationFailed: a success the processor does not
                confirm, or a transaction of another order.
            InvalidPaymentTransition: e.g. a failure reported for a paid order.
            OrderNotFound, Forbidden, PaymentProcessorError.
        """
        if not transaction_id:
            raise OrderValidationError("Transaction id is required.")
        if outcome not in (PaymentOutcome.SUCCEEDED, PaymentOutcome.FAILED):
            raise OrderValidationError(f"Unknown payment outcome: {outcome}.")
        order = await self._orders.find_order(order_id)
        if actor_id is not None and order.user_id != actor_id:
            raise Forbidden("Not authorized to report payment for this order.")

        if outcome == PaymentOutcome.SUCCEEDED:
            if order.is_paid and order.payment_transaction_id == transaction_id:
                logger.info(
                    "payment.reconcile_noop", order_id=str(order.id), transaction_id=transaction_id
                )
                return order
            transaction = await self._processor.get_transaction(transaction_id)
            self._verify(order, transaction)
        else:
            transaction = await self._processor.get_transaction(transaction_id)
            self._verify_ownership(order, transaction)
        return await self._apply(order, outcome, transaction, error)

    async def _apply(
        self, order: Order, outcome: str, transaction: ProcessorTransaction, error: str = ""
    ) -> Order:
        log = logger.bind(order_id=str(order.id), transaction_id=transaction.id, outcome=outcome)
        if outcome == PaymentOutcome.SUCCEEDED:
            order = await self._orders.record_payment_success(
                order.id,
                transaction.id,
                {
                    "transaction_id": transaction.id,
                    "currency": transaction.currency,
                    "status": transaction.status,
                    "paid_at": timezone.now().isoformat(),
                },
            )
        else:
            order = await self._orders.record_payment_failure(
                order.id,
                transaction.id,
                {
                    "transaction_id": transaction.id,
                    "status": TransactionStatus.FAILED,
                    "failed_at": timezone.now().isoformat(),
                    "error": error or transaction.error or None,
                },
            )

        log.info(
            "payment.reconciled",
            order_status=order.order_status,
            payment_status=order.payment_status,
        )
        return order

    def _verify_ownership(self, order: Order, transaction: ProcessorTransaction) -> None:
        if transaction.metadata.get("order_id") != str(order.id):
            logger.warning(
                "payment.verification_failed",
                order_id=str(order.id),
                transaction_id=transaction.id,
                reason="order_mismatch",
            )
            raise PaymentVerificationFailed("Transaction does not belong to this order.")

    def _verify(self, order: Order, transaction: ProcessorTransaction) -> None:
        log = logger.bind(order_id=str(order.id), transaction_id=transaction.id)
        if transaction.status != TransactionStatus.SUCCEEDED:
            log.warning("payment.verification_failed", reason="not_succeeded")
            raise PaymentVerificationFailed("Payment has not been completed.")
        self._verify_ownership(order, transaction)
        expected = to_minor_units(order.final_amount, order.currency)
        if transaction.amount != expected or transaction.currency.lower() != order.currency:
            log.warning(
                "payment.verification_failed",
                reason="amount_mismatch",
                expected=str(from_minor_units(expected, order.currency)),
                received=str(from_minor_units(transaction.amount, transaction.currency)),
                currency=transaction.currency,
            )
            raise PaymentVerificationFailed("Transaction amount does not match the order.")

    async def reconcile_webhook(self, payload: bytes, signature: str) -> Optional[Order]:
        """Handle a signed processor callback.

        Returns ``None`` when the event is not about an order we know, or
        when it is a failure arriving after the order was already settled
        (events are not delivered in order).
        """
        transaction = await self._processor.parse_webhook(payload, signature)
        if transaction is None:
            return None

        if transaction.status == TransactionStatus.SUCCEEDED:
            outcome = PaymentOutcome.SUCCEEDED
        elif transaction.status == TransactionStatus.FAILED:
            outcome = PaymentOutcome.FAILED
        else:
            return None

        order_id = transaction.metadata.get("order_id")
        if not order_id:
            order = await self._orders.find_by_transaction_id(transaction.id)
            if order is None:
                logger.info("payment.webhook_unmatched", transaction_id=transaction.id)
                return None
        else:
            order = await self._orders.find_order(UUID(str(order_id)))

        if outcome == PaymentOutcome.FAILED:
            if order.payment_status in SETTLED_PAYMENT_STATES:
                logger.info(
                    "payment.webhook_stale_failure",
                    order_id=str(order.id),
                    transaction_id=transaction.id,
                    payment_status=order.payment_status,
                )
                return None
            return await self._apply(order, outcome, transaction)

        if order.is_paid and order.payment_transaction_id == transaction.id:
            logger.info(
                "payment.reconcile_noop", order_id=str(order.id), transaction_id=transaction.id
            )
            return order
        self._verify(order, transaction)
        return await self._apply(order, outcome, transaction)

    async def refresh_status(
        self, order_id: UUID, actor_id: int, transaction_id: str = ""
    ) -> Order:
        """Return the order, first pulling a late success from the processor.

        Used by the status poll endpoint.
        """
        order = await self._orders.find_order(order_id)
        if order.user_id != actor_id:
            raise Forbidden("Not authorized to access this order.")
        return await self._refresh(order, transaction_id)

    async def _refresh(self, order: Order, transaction_id: str = "") -> Order:
        transaction_id = transaction_id or order.payment_transaction_id
        if order.payment_status == PaymentStatus.PAID or not transaction_id:
            return order
        transaction = await self._processor.get_transaction(transaction_id)
        if transaction.status != TransactionStatus.SUCCEEDED:
            return order
        self._verify(order, transaction)
        return await self._apply(order, PaymentOutcome.SUCCEEDED, transaction)

    async def expire_if_abandoned(self, order: Order) -> bool:
        """Cancel an abandoned checkout unless the processor reports success.

        A transaction the processor cannot find, or one that does not pay
        for this order, counts as unpaid.  Returns ``True`` when the order
        was cancelled.
        """
        try:
            refreshed = await self._refresh(order)
        except (PaymentProcessorError, PaymentVerificationFailed) as exc:
            logger.warning(
                "order.expiry_lookup_failed",
                order_id=str(order.id),
                transaction_id=order.payment_transaction_id,
                error_type=type(exc).__name__,
            )
        else:
            if refreshed.is_paid:
                logger.info("order.expiry_skipped_paid", order_id=str(order.id))
                return False
        return await self._orders.expire_order(order.id) is not None

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def refund(self, order_id: UUID, actor_id: int) -> Order:
        """Refund a paid order in full.

        Raises:
            Forbidden, InvalidPaymentTransition, InvalidStatusTransition,
            OrderValidationError (window closed / nothing to refund),
            PaymentProcessorError.
        """
        order = await self._orders.find_order(order_id)
        self._orders.ensure_refundable(order, actor_id)
        if not order.payment_transaction_id:
            raise OrderValidationError("There is no processor payment to refund.")

        refund_id = await self._processor.refund_transaction(
            order.payment_transaction_id, idempotency_key=f"refund-{order.id}"
        )
        logger.info("payment.refund_issued", order_id=str(order.id), refund_id=refund_id)
        return await self._orders.record_refund(
            order.id,
            {"refund_id": refund_id, "refunded_at": timezone.now().isoformat()},
        )
