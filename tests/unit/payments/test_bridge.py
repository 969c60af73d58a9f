"""Unit tests for PaymentIntentBridge.

The processor is replaced by ``FakePaymentProcessor`` (see conftest); the
order side runs against the real service and database.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from asgiref.sync import async_to_sync
from freezegun import freeze_time

from modules.orders.constants import OrderStatus, PaymentMethod, PaymentStatus
from modules.orders.exceptions import (
    Forbidden,
    InvalidPaymentTransition,
    OrderValidationError,
)
from modules.orders.models import Order
from modules.payments.bridge import PaymentIntentBridge
from modules.payments.constants import PaymentOutcome, TransactionStatus
from modules.payments.exceptions import PaymentProcessorError, PaymentVerificationFailed

pytestmark = pytest.mark.unit


@pytest.fixture()
def bridge(order_service, processor):
    return PaymentIntentBridge(order_service, processor)


@pytest.fixture()
def order(order_service, make_dto, product):
    return async_to_sync(order_service.place_order)(make_dto([(product, 2)]))


def _intent(bridge, order, customer, **kwargs):
    return async_to_sync(bridge.create_intent)(order.id, customer.id, **kwargs)


def _report(bridge, order, transaction_id, outcome=PaymentOutcome.SUCCEEDED, **kwargs):
    return async_to_sync(bridge.reconcile)(order.id, outcome, transaction_id, **kwargs)


def _stock(product) -> tuple:
    product.refresh_from_db()
    return product.stock_quantity, product.reserved_quantity


class TestCreateIntent:
    def test_amount_in_minor_units_with_order_metadata(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)

        transaction = processor.transactions[intent.transaction_id]
        assert transaction.amount == 118000
        assert transaction.currency == "usd"
        assert transaction.metadata == {"order_id": str(order.id), "user_id": str(customer.id)}
        assert intent.amount == Decimal("1180.00")
        assert intent.client_secret

    def test_does_not_touch_the_order(self, bridge, order, customer):
        version = order.version

        _intent(bridge, order, customer)

        order.refresh_from_db()
        assert order.version == version
        assert order.payment_status == PaymentStatus.PENDING
        assert order.payment_transaction_id == ""

    def test_matching_amount_is_accepted(self, bridge, order, customer):
        intent = _intent(bridge, order, customer, amount="1180.00", currency="USD")

        assert intent.currency == "usd"

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "1179.99"])
    def test_bad_amount_is_rejected(self, bridge, order, customer, amount):
        with pytest.raises(OrderValidationError):
            _intent(bridge, order, customer, amount=amount)

    def test_currency_mismatch(self, bridge, order, customer):
        with pytest.raises(OrderValidationError):
            _intent(bridge, order, customer, currency="eur")

    def test_other_user_is_forbidden(self, bridge, order, other_customer):
        with pytest.raises(Forbidden):
            _intent(bridge, order, other_customer)

    def test_cash_on_delivery_has_no_intent(
        self, bridge, order_service, make_dto, product, customer
    ):
        cod = async_to_sync(order_service.place_order)(
            make_dto([(product, 1)], payment_method=PaymentMethod.COD)
        )

        with pytest.raises(OrderValidationError):
            _intent(bridge, cod, customer)

    def test_paid_order_has_no_new_intent(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)
        _report(bridge, order, intent.transaction_id)

        with pytest.raises(InvalidPaymentTransition):
            _intent(bridge, order, customer)


class TestReconcileSuccess:
    def test_verified_success_marks_paid_and_commits_stock(
        self, bridge, processor, order, customer, product
    ):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)

        paid = _report(bridge, order, intent.transaction_id, actor_id=customer.id)

        assert paid.payment_status == PaymentStatus.PAID
        assert paid.order_status == OrderStatus.PROCESSING
        assert paid.payment_details["transaction_id"] == intent.transaction_id
        assert "paid_at" in paid.payment_details
        assert _stock(product) == (8, 0)

    def test_duplicate_success_is_idempotent(self, bridge, processor, order, customer, product):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)

        _report(bridge, order, intent.transaction_id)
        again = _report(bridge, order, intent.transaction_id)

        assert again.payment_status == PaymentStatus.PAID
        assert processor.get_calls == 1
        assert _stock(product) == (8, 0)

    def test_unsettled_success_claim_is_rejected(self, bridge, order, customer):
        intent = _intent(bridge, order, customer)

        with pytest.raises(PaymentVerificationFailed):
            _report(bridge, order, intent.transaction_id)

        order.refresh_from_db()
        assert order.payment_status == PaymentStatus.PENDING

    def test_transaction_of_another_order_is_rejected(
        self, bridge, processor, order_service, make_dto, make_product, order, customer
    ):
        cheap = async_to_sync(order_service.place_order)(
            make_dto([(make_product(title="Coaster", price=Decimal("1.00")), 1)])
        )
        foreign = _intent(bridge, cheap, customer)
        processor.settle(foreign.transaction_id)

        with pytest.raises(PaymentVerificationFailed):
            _report(bridge, order, foreign.transaction_id)

    def test_amount_mismatch_is_rejected(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id, amount=100)

        with pytest.raises(PaymentVerificationFailed):
            _report(bridge, order, intent.transaction_id)

    def test_other_user_cannot_report(self, bridge, processor, order, customer, other_customer):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)

        with pytest.raises(Forbidden):
            _report(bridge, order, intent.transaction_id, actor_id=other_customer.id)

    def test_missing_transaction_id(self, bridge, order):
        with pytest.raises(OrderValidationError):
            _report(bridge, order, "")


class TestReconcileFailure:
    def test_failure_then_retry_then_success(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        failed = _report(
            bridge, order, intent.transaction_id, PaymentOutcome.FAILED, error="card declined"
        )
        assert failed.payment_status == PaymentStatus.FAILED
        assert failed.payment_details["error"] == "card declined"

        with pytest.raises(InvalidPaymentTransition):
            _intent(bridge, order, customer)

        async_to_sync(bridge._orders.retry_payment)(order.id, customer.id)
        retry = _intent(bridge, order, customer)
        processor.settle(retry.transaction_id)
        paid = _report(bridge, order, retry.transaction_id)

        assert paid.payment_status == PaymentStatus.PAID
        assert paid.payment_transaction_id == retry.transaction_id

    def test_success_after_failure_on_same_intent(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        _report(bridge, order, intent.transaction_id, PaymentOutcome.FAILED)
        processor.settle(intent.transaction_id)

        paid = _report(bridge, order, intent.transaction_id)

        assert paid.payment_status == PaymentStatus.PAID

    def test_failure_for_paid_order_is_rejected(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)
        _report(bridge, order, intent.transaction_id)

        with pytest.raises(InvalidPaymentTransition):
            _report(bridge, order, intent.transaction_id, PaymentOutcome.FAILED)

    def test_failure_for_unknown_transaction_is_not_stored(self, bridge, order, product):
        with pytest.raises(PaymentProcessorError):
            _report(bridge, order, "pi_bogus", PaymentOutcome.FAILED)

        order.refresh_from_db()
        assert order.payment_status == PaymentStatus.PENDING
        assert order.payment_transaction_id != "pi_bogus"
        assert _stock(product) == (10, 2)

    def test_failure_with_transaction_of_another_order_is_rejected(
        self, bridge, order_service, make_dto, make_product, order, customer
    ):
        other = async_to_sync(order_service.place_order)(
            make_dto([(make_product(title="Coaster", price=Decimal("1.00")), 1)])
        )
        foreign = _intent(bridge, other, customer)

        with pytest.raises(PaymentVerificationFailed):
            _report(bridge, order, foreign.transaction_id, PaymentOutcome.FAILED)

        order.refresh_from_db()
        assert order.payment_status == PaymentStatus.PENDING

    def test_unknown_outcome(self, bridge, order):
        with pytest.raises(OrderValidationError):
            _report(bridge, order, "pi_x", "disputed")


class TestLateAndCancelled:
    def test_success_for_cancelled_order_needs_refund(
        self, bridge, processor, order_service, order, customer, product
    ):
        intent = _intent(bridge, order, customer)
        async_to_sync(order_service.cancel_order)(order.id, customer.id)
        processor.settle(intent.transaction_id)

        paid = _report(bridge, order, intent.transaction_id)

        assert paid.order_status == OrderStatus.CANCELLED
        assert paid.payment_status == PaymentStatus.PAID
        assert paid.payment_details["requires_refund"] is True
        assert _stock(product) == (10, 0)

    def test_refresh_pulls_late_success(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)

        refreshed = async_to_sync(bridge.refresh_status)(
            order.id, customer.id, intent.transaction_id
        )

        assert refreshed.payment_status == PaymentStatus.PAID

    def test_refresh_of_pending_transaction_changes_nothing(
        self, bridge, order, customer
    ):
        intent = _intent(bridge, order, customer)

        refreshed = async_to_sync(bridge.refresh_status)(
            order.id, customer.id, intent.transaction_id
        )

        assert refreshed.payment_status == PaymentStatus.PENDING

    def test_expire_skips_order_paid_late(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        _report(bridge, order, intent.transaction_id, PaymentOutcome.FAILED)
        processor.settle(intent.transaction_id)
        order.refresh_from_db()

        assert async_to_sync(bridge.expire_if_abandoned)(order) is False

        order.refresh_from_db()
        assert order.payment_status == PaymentStatus.PAID

    def test_expire_cancels_unpaid_order(self, bridge, order, product):
        assert async_to_sync(bridge.expire_if_abandoned)(order) is True

        order.refresh_from_db()
        assert order.order_status == OrderStatus.CANCELLED
        assert _stock(product) == (10, 0)


    def test_expire_when_processor_cannot_find_transaction(self, bridge, order, product):
        Order.objects.filter(id=order.id).update(
            payment_status=PaymentStatus.FAILED, payment_transaction_id="pi_gone"
        )
        order.refresh_from_db()

        assert async_to_sync(bridge.expire_if_abandoned)(order) is True

        order.refresh_from_db()
        assert order.order_status == OrderStatus.CANCELLED
        assert _stock(product) == (10, 0)

    def test_expire_when_transaction_pays_for_something_else(
        self, bridge, processor, order, customer, product
    ):
        intent = _intent(bridge, order, customer)
        _report(bridge, order, intent.transaction_id, PaymentOutcome.FAILED)
        processor.settle(intent.transaction_id, amount=1)
        order.refresh_from_db()

        assert async_to_sync(bridge.expire_if_abandoned)(order) is True

        order.refresh_from_db()
        assert order.order_status == OrderStatus.CANCELLED
        assert _stock(product) == (10, 0)


class TestWebhook:
    def test_bad_signature(self, bridge):
        with pytest.raises(PaymentVerificationFailed):
            async_to_sync(bridge.reconcile_webhook)(b"{}", "forged")

    def test_succeeded_event_marks_paid(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.webhook_event = processor.settle(intent.transaction_id)

        paid = async_to_sync(bridge.reconcile_webhook)(b"{}", "valid")

        assert paid.id == order.id
        assert paid.payment_status == PaymentStatus.PAID

    def test_failed_event_without_metadata_matches_by_transaction(
        self, bridge, processor, order, customer
    ):
        intent = _intent(bridge, order, customer)
        _report(bridge, order, intent.transaction_id, PaymentOutcome.FAILED)
        async_to_sync(bridge._orders.retry_payment)(order.id, customer.id)
        processor.webhook_event = processor.settle(
            intent.transaction_id, status=TransactionStatus.FAILED, metadata={}, error="expired"
        )

        failed = async_to_sync(bridge.reconcile_webhook)(b"{}", "valid")

        assert failed.payment_status == PaymentStatus.FAILED
        assert failed.payment_details["error"] == "expired"

    def test_late_failed_event_for_paid_order_is_ignored(
        self, bridge, processor, order, customer, product
    ):
        intent = _intent(bridge, order, customer)
        processor.webhook_event = processor.settle(intent.transaction_id)
        async_to_sync(bridge.reconcile_webhook)(b"{}", "valid")
        processor.webhook_event = processor.settle(
            intent.transaction_id, status=TransactionStatus.FAILED, error="card declined"
        )

        assert async_to_sync(bridge.reconcile_webhook)(b"{}", "valid") is None

        order.refresh_from_db()
        assert order.payment_status == PaymentStatus.PAID
        assert order.order_status == OrderStatus.PROCESSING
        assert _stock(product) == (8, 0)

    def test_unrelated_event_is_ignored(self, bridge, processor):
        processor.webhook_event = None

        assert async_to_sync(bridge.reconcile_webhook)(b"{}", "valid") is None

    def test_unknown_transaction_is_ignored(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.webhook_event = processor.settle(intent.transaction_id, metadata={})

        assert async_to_sync(bridge.reconcile_webhook)(b"{}", "valid") is None


class TestRefund:
    def _paid(self, bridge, processor, order, customer):
        intent = _intent(bridge, order, customer)
        processor.settle(intent.transaction_id)
        return _report(bridge, order, intent.transaction_id)

    def test_refund_within_window(self, bridge, processor, order, customer, product):
        paid = self._paid(bridge, processor, order, customer)

        refunded = async_to_sync(bridge.refund)(order.id, customer.id)

        assert processor.refunds == [paid.payment_transaction_id]
        assert refunded.payment_status == PaymentStatus.REFUNDED
        assert refunded.order_status == OrderStatus.CANCELLED
        assert refunded.payment_details["refund_id"] == "re_fake_1"
        assert _stock(product) == (10, 0)

    def test_refund_after_window(
        self, bridge, processor, order_service, make_dto, product, customer
    ):
        with freeze_time("2026-03-01 10:00:00"):
            order = async_to_sync(order_service.place_order)(make_dto([(product, 1)]))
            self._paid(bridge, processor, order, customer)

        with freeze_time("2026-03-10 10:00:00"):
            with pytest.raises(OrderValidationError):
                async_to_sync(bridge.refund)(order.id, customer.id)

        assert processor.refunds == []

    def test_refund_of_unpaid_order(self, bridge, processor, order, customer):
        with pytest.raises(InvalidPaymentTransition):
            async_to_sync(bridge.refund)(order.id, customer.id)

        assert processor.refunds == []
