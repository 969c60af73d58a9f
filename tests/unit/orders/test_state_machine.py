"""Unit tests for the order state machine.

Runs on unsaved ``Order`` instances: the state machine never touches the
database.
"""

from __future__ import annotations

import itertools

import pytest

from modules.orders.constants import (
    VALID_PAYMENT_TRANSITIONS,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from modules.orders.exceptions import (
    Forbidden,
    InvalidPaymentTransition,
    InvalidStatusTransition,
)
from modules.orders.models import Order
from modules.orders.state_machine import (
    apply_payment_success,
    authorize_cancellation,
    authorize_fulfillment,
    transition_order_status,
    transition_payment_status,
)

pytestmark = pytest.mark.unit


def _order(order_status=OrderStatus.PENDING, payment_status=PaymentStatus.PENDING) -> Order:
    return Order(
        order_status=order_status,
        payment_status=payment_status,
        payment_method=PaymentMethod.STRIPE,
        payment_details={"transaction_id": "pi_1"},
    )


ORDER_EDGES = list(itertools.product(OrderStatus.values, repeat=2))
PAYMENT_EDGES = list(itertools.product(PaymentStatus.values, repeat=2))


class TestOrderTransitions:
    @pytest.mark.parametrize("source, target", ORDER_EDGES)
    def test_table_is_enforced(self, source, target):
        order = _order(order_status=source)

        if target in VALID_TRANSITIONS[source]:
            assert transition_order_status(order, target) == source
            assert order.order_status == target
        else:
            with pytest.raises(InvalidStatusTransition):
                transition_order_status(order, target)
            assert order.order_status == source

    def test_pending_cannot_jump_to_shipped(self):
        order = _order()

        with pytest.raises(InvalidStatusTransition) as exc_info:
            transition_order_status(order, OrderStatus.SHIPPED)

        assert exc_info.value.source == OrderStatus.PENDING
        assert exc_info.value.target == OrderStatus.SHIPPED
        assert order.order_status == OrderStatus.PENDING

    def test_transition_raises_domain_event(self):
        order = _order()

        transition_order_status(order, OrderStatus.PROCESSING)

        [event] = order.domain_events
        assert event.event_name == "OrderStatusChanged"
        assert event.new_status == OrderStatus.PROCESSING


class TestPaymentTransitions:
    @pytest.mark.parametrize("source, target", PAYMENT_EDGES)
    def test_table_is_enforced(self, source, target):
        order = _order(payment_status=source)

        if target in VALID_PAYMENT_TRANSITIONS[source]:
            transition_payment_status(order, target)
            assert order.payment_status == target
        else:
            with pytest.raises(InvalidPaymentTransition):
                transition_payment_status(order, target)
            assert order.payment_status == source

    def test_details_are_merged_not_replaced(self):
        order = _order()

        transition_payment_status(order, PaymentStatus.FAILED, {"error": "card declined"})

        assert order.payment_details == {"transaction_id": "pi_1", "error": "card declined"}

    def test_success_advances_pending_order(self):
        order = _order()

        assert apply_payment_success(order, {"paid_at": "now"}) is True
        assert order.payment_status == PaymentStatus.PAID
        assert order.order_status == OrderStatus.PROCESSING

    def test_success_keeps_later_fulfillment_state(self):
        order = _order(order_status=OrderStatus.PROCESSING)

        assert apply_payment_success(order) is False
        assert order.order_status == OrderStatus.PROCESSING


class TestFulfillmentAuthorization:
    def test_non_fulfiller_is_forbidden(self):
        with pytest.raises(Forbidden):
            authorize_fulfillment(_order(), OrderStatus.PROCESSING, is_fulfiller=False)

    def test_cancel_is_not_a_fulfillment_target(self):
        with pytest.raises(InvalidStatusTransition):
            authorize_fulfillment(_order(), OrderStatus.CANCELLED, is_fulfiller=True)

    def test_skipping_a_state_is_rejected(self):
        with pytest.raises(InvalidStatusTransition):
            authorize_fulfillment(_order(), OrderStatus.SHIPPED, is_fulfiller=True)

    def test_fulfiller_may_advance(self):
        authorize_fulfillment(
            _order(order_status=OrderStatus.PROCESSING), OrderStatus.SHIPPED, is_fulfiller=True
        )


class TestCancellationAuthorization:
    def test_customer_may_cancel_pending(self):
        authorize_cancellation(_order(), is_owner=True, is_fulfiller=False)

    @pytest.mark.parametrize(
        "status", [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED]
    )
    def test_customer_may_not_cancel_after_pending(self, status):
        with pytest.raises(InvalidStatusTransition):
            authorize_cancellation(_order(order_status=status), is_owner=True, is_fulfiller=False)

    def test_artisan_may_cancel_processing(self):
        authorize_cancellation(
            _order(order_status=OrderStatus.PROCESSING), is_owner=False, is_fulfiller=True
        )

    def test_artisan_may_not_cancel_shipped(self):
        with pytest.raises(InvalidStatusTransition):
            authorize_cancellation(
                _order(order_status=OrderStatus.SHIPPED), is_owner=False, is_fulfiller=True
            )

    def test_stranger_is_forbidden(self):
        with pytest.raises(Forbidden):
            authorize_cancellation(_order(), is_owner=False, is_fulfiller=False)
