"""Stripe adapter tests.

No network: SDK entry points are replaced with plain functions and
webhook payloads are signed locally with the test secret.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest
import stripe
from asgiref.sync import async_to_sync

from modules.payments.constants import TransactionStatus
from modules.payments.exceptions import (
    PaymentProcessorError,
    PaymentVerificationFailed,
    ProcessorNotConfigured,
)
from modules.payments.processors import StripePaymentProcessor, get_payment_processor

pytestmark = pytest.mark.unit

WEBHOOK_SECRET = "whsec_test_dummy"


def _intent_values(**overrides) -> dict:
    values = {
        "id": "pi_123",
        "object": "payment_intent",
        "status": "succeeded",
        "amount": 118000,
        "currency": "usd",
        "metadata": {"order_id": "0191e2a4-0000-7000-8000-000000000000"},
        "client_secret": "pi_123_secret_abc",
        "last_payment_error": None,
    }
    values.update(overrides)
    return values


def _intent(**overrides) -> stripe.PaymentIntent:
    return stripe.PaymentIntent.construct_from(_intent_values(**overrides), "sk_test_dummy")


def _signed(event: dict) -> tuple:
    payload = json.dumps(event)
    timestamp = int(time.time())
    digest = hmac.new(
        WEBHOOK_SECRET.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return payload.encode(), f"t={timestamp},v1={digest}"


@pytest.fixture()
def stripe_processor():
    return StripePaymentProcessor(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)


class TestTransactionMapping:
    def test_succeeded_intent(self):
        transaction = StripePaymentProcessor._to_transaction(_intent())

        assert transaction.id == "pi_123"
        assert transaction.status == TransactionStatus.SUCCEEDED
        assert transaction.amount == 118000
        assert transaction.metadata["order_id"] == "0191e2a4-0000-7000-8000-000000000000"
        assert transaction.client_secret == "pi_123_secret_abc"

    def test_declined_intent_is_failed(self):
        intent = _intent(
            status="requires_payment_method",
            last_payment_error={"message": "Your card was declined."},
        )

        transaction = StripePaymentProcessor._to_transaction(intent)

        assert transaction.status == TransactionStatus.FAILED
        assert transaction.error == "Your card was declined."

    def test_canceled_intent_is_failed(self):
        transaction = StripePaymentProcessor._to_transaction(_intent(status="canceled"))

        assert transaction.status == TransactionStatus.FAILED

    @pytest.mark.parametrize("status", ["requires_payment_method", "processing", "requires_action"])
    def test_in_flight_intent_is_pending(self, status):
        transaction = StripePaymentProcessor._to_transaction(_intent(status=status))

        assert transaction.status == TransactionStatus.PENDING


class TestSdkCalls:
    def test_get_transaction_uses_api_key(self, stripe_processor):
        calls = []

        def fake_retrieve(**kwargs):
            calls.append(kwargs)
            return _intent()

        with patch.object(stripe.PaymentIntent, "retrieve", fake_retrieve):
            transaction = async_to_sync(stripe_processor.get_transaction)("pi_123")

        assert transaction.status == TransactionStatus.SUCCEEDED
        assert calls == [{"api_key": "sk_test_dummy", "id": "pi_123"}]

    def test_create_sends_minor_units_and_metadata(self, stripe_processor):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return _intent(status="requires_payment_method")

        with patch.object(stripe.PaymentIntent, "create", fake_create):
            async_to_sync(stripe_processor.create_transaction)(
                118000, "usd", {"order_id": "o-1"}
            )

        assert calls[0]["amount"] == 118000
        assert calls[0]["currency"] == "usd"
        assert calls[0]["metadata"] == {"order_id": "o-1"}

    def test_refund_passes_idempotency_key(self, stripe_processor):
        calls = []

        def fake_refund(**kwargs):
            calls.append(kwargs)
            return stripe.Refund.construct_from({"id": "re_1", "object": "refund"}, "sk")

        with patch.object(stripe.Refund, "create", fake_refund):
            refund_id = async_to_sync(stripe_processor.refund_transaction)(
                "pi_123", idempotency_key="refund-o-1"
            )

        assert refund_id == "re_1"
        assert calls[0]["payment_intent"] == "pi_123"
        assert calls[0]["idempotency_key"] == "refund-o-1"

    def test_sdk_error_becomes_processor_error(self, stripe_processor):
        def failing(**kwargs):
            raise stripe.APIConnectionError("network down")

        with patch.object(stripe.PaymentIntent, "retrieve", failing):
            with pytest.raises(PaymentProcessorError):
                async_to_sync(stripe_processor.get_transaction)("pi_123")


class TestWebhook:
    def _event(self, event_type, **intent):
        return {
            "id": "evt_1",
            "object": "event",
            "type": event_type,
            "data": {"object": _intent_values(**intent)},
        }

    def test_valid_succeeded_event(self, stripe_processor):
        payload, signature = _signed(self._event("payment_intent.succeeded"))

        transaction = async_to_sync(stripe_processor.parse_webhook)(payload, signature)

        assert transaction.id == "pi_123"
        assert transaction.status == TransactionStatus.SUCCEEDED

    def test_other_event_types_are_ignored(self, stripe_processor):
        payload, signature = _signed(self._event("charge.refunded"))

        assert async_to_sync(stripe_processor.parse_webhook)(payload, signature) is None

    def test_bad_signature(self, stripe_processor):
        payload, _ = _signed(self._event("payment_intent.succeeded"))

        with pytest.raises(PaymentVerificationFailed):
            async_to_sync(stripe_processor.parse_webhook)(payload, "t=1,v1=deadbeef")

    def test_missing_webhook_secret(self):
        processor = StripePaymentProcessor(api_key="sk_test_dummy")

        with pytest.raises(ProcessorNotConfigured):
            async_to_sync(processor.parse_webhook)(b"{}", "t=1,v1=x")


class TestConfiguration:
    def test_missing_api_key(self):
        with pytest.raises(ProcessorNotConfigured):
            StripePaymentProcessor(api_key="")

    def test_factory_reads_settings(self, settings):
        settings.PAYMENT_PROCESSOR_CLASS = "modules.payments.processors.StripePaymentProcessor"
        settings.STRIPE_SECRET_KEY = "sk_test_factory"

        assert isinstance(get_payment_processor(), StripePaymentProcessor)

    def test_factory_without_key(self, settings):
        settings.PAYMENT_PROCESSOR_CLASS = "modules.payments.processors.StripePaymentProcessor"
        settings.STRIPE_SECRET_KEY = ""

        with pytest.raises(ProcessorNotConfigured):
            get_payment_processor()
