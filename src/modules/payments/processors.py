"""Payment processor port and the Stripe adapter.

The rest of the code base talks to ``IPaymentProcessor`` only; amounts
cross this boundary in minor units.  The Stripe SDK is synchronous, so
every call is pushed to a worker thread with ``sync_to_async``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import stripe
import structlog
from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils.module_loading import import_string

from modules.payments.constants import (
    WEBHOOK_FAILED_EVENT,
    WEBHOOK_SUCCEEDED_EVENT,
    TransactionStatus,
)
from modules.payments.exceptions import (
    PaymentProcessorError,
    PaymentVerificationFailed,
    ProcessorNotConfigured,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProcessorTransaction:
    id: str
    status: str
    amount: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)
    client_secret: str = ""
    error: str = ""


class IPaymentProcessor(Protocol):
    async def create_transaction(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> ProcessorTransaction: ...

    async def get_transaction(self, transaction_id: str) -> ProcessorTransaction: ...

    async def refund_transaction(self, transaction_id: str, idempotency_key: str) -> str:
        """Refund the full amount; return the processor's refund id."""

    async def parse_webhook(
        self, payload: bytes, signature: str
    ) -> Optional[ProcessorTransaction]:
        """Verify and decode a webhook; ``None`` for events we do not handle."""


class StripePaymentProcessor:
    """``IPaymentProcessor`` backed by Stripe PaymentIntents."""

    def __init__(self, api_key: str, webhook_secret: str = "") -> None:
        if not api_key:
            raise ProcessorNotConfigured("Payment service is not configured.")
        self._api_key = api_key
        self._webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls) -> StripePaymentProcessor:
        return cls(
            api_key=getattr(settings, "STRIPE_SECRET_KEY", ""),
            webhook_secret=getattr(settings, "STRIPE_WEBHOOK_SECRET", ""),
        )

    async def _call(self, func: Any, **kwargs: Any) -> Any:
        try:
            return await sync_to_async(func, thread_sensitive=False)(
                api_key=self._api_key, **kwargs
            )
        except stripe.StripeError as exc:
            logger.warning(
                "payment.processor_error",
                operation=getattr(func, "__qualname__", str(func)),
                error=exc.user_message or str(exc),
            )
            raise PaymentProcessorError("Payment processor request failed.") from exc

    async def create_transaction(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> ProcessorTransaction:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
        )
        return self._to_transaction(intent)

    async def get_transaction(self, transaction_id: str) -> ProcessorTransaction:
        intent = await self._call(stripe.PaymentIntent.retrieve, id=transaction_id)
        return self._to_transaction(intent)

    async def refund_transaction(self, transaction_id: str, idempotency_key: str) -> str:
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=transaction_id,
            idempotency_key=idempotency_key,
        )
        return refund.id

    async def parse_webhook(
        self, payload: bytes, signature: str
    ) -> Optional[ProcessorTransaction]:
        if not self._webhook_secret:
            raise ProcessorNotConfigured("Webhook secret is not configured.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("payment.webhook_rejected", error=str(exc))
            raise PaymentVerificationFailed("Invalid webhook signature.") from exc

        if event.type not in (WEBHOOK_SUCCEEDED_EVENT, WEBHOOK_FAILED_EVENT):
            logger.info("payment.webhook_ignored", event_type=event.type)
            return None
        return self._to_transaction(event.data.object)

    @staticmethod
    def _to_transaction(intent: Any) -> ProcessorTransaction:
        last_error = getattr(intent, "last_payment_error", None)
        if intent.status == "succeeded":
            status = TransactionStatus.SUCCEEDED
        elif intent.status == "canceled" or last_error:
            status = TransactionStatus.FAILED
        else:
            status = TransactionStatus.PENDING
        metadata = intent.metadata.to_dict() if intent.metadata else {}
        return ProcessorTransaction(
            id=intent.id,
            status=status,
            amount=intent.amount,
            currency=intent.currency,
            metadata={key: str(value) for key, value in metadata.items()},
            client_secret=getattr(intent, "client_secret", None) or "",
            error=(getattr(last_error, "message", None) or "") if last_error else "",
        )


def get_payment_processor() -> IPaymentProcessor:
    """Build the processor named by ``PAYMENT_PROCESSOR_CLASS``."""
    processor_class = import_string(
        getattr(
            settings,
            "PAYMENT_PROCESSOR_CLASS",
            "modules.payments.processors.StripePaymentProcessor",
        )
    )
    return processor_class.from_settings()
