"""Payment processor constants."""

from django.db import models


class TransactionStatus(models.TextChoices):
    """Processor-side state of a transaction, normalised across providers."""

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class PaymentOutcome(models.TextChoices):
    """Outcome reported by the client or a webhook for a transaction."""

    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


# Currencies whose smallest unit is the whole unit (no cents).
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif",
        "clp",
        "djf",
        "gnf",
        "jpy",
        "kmf",
        "krw",
        "mga",
        "pyg",
        "rwf",
        "ugx",
        "vnd",
        "vuv",
        "xaf",
        "xof",
        "xpf",
    }
)

WEBHOOK_SUCCEEDED_EVENT = "payment_intent.succeeded"
WEBHOOK_FAILED_EVENT = "payment_intent.payment_failed"
