"""Payment exceptions."""

from __future__ import annotations

from modules.core.exceptions import InfrastructureError


class PaymentError(Exception):
    """Base class for payment business-rule failures."""


class PaymentVerificationFailed(PaymentError):
    """The processor did not confirm the reported payment.

    Raised when the transaction is not succeeded, belongs to another
    order, carries a different amount, or a webhook signature is invalid.
    """


class PaymentProcessorError(InfrastructureError):
    """The processor could not be reached or rejected the request."""


class ProcessorNotConfigured(PaymentProcessorError):
    """No processor credentials are configured."""
