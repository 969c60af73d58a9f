"""HTTP translation of payment failures, on top of the order mapping."""

from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response

from modules.orders.responses import ORDER_ERROR_RESPONSES, error_response
from modules.payments.exceptions import (
    PaymentVerificationFailed,
    ProcessorNotConfigured,
)

PAYMENT_ERROR_RESPONSES = (
    (PaymentVerificationFailed, status.HTTP_400_BAD_REQUEST, "Payment could not be verified."),
    (
        ProcessorNotConfigured,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Payment service is not configured.",
    ),
    *ORDER_ERROR_RESPONSES,
)


def payment_error_response(exc: Exception) -> Response:
    return error_response(exc, PAYMENT_ERROR_RESPONSES)
