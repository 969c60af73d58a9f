"""Translation of domain exceptions into fixed HTTP responses.

Messages of authorization and transition failures are fixed strings so
nothing about the order's state or ownership leaks to the caller.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Type

import structlog
from rest_framework import status
from rest_framework.response import Response

from modules.core.exceptions import InfrastructureError
from modules.orders.exceptions import (
    ConcurrentOrderUpdate,
    Forbidden,
    InsufficientStock,
    InvalidPaymentTransition,
    InvalidStatusTransition,
    OrderItemsRejected,
    OrderNotFound,
    OrderValidationError,
)

logger = structlog.get_logger(__name__)

# (exception, status, fixed message); ``None`` echoes the exception text.
ErrorMapping = Tuple[Type[Exception], int, Optional[str]]

ORDER_ERROR_RESPONSES: Sequence[ErrorMapping] = (
    (OrderNotFound, status.HTTP_404_NOT_FOUND, "Order not found."),
    (Forbidden, status.HTTP_403_FORBIDDEN, "You do not have permission to perform this action."),
    (
        InvalidStatusTransition,
        status.HTTP_409_CONFLICT,
        "This action cannot be performed on the order in its current state.",
    ),
    (
        InvalidPaymentTransition,
        status.HTTP_409_CONFLICT,
        "This action cannot be performed on the order in its current state.",
    ),
    (
        ConcurrentOrderUpdate,
        status.HTTP_409_CONFLICT,
        "The order was modified by another request. Please retry.",
    ),
    (InsufficientStock, status.HTTP_409_CONFLICT, None),
    (OrderValidationError, status.HTTP_400_BAD_REQUEST, None),
    (InfrastructureError, status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable."),
)


def error_response(
    exc: Exception, mappings: Sequence[ErrorMapping] = ORDER_ERROR_RESPONSES
) -> Response:
    """Build the response for *exc*; re-raise anything not mapped."""
    for exc_class, status_code, message in mappings:
        if isinstance(exc, exc_class):
            body = {"detail": message or str(exc)}
            if isinstance(exc, OrderItemsRejected):
                body = {
                    "detail": "Some items cannot be ordered.",
                    "errors": [str(error) for error in exc.errors],
                }
                if any(isinstance(error, InsufficientStock) for error in exc.errors):
                    status_code = status.HTTP_409_CONFLICT
            logger.info(
                "api.domain_error", error_type=type(exc).__name__, status_code=status_code
            )
            return Response(body, status=status_code)
    raise exc
