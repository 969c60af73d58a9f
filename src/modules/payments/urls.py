"""Payment URL configuration."""

from __future__ import annotations

from django.urls import path

from modules.payments.views import (
    PaymentIntentView,
    PaymentStatusPollView,
    PaymentStatusView,
    PaymentWebhookView,
)

urlpatterns = [
    path("payments/intents/", PaymentIntentView.as_view(), name="payment-intent"),
    path("payments/status/", PaymentStatusView.as_view(), name="payment-status"),
    path(
        "payments/status/<uuid:order_id>/",
        PaymentStatusPollView.as_view(),
        name="payment-status-poll",
    ),
    path("payments/webhook/", PaymentWebhookView.as_view(), name="payment-webhook"),
]
