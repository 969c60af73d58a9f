from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from modules.orders.constants import PaymentMethod
from modules.orders.dtos import PlaceOrderDTO
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.payments.constants import TransactionStatus
from modules.payments.exceptions import PaymentProcessorError, PaymentVerificationFailed
from modules.payments.processors import ProcessorTransaction
from modules.products.models import Product
from modules.products.repositories.django_repository import ProductDjangoRepository

User = get_user_model()

SHIPPING_ADDRESS = {
    "first_name": "Asha",
    "last_name": "Rao",
    "street": "12 Loom Street",
    "city": "Jaipur",
    "state": "Rajasthan",
    "country": "India",
    "zip_code": "302001",
    "phone": "+91 98765 43210",
}


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


@pytest.fixture()
def client_for():
    """Build an APIClient force-authenticated as the given user."""

    def _client(user) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _client


# ---------------------------------------------------------------------------
# Users & catalogue
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer():
    return User.objects.create_user(username="customer", password="testpass123")


@pytest.fixture()
def other_customer():
    return User.objects.create_user(username="other-customer", password="testpass123")


@pytest.fixture()
def artisan():
    return User.objects.create_user(username="artisan", password="testpass123")


@pytest.fixture()
def other_artisan():
    return User.objects.create_user(username="other-artisan", password="testpass123")


@pytest.fixture()
def staff_user():
    return User.objects.create_user(username="staff", password="testpass123", is_staff=True)


@pytest.fixture()
def make_product(artisan):
    def _make(**overrides) -> Product:
        fields = {
            "title": "Hand-woven basket",
            "price": Decimal("500.00"),
            "created_by": artisan,
            "is_approved": True,
            "stock_quantity": 10,
        }
        fields.update(overrides)
        return Product.objects.create(**fields)

    return _make


@pytest.fixture()
def product(make_product):
    return make_product()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture()
def order_service():
    return OrderService(
        order_repository=OrderDjangoRepository(),
        product_repository=ProductDjangoRepository(),
    )


@pytest.fixture()
def make_dto(customer):
    def _make(items, user=None, **overrides) -> PlaceOrderDTO:
        fields = {
            "user_id": (user or customer).id,
            "items": [
                {"product_id": product.id, "quantity": quantity} for product, quantity in items
            ],
            "shipping_address": SHIPPING_ADDRESS,
            "payment_method": PaymentMethod.STRIPE,
        }
        fields.update(overrides)
        return PlaceOrderDTO(**fields)

    return _make


@pytest.fixture()
def order_payload():
    """Checkout request body as the API receives it."""

    def _payload(items, **overrides) -> dict:
        payload = {
            "items": [
                {"product_id": str(product.id), "quantity": quantity}
                for product, quantity in items
            ],
            "shipping_address": dict(SHIPPING_ADDRESS),
            "payment_method": PaymentMethod.STRIPE.value,
        }
        payload.update(overrides)
        return payload

    return _payload


# ---------------------------------------------------------------------------
# Payment processor double
# ---------------------------------------------------------------------------


class FakePaymentProcessor:
    """In-memory ``IPaymentProcessor`` recording every call."""

    def __init__(self) -> None:
        self.transactions: Dict[str, ProcessorTransaction] = {}
        self.refunds: List[str] = []
        self.get_calls = 0
        self.webhook_event: Optional[ProcessorTransaction] = None
        self._counter = 0

    @classmethod
    def from_settings(cls) -> FakePaymentProcessor:
        return cls()

    async def create_transaction(self, amount, currency, metadata):
        self._counter += 1
        txn = ProcessorTransaction(
            id=f"pi_fake_{self._counter}",
            status=TransactionStatus.PENDING,
            amount=amount,
            currency=currency,
            metadata=dict(metadata),
            client_secret=f"pi_fake_{self._counter}_secret_abc",
        )
        self.transactions[txn.id] = txn
        return txn

    async def get_transaction(self, transaction_id):
        self.get_calls += 1
        if transaction_id not in self.transactions:
            raise PaymentProcessorError(f"No such payment intent: '{transaction_id}'")
        return self.transactions[transaction_id]

    async def refund_transaction(self, transaction_id, idempotency_key):
        self.refunds.append(transaction_id)
        return f"re_fake_{len(self.refunds)}"

    async def parse_webhook(self, payload, signature):
        if signature != "valid":
            raise PaymentVerificationFailed("Invalid webhook signature.")
        return self.webhook_event

    # Test helpers ------------------------------------------------------

    def settle(self, transaction_id, status=TransactionStatus.SUCCEEDED, **changes):
        txn = self.transactions[transaction_id]
        fields = {**txn.__dict__, "status": status, **changes}
        self.transactions[transaction_id] = ProcessorTransaction(**fields)
        return self.transactions[transaction_id]


@pytest.fixture()
def processor():
    return FakePaymentProcessor()
