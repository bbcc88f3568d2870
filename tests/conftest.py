"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("PROMPTPAY_MERCHANT_ID", "0812345678")
os.environ.setdefault("PROMPTPAY_WEBHOOK_SECRET", "test-promptpay-secret")
os.environ.setdefault("CARD_GATEWAY_MERCHANT_ID", "merchant-test")
os.environ.setdefault("CARD_GATEWAY_SECRET_KEY", "test-card-secret")
os.environ.setdefault("CARD_GATEWAY_API_URL", "https://gateway.test")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")

from src.core.card_gateway import CardGatewayClient  # noqa: E402
from src.core.promptpay import PromptPayClient  # noqa: E402
from src.repositories.memory import InMemoryStore  # noqa: E402
from src.services.order_service import OrderService  # noqa: E402
from src.services.payment_service import PaymentService  # noqa: E402

PROMPTPAY_SECRET = "test-promptpay-secret"
CARD_SECRET = "test-card-secret"
CARD_MERCHANT_ID = "merchant-test"

VALID_ADDRESS = {
    "first_name": "Somchai",
    "last_name": "Jaidee",
    "address_line1": "99 Sukhumvit Road",
    "city": "Bangkok",
    "province": "Bangkok",
    "postal_code": "10110",
    "country": "TH",
    "phone": "0812345678",
}


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def catalog(store: InMemoryStore) -> dict[str, Any]:
    """Seed a small catalog.

    Returns:
        dict: The seeded rows keyed by role.
    """
    shirt = store.add_product(id="prod-shirt", name="Cotton Shirt", base_price=4500, category_ids=["cat-apparel"])
    shirt_m = store.add_variant(
        id="var-shirt-m", product_id="prod-shirt", name="M", sku="SHIRT-M", price=5000, stock_quantity=10
    )
    mug = store.add_product(id="prod-mug", name="Enamel Mug", base_price=2000, category_ids=["cat-kitchen"])
    ebook = store.add_product(id="prod-ebook", name="Brewing Guide", base_price=30000, track_inventory=False)
    return {"shirt": shirt, "shirt_m": shirt_m, "mug": mug, "ebook": ebook}


@pytest.fixture
def mock_email_service() -> MagicMock:
    """Email service double; its send methods return plain mocks."""
    return MagicMock()


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    """Notification dispatcher double that records dispatch calls."""
    return MagicMock()


@pytest.fixture
def promptpay_client() -> PromptPayClient:
    return PromptPayClient("0812345678", PROMPTPAY_SECRET)


@pytest.fixture
def card_client() -> CardGatewayClient:
    return CardGatewayClient(CARD_MERCHANT_ID, CARD_SECRET, "https://gateway.test")


@pytest.fixture
def order_service(
    store: InMemoryStore,
    mock_email_service: MagicMock,
    mock_dispatcher: MagicMock,
) -> OrderService:
    return OrderService(store=store, email_service=mock_email_service, notifications=mock_dispatcher)


@pytest.fixture
def payment_service(
    store: InMemoryStore,
    order_service: OrderService,
    promptpay_client: PromptPayClient,
    card_client: CardGatewayClient,
    mock_email_service: MagicMock,
    mock_dispatcher: MagicMock,
) -> PaymentService:
    return PaymentService(
        store=store,
        order_service=order_service,
        promptpay_client=promptpay_client,
        card_client=card_client,
        email_service=mock_email_service,
        notifications=mock_dispatcher,
    )


@pytest.fixture
def client(
    order_service: OrderService,
    payment_service: PaymentService,
) -> Generator[TestClient, None, None]:
    """Test client whose services share the in-memory store fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_order_service, get_payment_service
    from src.main import app

    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Actor-Id": "admin-1"}


@pytest.fixture
def order_payload() -> Callable[..., dict[str, Any]]:
    """Builder for a checkout request body: two M shirts, valid addresses."""

    def build(**overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "email": "buyer@example.com",
            "items": [{"product_id": "prod-shirt", "variant_id": "var-shirt-m", "quantity": 2}],
            "shipping_address": dict(VALID_ADDRESS),
            "billing_address": dict(VALID_ADDRESS),
        }
        payload.update(overrides)
        return payload

    return build
