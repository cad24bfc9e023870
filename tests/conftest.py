"""Pytest configuration and fixtures."""

import copy
import hashlib
import hmac
import os
import time
from collections.abc import Callable, Generator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError as PostgrestAPIError

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-openai-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_stripe_publishable_key")
os.environ.setdefault("RESEND_API_KEY", "re_test_resend_key")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

WEBHOOK_SECRET = "whsec_test_webhook_secret"
STORAGE_URL = "https://test-project.supabase.co/storage/v1/object"

UNIQUE_COLUMNS = {"orders": ("order_number",), "products": ("slug",)}
ROW_DEFAULTS = {
    "orders": {
        "invoice_id": None,
        "invoice_url": None,
        "paid_at": None,
        "inventory_claimed_at": None,
        "inventory_adjusted_at": None,
        "invoice_generated_at": None,
        "confirmation_sent_at": None,
    },
}


class FakeResponse:
    """Stand-in for a postgrest APIResponse."""

    def __init__(self, data: Any):
        self.data = data


class FakeQuery:
    """Chainable query over an in-memory table, enough for the services."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: dict[str, Any] | None = None
        self._filters: list[Callable[[dict[str, Any]], bool]] = []
        self._limit: int | None = None
        self._single = False

    def select(self, *columns: str) -> "FakeQuery":
        self._op = "select"
        return self

    def insert(self, row: dict[str, Any]) -> "FakeQuery":
        self._op = "insert"
        self._payload = row
        return self

    def update(self, values: dict[str, Any]) -> "FakeQuery":
        self._op = "update"
        self._payload = values
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        assert value == "null"
        self._filters.append(lambda row: row.get(column) is None)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self._limit = count
        return self

    def order(self, *args: Any, **kwargs: Any) -> "FakeQuery":
        return self

    def maybe_single(self) -> "FakeQuery":
        self._single = True
        return self

    def execute(self) -> FakeResponse | None:
        if self._db.outage:
            raise PostgrestAPIError(
                {"message": "connection failure", "code": "08006", "details": None, "hint": None}
            )
        self._db.calls.append((self._table, self._op, copy.deepcopy(self._payload)))
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "insert":
            return FakeResponse([self._insert(rows)])

        matched = [row for row in rows if all(check(row) for check in self._filters)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return FakeResponse([copy.deepcopy(row) for row in matched])

        data = [copy.deepcopy(row) for row in matched]
        if self._limit is not None:
            data = data[: self._limit]
        if self._single:
            return FakeResponse(data[0]) if data else None
        return FakeResponse(data)

    def _insert(self, rows: list[dict[str, Any]]) -> dict[str, Any]:
        row = {
            "id": str(uuid4()),
            **ROW_DEFAULTS.get(self._table, {}),
            "created_at": datetime.now(timezone.utc).isoformat(),
            **copy.deepcopy(self._payload),
        }
        for column in UNIQUE_COLUMNS.get(self._table, ()):
            if any(existing.get(column) == row.get(column) for existing in rows):
                raise PostgrestAPIError(
                    {
                        "message": f'duplicate key value violates unique constraint "{self._table}_{column}_key"',
                        "code": "23505",
                        "details": None,
                        "hint": None,
                    }
                )
        rows.append(row)
        return copy.deepcopy(row)


class FakeBucket:
    """In-memory Supabase Storage bucket."""

    def __init__(self, storage: "FakeStorage", name: str):
        self._storage = storage
        self._name = name

    def upload(self, path: str, file: bytes, file_options: dict[str, str] | None = None) -> dict[str, str]:
        self._storage.files[(self._name, path)] = (file, file_options or {})
        return {"Key": f"{self._name}/{path}"}

    def create_signed_url(self, path: str, expires_in: int) -> dict[str, str]:
        if (self._name, path) not in self._storage.files:
            raise RuntimeError(f"Object not found: {path}")
        return {"signedURL": f"{STORAGE_URL}/sign/{self._name}/{path}?token=test"}


class FakeStorage:
    """In-memory Supabase Storage client."""

    def __init__(self) -> None:
        self.files: dict[tuple[str, str], tuple[bytes, dict[str, str]]] = {}

    def from_(self, bucket: str) -> FakeBucket:
        return FakeBucket(self, bucket)


class FakeSupabase:
    """In-memory Supabase client with conditional updates, unique columns and storage.

    Setting ``outage`` makes every query fail like a dropped connection.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.storage = FakeStorage()
        self.outage = False

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        row = {"id": str(uuid4()), **ROW_DEFAULTS.get(table, {}), **row}
        self.tables.setdefault(table, []).append(row)
        return row

    def get(self, table: str, row_id: str) -> dict[str, Any] | None:
        for row in self.tables.get(table, []):
            if row["id"] == row_id:
                return row
        return None


def make_stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs webhooks."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    """Provide an empty in-memory Supabase client."""
    return FakeSupabase()


@pytest.fixture
def lamp_product(fake_supabase: FakeSupabase) -> dict[str, Any]:
    """Seed a purchasable product: a 129.00 USD lamp with 10 in stock."""
    return fake_supabase.seed(
        "products",
        {
            "slug": "lamp",
            "name": "Desk Lamp",
            "description": "Brass desk lamp",
            "price": "129.00",
            "currency": "USD",
            "inventory": 10,
            "status": "active",
            "validation_status": "checked",
            "manually_verified": False,
        },
    )


@pytest.fixture
def customer() -> dict[str, Any]:
    """Buyer contact details."""
    return {"name": "Ada Lovelace", "email": "ada@example.com", "phone": None}


@pytest.fixture
def shipping_address() -> dict[str, Any]:
    """Delivery address."""
    return {
        "line1": "12 Analytical Row",
        "line2": None,
        "city": "London",
        "region": None,
        "postal_code": "N1 9GU",
        "country": "GB",
    }


@pytest.fixture
def stripe_signature() -> Callable[..., str]:
    """Provide the Stripe-Signature builder."""
    return make_stripe_signature


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    # Configure default mock responses
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def app() -> Generator[Any, None, None]:
    """Provide the FastAPI application, clearing dependency overrides afterwards."""
    from src.main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app: Any, mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        app: FastAPI application fixture.
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mock_stripe() -> MagicMock:
    """Provide a mocked Stripe module with successful session creation."""
    mock = MagicMock()
    mock.checkout.Session.create.return_value = MagicMock(
        id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
    )
    mock.PaymentIntent.create.return_value = MagicMock(
        id="pi_test_123",
        client_secret="pi_test_123_secret_abc",
    )
    return mock


@pytest.fixture
def mock_email_service() -> MagicMock:
    """Provide an email service whose sends always succeed."""
    mock = MagicMock()
    mock.send_order_confirmation = AsyncMock(return_value={"success": True, "email_id": "em_123"})
    return mock


@pytest.fixture
def mock_invoice_service() -> MagicMock:
    """Provide an invoice service whose invoices are always stored."""
    mock = MagicMock()
    mock.generate_invoice = AsyncMock(
        return_value={
            "success": True,
            "invoice_id": "order-id/invoice.pdf",
            "invoice_url": f"{STORAGE_URL}/sign/invoice-documents/order-id/invoice.pdf?token=test",
        }
    )
    return mock


@pytest.fixture
def mock_openai() -> MagicMock:
    """Provide an OpenAI wrapper that approves every product."""
    from src.core.openai import TimedOpenAIClient

    mock = MagicMock(spec=TimedOpenAIClient)
    mock.complete.return_value = "checked"
    return mock


@pytest.fixture
def api_client(
    app: Any,
    fake_supabase: FakeSupabase,
    mock_stripe: MagicMock,
    mock_email_service: MagicMock,
    mock_invoice_service: MagicMock,
    mock_openai: MagicMock,
    test_settings: Any,
    mock_supabase_client: MagicMock,
) -> Generator[TestClient, None, None]:
    """Provide a test client whose services run on the in-memory store.

    Stripe, Resend, invoice rendering and OpenAI are mocked; everything else is real.
    """
    from src.services.catalog_service import CatalogService, get_catalog_service
    from src.services.checkout_service import CheckoutService, get_checkout_service
    from src.services.order_service import OrderService, get_order_service
    from src.services.payment_service import PaymentService
    from src.services.product_validation_service import (
        ProductValidationService,
        get_product_validation_service,
    )
    from src.services.webhook_service import WebhookService, get_webhook_service

    order_service = OrderService(supabase_client=fake_supabase, settings=test_settings)
    payment_service = PaymentService(stripe_client=mock_stripe, settings=test_settings)

    app.dependency_overrides[get_catalog_service] = lambda: CatalogService(supabase_client=fake_supabase)
    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_checkout_service] = lambda: CheckoutService(
        order_service=order_service,
        payment_service=payment_service,
    )
    app.dependency_overrides[get_webhook_service] = lambda: WebhookService(
        supabase_client=fake_supabase,
        order_service=order_service,
        invoice_service=mock_invoice_service,
        email_service=mock_email_service,
        settings=test_settings,
    )
    app.dependency_overrides[get_product_validation_service] = lambda: ProductValidationService(
        supabase_client=fake_supabase,
        openai_client=mock_openai,
        settings=test_settings,
    )

    with TestClient(app) as test_client:
        yield test_client
