"""Test configuration and fixtures."""

import os
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

# Settings are read at import time; point them at test values first
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_SERVER_KEY = "SB-Mid-server-test-key"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["MIDTRANS_SERVER_KEY"] = TEST_SERVER_KEY
os.environ["JWT_SECRET"] = "test-secret-key-that-is-at-least-32-bytes-long"
os.environ["ENVIRONMENT"] = "development"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from travel_crm.core.database import Database, get_db, utcnow  # noqa: E402
from travel_crm.core.dependencies import get_payment_gateway  # noqa: E402
from travel_crm.core.security import TOKEN_TYPE_CUSTOMER, TOKEN_TYPE_USER, create_access_token  # noqa: E402
from travel_crm.integrations.midtrans import MidtransClient, MidtransError, compute_signature  # noqa: E402
from travel_crm.models import Customer, TravelPackage, User, UserRole  # noqa: E402


class FakePaymentGateway(MidtransClient):
    """In-memory stand-in for Midtrans that records every call."""

    def __init__(self) -> None:
        super().__init__(server_key=TEST_SERVER_KEY)
        self.created: list[Dict[str, Any]] = []
        self.status_lookups: list[str] = []
        self.statuses: Dict[str, Dict[str, Any]] = {}
        self.fail_with: Optional[MidtransError] = None

    async def create_transaction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_with:
            raise self.fail_with
        self.created.append(payload)
        token = f"snap-token-{len(self.created)}"
        return {
            "token": token,
            "redirect_url": f"https://app.sandbox.midtrans.com/snap/v4/redirection/{token}",
        }

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        if self.fail_with:
            raise self.fail_with
        self.status_lookups.append(order_id)
        return self.statuses.get(
            order_id,
            {"status_code": "404", "status_message": "Transaction doesn't exist."},
        )


@pytest_asyncio.fixture(scope="function")
async def test_database():
    """Create an in-memory test database with all tables."""
    database = Database(TEST_DATABASE_URL)
    await database.create_all()

    yield database

    await database.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_database):
    """Create a test database session."""
    async with test_database.session() as session:
        yield session


@pytest.fixture
def payment_gateway():
    """Fake payment provider."""
    return FakePaymentGateway()


@pytest_asyncio.fixture(scope="function")
async def test_app(test_database, test_session, payment_gateway):
    """Create a test FastAPI application sharing the test session."""
    from travel_crm.main import create_app

    app = create_app(database=test_database, payment_gateway=payment_gateway)

    # Override database dependency
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _add(session, entity):
    session.add(entity)
    await session.commit()
    return entity


@pytest_asyncio.fixture
async def admin_user(test_session):
    return await _add(test_session, User(name="Admin", email="admin@travel.test", role=UserRole.ADMIN))


@pytest_asyncio.fixture
async def sales_user(test_session):
    return await _add(test_session, User(name="Sales", email="sales@travel.test", role=UserRole.SALES))


@pytest_asyncio.fixture
async def cs_user(test_session):
    return await _add(test_session, User(name="Support", email="cs@travel.test", role=UserRole.CS))


@pytest_asyncio.fixture
async def manager_user(test_session):
    return await _add(test_session, User(name="Manager", email="manager@travel.test", role=UserRole.MANAGER))


@pytest_asyncio.fixture
async def inactive_user(test_session):
    return await _add(
        test_session,
        User(name="Former", email="former@travel.test", role=UserRole.SALES, is_active=False),
    )


@pytest_asyncio.fixture
async def customer(test_session):
    return await _add(
        test_session,
        Customer(name="Budi Santoso", email="budi@example.com", phone="081234567890"),
    )


@pytest_asyncio.fixture
async def other_customer(test_session):
    return await _add(
        test_session,
        Customer(name="Siti Rahma", email="siti@example.com", phone="081298765432"),
    )


def make_package(**overrides) -> TravelPackage:
    now = utcnow()
    values = {
        "name": "Bali Paradise 4D3N",
        "destination": "Bali",
        "description": "Beaches and temples",
        "price": Decimal("1000000.00"),
        "quota": 10,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=180),
    }
    values.update(overrides)
    return TravelPackage(**values)


@pytest.fixture
def package_factory(test_session) -> Callable:
    """Persist a package with sensible defaults."""

    async def factory(**overrides) -> TravelPackage:
        return await _add(test_session, make_package(**overrides))

    return factory


@pytest_asyncio.fixture
async def travel_package(package_factory):
    """Active package with a quota of 10 at 1,000,000 per person."""
    return await package_factory()


@pytest_asyncio.fixture
async def inactive_package(package_factory):
    return await package_factory(name="Closed Season Trip", is_active=False)


def bearer(subject_id, token_type: str = TOKEN_TYPE_USER) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject_id, token_type=token_type)}"}


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user.id)


@pytest.fixture
def sales_headers(sales_user):
    return bearer(sales_user.id)


@pytest.fixture
def cs_headers(cs_user):
    return bearer(cs_user.id)


@pytest.fixture
def manager_headers(manager_user):
    return bearer(manager_user.id)


@pytest.fixture
def customer_headers(customer):
    return bearer(customer.id, TOKEN_TYPE_CUSTOMER)


@pytest.fixture
def other_customer_headers(other_customer):
    return bearer(other_customer.id, TOKEN_TYPE_CUSTOMER)


@pytest.fixture
def notification_factory() -> Callable[..., Dict[str, Any]]:
    """Build a Midtrans notification payload signed with the test server key."""

    def factory(
        order_id: str,
        transaction_status: str,
        fraud_status: Optional[str] = None,
        gross_amount: str = "2000000.00",
        status_code: str = "200",
        payment_type: str = "bank_transfer",
        signature_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "order_id": order_id,
            "status_code": status_code,
            "gross_amount": gross_amount,
            "transaction_status": transaction_status,
            "payment_type": payment_type,
            "transaction_id": "9aed5972-5b6a-401e-894b-a32c91ed1a3a",
            "transaction_time": "2026-01-28 15:30:00",
            "signature_key": signature_key
            or compute_signature(order_id, status_code, gross_amount, TEST_SERVER_KEY),
        }
        if fraud_status is not None:
            payload["fraud_status"] = fraud_status
        return payload

    return factory
