"""
Pytest configuration and shared fixtures for order backend tests.

Provides an in-memory SQLite store, a temp-file store for concurrency tests,
the wired OrderService, seeded catalog products, auth tokens and an HTTP
client bound to the FastAPI app.
"""
import pytest
from decimal import Decimal
from typing import AsyncGenerator

from httpx import AsyncClient, ASGITransport
from sqlalchemy.pool import StaticPool

from config import settings
from database import Database
from db_models import Product
from domain.actor import Actor
from domain.enums import Role
from middleware.auth import issue_access_token
from middleware.rate_limit import get_limiter
from services.order_repository import OrderRepository
from services.order_service import OrderService
from tests.helpers import (
    ADMIN_ID,
    CUSTOMER_ID,
    OTHER_CUSTOMER_ID,
    TEST_WEBHOOK_SECRET,
    RecordingNotifier,
    add_product,
    build_order_service,
)

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"
settings.payment_webhook_secret = TEST_WEBHOOK_SECRET


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def database() -> AsyncGenerator[Database, None]:
    """
    In-memory SQLite store for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    db = Database(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await db.init_db()
    yield db
    await db.dispose()


@pytest.fixture(scope="function")
async def file_database(tmp_path) -> AsyncGenerator[Database, None]:
    """Temp-file SQLite store; every session gets its own connection."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}", connect_args={"timeout": 15})
    await db.init_db()
    yield db
    await db.dispose()


# ── Service Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def repository(database) -> OrderRepository:
    return OrderRepository(database)


@pytest.fixture
def order_service(database, notifier) -> OrderService:
    return build_order_service(database, notifier)


# ── Test Data Fixtures ────────────────────────────────────────────────


@pytest.fixture
async def gold_bar(database) -> Product:
    """1oz gold bar, 450.00 CHF, 10 in stock."""
    return await add_product(database)


@pytest.fixture
async def silver_coin(database) -> Product:
    """Silver coin, 25.50 CHF, 100 in stock, minimum 5 per order."""
    return await add_product(
        database,
        name="Silver Coin",
        price=Decimal("25.50"),
        stock_quantity=100,
        minimum_order_quantity=5,
    )


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id=CUSTOMER_ID, role=Role.CUSTOMER)


@pytest.fixture
def other_customer() -> Actor:
    return Actor(user_id=OTHER_CUSTOMER_ID, role=Role.CUSTOMER)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, role=Role.ADMIN)


# ── HTTP Fixtures ─────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    get_limiter().reset()
    yield
    get_limiter().reset()


@pytest.fixture
def customer_headers() -> dict:
    return {"Authorization": f"Bearer {issue_access_token(user_id=CUSTOMER_ID)}"}


@pytest.fixture
def other_customer_headers() -> dict:
    return {"Authorization": f"Bearer {issue_access_token(user_id=OTHER_CUSTOMER_ID)}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {issue_access_token(user_id=ADMIN_ID, role=Role.ADMIN.value)}"}


@pytest.fixture
async def client(database, notifier) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client bound to the app, wired to the in-memory store.

    ASGITransport does not run the lifespan, so services are attached here.
    """
    from main import app, wire_services

    wire_services(app, database, notifier=notifier)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
