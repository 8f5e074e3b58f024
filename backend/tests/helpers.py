"""
Test helpers shared across modules (non-fixture).
"""
import json
from decimal import Decimal

from database import Database
from db_models import Product
from services.calculation_service import CalculationConfig
from services.catalog_service import CatalogService
from services.order_repository import OrderRepository
from services.order_service import OrderService
from services.payment_gateway import build_signature_header
from services.reconciliation_service import PaymentReconciliationService

TEST_WEBHOOK_SECRET = "whsec_test_secret_for_pytest_only"

CUSTOMER_ID = "user-alice"
OTHER_CUSTOMER_ID = "user-bob"
ADMIN_ID = "admin-carol"


class RecordingNotifier:
    """Notifier double that keeps every notification it is asked to send."""

    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = fail

    async def notify(self, kind: str, order_id: str, data: dict | None = None) -> None:
        if self.fail:
            raise RuntimeError("mailer down")
        self.sent.append((kind, order_id, data or {}))

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.sent]


async def add_product(database: Database, **overrides) -> Product:
    values = {
        "name": "Gold Bar 1oz",
        "price": Decimal("450.00"),
        "currency": "CHF",
        "stock_quantity": 10,
        "minimum_order_quantity": 1,
        "in_stock": True,
    }
    values.update(overrides)
    product = Product(**values)
    async with database.session() as session:
        session.add(product)
        await session.commit()
    return product


async def stock_of(database: Database, product_id: str) -> int:
    async with database.session() as session:
        product = await session.get(Product, product_id)
        return product.stock_quantity


def build_order_service(database: Database, notifier=None) -> OrderService:
    repository = OrderRepository(database)
    notifier = notifier or RecordingNotifier()
    return OrderService(
        repository,
        CatalogService(database),
        reconciliation=PaymentReconciliationService(
            repository,
            webhook_secret=TEST_WEBHOOK_SECRET,
            notifier=notifier,
        ),
        calculation_config=CalculationConfig(),
        notifier=notifier,
    )


def payment_event(event_type: str, order_id: str | None, event_id: str = "evt_1") -> bytes:
    """Processor-shaped event body."""
    metadata = {"orderId": order_id} if order_id else {}
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": "pi_123", "object": "payment_intent", "metadata": metadata}},
    }).encode("utf-8")


def signed(body: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    return build_signature_header(body, secret, timestamp)
