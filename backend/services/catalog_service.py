"""
Catalog lookup — point-in-time availability and pricing for a product.

The catalog itself (product CRUD) lives elsewhere; orders only need a
snapshot of price, stock and ordering constraints. Lookups are bounded by
CATALOG_TIMEOUT_SECONDS so a slow store surfaces as a retryable failure
instead of hanging the request.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from database import Database
from db_models import Product
from domain.errors import TransientFailureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductAvailability:
    """Snapshot of a product at lookup time. Never refreshed."""
    product_id: str
    name: str
    unit_price: Decimal
    currency: str
    stock_quantity: int
    minimum_order_quantity: int
    in_stock: bool


class CatalogService:
    def __init__(self, database: Database, *, timeout_seconds: float = 2.0):
        self._database = database
        self._timeout = timeout_seconds

    async def get_availability(self, product_id: str) -> ProductAvailability | None:
        """
        Read the current availability snapshot for a product.

        Returns:
            ProductAvailability, or None when the product does not exist

        Raises:
            TransientFailureError: lookup timed out or the store is unreachable
        """
        try:
            return await asyncio.wait_for(self._load(product_id), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Catalog lookup timed out after {self._timeout}s for product {product_id}")
            raise TransientFailureError(
                "Product catalog is temporarily unavailable, please retry",
                details={"product_id": product_id},
            )
        except OperationalError as e:
            logger.error(f"Catalog lookup failed for product {product_id}: {e}")
            raise TransientFailureError(
                "Product catalog is temporarily unavailable, please retry",
                details={"product_id": product_id},
            )

    async def _load(self, product_id: str) -> ProductAvailability | None:
        async with self._database.session() as session:
            res = await session.execute(select(Product).where(Product.id == product_id))
            product = res.scalar_one_or_none()

        if not product:
            return None

        return ProductAvailability(
            product_id=product.id,
            name=product.name,
            unit_price=Decimal(str(product.price)),
            currency=product.currency,
            stock_quantity=product.stock_quantity,
            minimum_order_quantity=product.minimum_order_quantity,
            in_stock=bool(product.in_stock),
        )
