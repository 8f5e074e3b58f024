"""
Stock enrichment — turns requested {product_id, quantity} pairs into priced
line items, rejecting anything the catalog says cannot be filled.

This check is advisory: it gives fast, precise rejections, but two orders can
both pass it for the last unit. The conditional stock decrement in
OrderRepository.create_order is what actually prevents overselling.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from domain.errors import (
    BelowMinimumOrderError,
    InsufficientStockError,
    OutOfStockError,
    ProductNotFoundError,
)
from services.calculation_service import item_total
from services.catalog_service import ProductAvailability

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    async def get_availability(self, product_id: str) -> ProductAvailability | None:
        ...


@dataclass(frozen=True)
class RequestedItem:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class EnrichedItem:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal  # snapshot, never re-read
    total_price: Decimal
    currency: str


def check_availability(snapshot: ProductAvailability, quantity: int) -> None:
    """Raise the matching rejection when `snapshot` cannot fill `quantity`."""
    if not snapshot.in_stock:
        raise OutOfStockError(snapshot.product_id, snapshot.name)
    if quantity < snapshot.minimum_order_quantity:
        raise BelowMinimumOrderError(
            snapshot.product_id, snapshot.name, snapshot.minimum_order_quantity, quantity
        )
    if quantity > snapshot.stock_quantity:
        raise InsufficientStockError(
            snapshot.product_id, snapshot.name, snapshot.stock_quantity, quantity
        )


async def enrich_items(catalog: Catalog, items: Iterable[RequestedItem]) -> list[EnrichedItem]:
    """
    Resolve a product snapshot for every requested item and validate it.

    Items are checked in request order; the first failing item aborts.

    Raises:
        ProductNotFoundError, OutOfStockError, BelowMinimumOrderError,
        InsufficientStockError, TransientFailureError (catalog unreachable)
    """
    enriched: list[EnrichedItem] = []
    for item in items:
        snapshot = await catalog.get_availability(item.product_id)
        if snapshot is None:
            raise ProductNotFoundError(item.product_id)

        check_availability(snapshot, item.quantity)

        enriched.append(
            EnrichedItem(
                product_id=snapshot.product_id,
                product_name=snapshot.name,
                quantity=item.quantity,
                unit_price=snapshot.unit_price,
                total_price=item_total(item.quantity, snapshot.unit_price),
                currency=snapshot.currency,
            )
        )

    logger.debug(f"Enriched {len(enriched)} order item(s)")
    return enriched
