"""
Order service — the entry point for every order operation.

Composes the pieces; owns none of the rules:
    request validation        (here)
    enrichment + stock checks enrichment_service / catalog_service
    pricing                   calculation_service
    persistence + workflow    order_repository (state machine evaluated there)
    payment events            reconciliation_service
    notifications             post-commit hooks, after the repository commits

Access rules:
    customers  see, list and cancel their own orders
    admins     see everything, process orders, cancel any non-terminal order
"""
import logging
import uuid
from typing import Any, Sequence

from db_models import Order, OrderStatusHistory
from domain.actor import Actor
from domain.constants import ORDER_NUMBER_ID_CHARS, ORDER_NUMBER_PREFIX
from domain.enums import WorkflowTrigger
from domain.errors import (
    InvalidInputError,
    NotFoundError,
    OrderNumberConflictError,
    PermissionDeniedError,
    TransientFailureError,
)
from services.calculation_service import CalculationConfig, compute_totals, validate_totals
from services.enrichment_service import Catalog, RequestedItem, enrich_items
from services.notification_service import (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    LoggingNotifier,
    Notifier,
    notification_hook,
    run_post_commit,
)
from services.order_repository import NewOrder, OrderRepository, TransitionResult
from services.reconciliation_service import PaymentReconciliationService, ReconciliationResult
from utils.validators import validate_order_id, validate_order_status, validate_order_type

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
ORDER_NUMBER_ATTEMPTS = 3


def make_order_number(order_id: str) -> str:
    """ORD- followed by the first 8 characters of the id, upper-cased."""
    return f"{ORDER_NUMBER_PREFIX}{order_id[:ORDER_NUMBER_ID_CHARS].upper()}"


def _coerce_item(raw: Any, index: int) -> RequestedItem:
    if isinstance(raw, RequestedItem):
        product_id, quantity = raw.product_id, raw.quantity
    elif isinstance(raw, dict):
        product_id = raw.get("product_id", raw.get("productId"))
        quantity = raw.get("quantity")
    else:
        product_id = getattr(raw, "product_id", None)
        quantity = getattr(raw, "quantity", None)

    if not product_id or not isinstance(product_id, str):
        raise InvalidInputError("product id is required", field=f"items[{index}].product_id")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidInputError("quantity must be an integer", field=f"items[{index}].quantity")
    if quantity <= 0:
        raise InvalidInputError("quantity must be greater than 0", field=f"items[{index}].quantity")

    return RequestedItem(product_id=product_id, quantity=quantity)


class OrderService:
    def __init__(
        self,
        repository: OrderRepository,
        catalog: Catalog,
        *,
        reconciliation: PaymentReconciliationService | None = None,
        calculation_config: CalculationConfig | None = None,
        notifier: Notifier | None = None,
    ):
        self.repository = repository
        self.catalog = catalog
        self.reconciliation = reconciliation
        self.calculation_config = calculation_config or CalculationConfig()
        self.notifier = notifier or LoggingNotifier()

    # ════════════════════════════════════════════════════════════════
    # Creation
    # ════════════════════════════════════════════════════════════════

    async def create_order(
        self,
        owner_id: str,
        order_type: str,
        items: Sequence[Any],
        custody_service_id: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """
        Create a pending order for `owner_id`.

        Args:
            owner_id: Authenticated user placing the order
            order_type: "buy" or "sell" (case-insensitive)
            items: [{product_id, quantity}] (dicts or RequestedItem)
            custody_service_id: Optional custody service reference
            notes: Optional free text

        Returns:
            The persisted Order with items and totals

        Raises:
            InvalidInputError, ProductNotFoundError, OutOfStockError,
            BelowMinimumOrderError, InsufficientStockError, TransientFailureError
        """
        if not owner_id:
            raise InvalidInputError("user id is required", field="user_id")
        type_ = validate_order_type(order_type)

        if not items:
            raise InvalidInputError("Order must contain at least one item", field="items")
        requested = [_coerce_item(raw, i) for i, raw in enumerate(items)]

        product_ids = [r.product_id for r in requested]
        if len(set(product_ids)) != len(product_ids):
            raise InvalidInputError(
                "Each product may appear only once per order",
                field="items",
                details={"product_ids": product_ids},
            )

        enriched = await enrich_items(self.catalog, requested)

        currencies = {item.currency for item in enriched}
        if len(currencies) > 1:
            raise InvalidInputError(
                "All items in an order must share one currency",
                field="items",
                details={"currencies": sorted(currencies)},
            )
        currency = currencies.pop()

        totals = compute_totals(enriched, self.calculation_config)
        if not validate_totals(totals):
            logger.error(f"Inconsistent totals computed for owner {owner_id}: {totals.to_dict()}")
            raise InvalidInputError("Order totals could not be computed", details=totals.to_dict())

        # order numbers are a short id prefix and can collide; a fresh id settles it
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order_id = str(uuid.uuid4())
            try:
                order = await self.repository.create_order(
                    NewOrder(
                        id=order_id,
                        order_number=make_order_number(order_id),
                        user_id=owner_id,
                        type=type_.value,
                        currency=currency,
                        totals=totals,
                        custody_service_id=custody_service_id,
                        notes=notes,
                    ),
                    enriched,
                )
                break
            except OrderNumberConflictError:
                if attempt == ORDER_NUMBER_ATTEMPTS:
                    logger.error(f"No free order number after {attempt} attempts for owner {owner_id}")
                    raise TransientFailureError("Order could not be saved, please retry")

        await run_post_commit([
            notification_hook(
                self.notifier,
                ORDER_CREATED,
                order.id,
                {"orderNumber": order.order_number, "userId": owner_id, "total": str(order.total)},
            ),
        ])
        return order

    # ════════════════════════════════════════════════════════════════
    # Reads
    # ════════════════════════════════════════════════════════════════

    async def _visible_order(self, order_id: str, actor: Actor) -> Order:
        order_id = validate_order_id(order_id)
        order = await self.repository.get_order(order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        if not actor.is_admin and not actor.owns(order.user_id):
            raise PermissionDeniedError("You can only access your own orders")
        return order

    async def get_order(self, order_id: str, actor: Actor) -> Order:
        return await self._visible_order(order_id, actor)

    async def get_order_history(self, order_id: str, actor: Actor) -> list[OrderStatusHistory]:
        order = await self._visible_order(order_id, actor)
        return await self.repository.get_status_history(order.id)

    async def list_orders(
        self,
        actor: Actor,
        *,
        user_id: str | None = None,
        status: str | None = None,
        order_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        """
        List orders newest first.

        Customers are always scoped to their own orders; asking for someone
        else's is refused rather than silently narrowed.
        """
        if not actor.is_admin:
            if user_id and user_id != actor.user_id:
                raise PermissionDeniedError("You can only list your own orders")
            user_id = actor.user_id

        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidInputError(f"must be between 1 and {MAX_PAGE_SIZE}", field="limit")
        if offset < 0:
            raise InvalidInputError("must be non-negative", field="offset")

        return await self.repository.list_orders(
            user_id=user_id,
            status=validate_order_status(status).value if status else None,
            order_type=validate_order_type(order_type).value if order_type else None,
            limit=limit,
            offset=offset,
        )

    async def order_stats(self, actor: Actor) -> dict[str, int]:
        if not actor.is_admin:
            raise PermissionDeniedError("Admin access required")
        return await self.repository.order_stats()

    # ════════════════════════════════════════════════════════════════
    # Workflow
    # ════════════════════════════════════════════════════════════════

    async def process_order(self, order_id: str, actor: Actor) -> TransitionResult:
        """Advance an order one step along the fulfillment chain (admin only)."""
        if not actor.is_admin:
            raise PermissionDeniedError("Admin access required to process orders")
        order_id = validate_order_id(order_id)

        result = await self.repository.transition_status(
            order_id,
            WorkflowTrigger.PROCESS,
            actor_id=actor.user_id,
            privileged=True,
        )
        await self._notify_status_change(result)
        return result

    async def cancel_order(self, order_id: str, actor: Actor) -> Order:
        """
        Cancel an order.

        The owner may cancel while the order awaits payment; an admin may
        cancel anything not yet completed. The transition is applied against
        the status that was checked here, so a concurrent change fails with
        ConcurrentModificationError instead of cancelling a different state.
        """
        order = await self._visible_order(order_id, actor)

        result = await self.repository.transition_status(
            order.id,
            WorkflowTrigger.CANCEL,
            actor_id=actor.user_id,
            privileged=actor.is_admin,
            expected_status=order.status,
        )
        await self._notify_status_change(result)

        cancelled = await self.repository.get_order(order.id)
        if cancelled is None:
            raise NotFoundError("Order", order.id)
        return cancelled

    async def _notify_status_change(self, result: TransitionResult) -> None:
        await run_post_commit([
            notification_hook(
                self.notifier,
                ORDER_STATUS_CHANGED,
                result.order_id,
                {
                    "previousStatus": result.previous_status.value,
                    "newStatus": result.new_status.value,
                    "trigger": result.trigger.value,
                },
            ),
        ])

    # ════════════════════════════════════════════════════════════════
    # Payments
    # ════════════════════════════════════════════════════════════════

    async def handle_payment_webhook(self, raw_body: bytes, signature: str | None) -> ReconciliationResult:
        if self.reconciliation is None:
            raise RuntimeError("Payment reconciliation is not configured")
        return await self.reconciliation.handle_event(raw_body, signature)
