"""
Order repository — the only code that writes orders, items, stock and the
payment-event ledger.

Concurrency primitives:
    - Stock: `UPDATE products SET stock_quantity = stock_quantity - :q
              WHERE id = :id AND stock_quantity >= :q`
      Zero rows affected aborts the whole order (no partial rows).
    - Status: `UPDATE orders SET status = :new WHERE id = :id AND status = :current`
      Zero rows affected means another writer won; surfaced as
      ConcurrentModificationError, never overwritten.
    - Webhooks: unique processed_payment_events.event_id, inserted in the same
      transaction as the transition it records.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from database import Database
from db_models import Order, OrderItem, OrderStatusHistory, ProcessedPaymentEvent, Product
from domain.enums import LedgerOutcome, OrderStatus, WorkflowTrigger
from domain.errors import (
    ConcurrentModificationError,
    DuplicateEventError,
    InsufficientStockError,
    NotFoundError,
    OrderNumberConflictError,
    TransientFailureError,
)
from domain.workflow import apply_trigger
from services.calculation_service import OrderTotals
from services.enrichment_service import EnrichedItem

logger = logging.getLogger(__name__)

# Cancelling from these statuses puts the items back on the shelf
RESTOCKABLE_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_FAILED,
    OrderStatus.REQUIRES_ACTION,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class NewOrder:
    id: str
    order_number: str
    user_id: str
    type: str
    currency: str
    totals: OrderTotals
    custody_service_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class LedgerEvent:
    """The parts of a payment event the ledger stores."""
    id: str
    type: str


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    previous_status: OrderStatus
    new_status: OrderStatus
    trigger: WorkflowTrigger
    restocked: bool = False


class OrderRepository:
    def __init__(self, database: Database):
        self._database = database

    # ── Creation ────────────────────────────────────────────────────

    async def create_order(self, new_order: NewOrder, items: Sequence[EnrichedItem]) -> Order:
        """
        Persist an order, its items and the stock decrements as one unit.

        Raises:
            InsufficientStockError: a conditional decrement matched no row;
                nothing from this call is persisted
            OrderNumberConflictError: order_number already taken; nothing persisted
            TransientFailureError: store unavailable / locked
        """
        now = _utcnow()
        try:
            async with self._database.session() as session:
                async with session.begin():
                    for item in items:
                        await self._decrement_stock(session, item)

                    order = Order(
                        id=new_order.id,
                        order_number=new_order.order_number,
                        user_id=new_order.user_id,
                        type=new_order.type,
                        status=OrderStatus.PENDING.value,
                        currency=new_order.currency,
                        subtotal=new_order.totals.subtotal,
                        processing_fee=new_order.totals.fees.processing,
                        shipping_fee=new_order.totals.fees.shipping,
                        insurance_fee=new_order.totals.fees.insurance,
                        taxes=new_order.totals.taxes,
                        total=new_order.totals.total,
                        custody_service_id=new_order.custody_service_id,
                        notes=new_order.notes,
                        created_at=now,
                        updated_at=now,
                        items=[
                            OrderItem(
                                line_number=n,
                                product_id=item.product_id,
                                product_name=item.product_name,
                                quantity=item.quantity,
                                unit_price=item.unit_price,
                                total_price=item.total_price,
                                created_at=now,
                            )
                            for n, item in enumerate(items, start=1)
                        ],
                    )
                    session.add(order)
                    session.add(
                        OrderStatusHistory(
                            order_id=new_order.id,
                            from_status=None,
                            to_status=OrderStatus.PENDING.value,
                            trigger=WorkflowTrigger.CREATE.value,
                            actor_id=new_order.user_id,
                            created_at=now,
                        )
                    )
        except IntegrityError as e:
            if "order_number" not in str(e.orig):
                raise
            logger.warning(f"Order number {new_order.order_number} already taken, order {new_order.id} not saved")
            raise OrderNumberConflictError(new_order.order_number)
        except OperationalError as e:
            logger.error(f"Order {new_order.id} creation failed in store: {e}")
            raise TransientFailureError("Order could not be saved, please retry")

        logger.info(
            f"Order {order.order_number} created: {len(items)} item(s), "
            f"total {order.total} {order.currency}"
        )
        return order

    async def _decrement_stock(self, session, item: EnrichedItem) -> None:
        res = await session.execute(
            update(Product)
            .where(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
            .values(stock_quantity=Product.stock_quantity - item.quantity, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            available = await session.scalar(
                select(Product.stock_quantity).where(Product.id == item.product_id)
            )
            logger.info(
                f"Stock decrement refused for product {item.product_id}: "
                f"available={available}, requested={item.quantity}"
            )
            raise InsufficientStockError(item.product_id, item.product_name, available or 0, item.quantity)

    async def _restock(self, session, order_id: str) -> None:
        res = await session.execute(select(OrderItem).where(OrderItem.order_id == order_id))
        for item in res.scalars().all():
            await session.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock_quantity=Product.stock_quantity + item.quantity, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )

    # ── Workflow ────────────────────────────────────────────────────

    async def transition_status(
        self,
        order_id: str,
        trigger: WorkflowTrigger | str,
        *,
        actor_id: str | None = None,
        privileged: bool = False,
        expected_status: OrderStatus | str | None = None,
        event: LedgerEvent | None = None,
    ) -> TransitionResult:
        """
        Apply a workflow trigger to the persisted status with compare-and-swap.

        Args:
            order_id: Order to transition
            trigger: Workflow trigger
            actor_id: Who is acting (None for processor events)
            privileged: Administrator acting
            expected_status: Status the caller based its decision on; a mismatch
                fails instead of silently applying to a different state
            event: Payment event to record in the ledger in the same transaction

        Raises:
            NotFoundError, WorkflowInvalidStateError, AlreadyTerminalError,
            ConcurrentModificationError, DuplicateEventError, TransientFailureError
        """
        trigger = WorkflowTrigger(trigger)
        restocked = False
        try:
            async with self._database.session() as session:
                async with session.begin():
                    current = await session.scalar(select(Order.status).where(Order.id == order_id))
                    if current is None:
                        raise NotFoundError("Order", order_id)

                    if expected_status is not None and OrderStatus(expected_status) != OrderStatus(current):
                        raise ConcurrentModificationError(order_id, OrderStatus(expected_status).value, current)

                    transition = apply_trigger(current, trigger, privileged=privileged)
                    now = _utcnow()

                    res = await session.execute(
                        update(Order)
                        .where(Order.id == order_id, Order.status == current)
                        .values(status=transition.to_status.value, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1:
                        raise ConcurrentModificationError(order_id, current, None)

                    session.add(
                        OrderStatusHistory(
                            order_id=order_id,
                            from_status=transition.from_status.value,
                            to_status=transition.to_status.value,
                            trigger=trigger.value,
                            actor_id=actor_id,
                            event_id=event.id if event else None,
                            created_at=now,
                        )
                    )

                    if (
                        transition.to_status == OrderStatus.CANCELLED
                        and transition.from_status in RESTOCKABLE_STATUSES
                    ):
                        await self._restock(session, order_id)
                        restocked = True

                    if event is not None:
                        session.add(
                            ProcessedPaymentEvent(
                                event_id=event.id,
                                event_type=event.type,
                                order_id=order_id,
                                outcome=LedgerOutcome.APPLIED.value,
                                processed_at=now,
                            )
                        )
                    await session.flush()
        except IntegrityError:
            if event is not None:
                raise DuplicateEventError(event.id)
            raise
        except OperationalError as e:
            logger.error(f"Order {order_id} transition '{trigger.value}' failed in store: {e}")
            raise TransientFailureError("Order status could not be updated, please retry")

        logger.info(
            f"Order {order_id}: {transition.from_status.value} -> {transition.to_status.value} "
            f"({trigger.value}{', restocked' if restocked else ''})"
        )
        return TransitionResult(
            order_id=order_id,
            previous_status=transition.from_status,
            new_status=transition.to_status,
            trigger=trigger,
            restocked=restocked,
        )

    # ── Reads ───────────────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Order | None:
        async with self._database.session() as session:
            res = await session.execute(select(Order).where(Order.id == order_id))
            return res.scalar_one_or_none()

    async def list_orders(
        self,
        *,
        user_id: str | None = None,
        status: str | None = None,
        order_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        """Orders newest first, with the unpaginated total."""
        conditions = []
        if user_id:
            conditions.append(Order.user_id == user_id)
        if status:
            conditions.append(Order.status == status)
        if order_type:
            conditions.append(Order.type == order_type)

        async with self._database.session() as session:
            total = await session.scalar(select(func.count(Order.id)).where(*conditions))
            res = await session.execute(
                select(Order)
                .where(*conditions)
                .order_by(Order.created_at.desc(), Order.id)
                .limit(limit)
                .offset(offset)
            )
            return list(res.scalars().all()), int(total or 0)

    async def get_status_history(self, order_id: str) -> list[OrderStatusHistory]:
        async with self._database.session() as session:
            res = await session.execute(
                select(OrderStatusHistory)
                .where(OrderStatusHistory.order_id == order_id)
                .order_by(OrderStatusHistory.id)
            )
            return list(res.scalars().all())

    async def order_stats(self) -> dict[str, int]:
        """Order count per status (every status present, zero when unused)."""
        async with self._database.session() as session:
            res = await session.execute(
                select(Order.status, func.count(Order.id)).group_by(Order.status)
            )
            counts = {status: count for status, count in res.all()}
        return {s.value: int(counts.get(s.value, 0)) for s in OrderStatus}

    # ── Payment event ledger ────────────────────────────────────────

    async def is_event_processed(self, event_id: str) -> bool:
        async with self._database.session() as session:
            found = await session.scalar(
                select(ProcessedPaymentEvent.id).where(ProcessedPaymentEvent.event_id == event_id)
            )
            return found is not None

    async def record_event(
        self,
        event: LedgerEvent,
        *,
        order_id: str | None,
        outcome: LedgerOutcome,
    ) -> bool:
        """
        Insert a ledger row for an event that did not change any order.

        Returns:
            False when the event id was already recorded (first writer wins)
        """
        try:
            async with self._database.session() as session:
                async with session.begin():
                    session.add(
                        ProcessedPaymentEvent(
                            event_id=event.id,
                            event_type=event.type,
                            order_id=order_id,
                            outcome=outcome.value,
                            processed_at=_utcnow(),
                        )
                    )
        except IntegrityError:
            logger.info(f"Payment event {event.id} already in ledger")
            return False
        except OperationalError as e:
            logger.error(f"Recording payment event {event.id} failed in store: {e}")
            raise TransientFailureError("Payment event could not be recorded, please retry")
        return True
