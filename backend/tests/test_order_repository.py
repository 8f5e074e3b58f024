"""
Tests for the order repository.

Tests: atomic creation with conditional stock decrement, rollback on
shortage, compare-and-swap transitions, compensating restock, history,
listing/stats, and the payment event ledger.
"""
import asyncio
import sqlite3
import uuid
import pytest
from contextlib import closing
from decimal import Decimal

from sqlalchemy import func, select

from db_models import Order, OrderItem, OrderStatusHistory, ProcessedPaymentEvent
from domain.enums import LedgerOutcome, OrderStatus, WorkflowTrigger
from domain.errors import (
    AlreadyTerminalError,
    ConcurrentModificationError,
    DuplicateEventError,
    InsufficientStockError,
    NotFoundError,
    OrderNumberConflictError,
    WorkflowInvalidStateError,
)
from services import order_repository
from services.calculation_service import compute_totals
from services.enrichment_service import EnrichedItem
from services.order_repository import LedgerEvent, NewOrder, OrderRepository
from tests.helpers import add_product, stock_of


def enriched(product, quantity: int) -> EnrichedItem:
    price = Decimal(str(product.price))
    return EnrichedItem(
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        unit_price=price,
        total_price=(price * quantity).quantize(Decimal("0.01")),
        currency=product.currency,
    )


def new_order(items, user_id: str = "user-alice") -> NewOrder:
    order_id = str(uuid.uuid4())
    return NewOrder(
        id=order_id,
        order_number=f"ORD-{order_id[:8].upper()}",
        user_id=user_id,
        type="buy",
        currency="CHF",
        totals=compute_totals(items),
    )


async def count(database, model) -> int:
    async with database.session() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def place(repository, product, quantity=1, user_id="user-alice") -> Order:
    items = [enriched(product, quantity)]
    return await repository.create_order(new_order(items, user_id), items)


class TestCreateOrder:

    @pytest.mark.asyncio
    async def test_persists_order_items_and_decrements_stock(self, database, repository, gold_bar):
        items = [enriched(gold_bar, 2)]
        draft = new_order(items)

        order = await repository.create_order(draft, items)

        assert order.id == draft.id
        assert order.status == OrderStatus.PENDING.value
        assert order.total == Decimal("1022.96")
        assert [i.quantity for i in order.items] == [2]
        assert await stock_of(database, gold_bar.id) == 8

        stored = await repository.get_order(order.id)
        assert stored.order_number == draft.order_number
        assert stored.items[0].product_name == "Gold Bar 1oz"
        assert stored.items[0].line_number == 1

        history = await repository.get_status_history(order.id)
        assert [(h.from_status, h.to_status, h.trigger) for h in history] == [
            (None, "pending", "create"),
        ]

    @pytest.mark.asyncio
    async def test_shortage_rolls_back_everything(self, database, repository, gold_bar, silver_coin):
        """Second item short → no order, no items, first item's stock untouched."""
        items = [enriched(silver_coin, 5), enriched(gold_bar, 11)]

        with pytest.raises(InsufficientStockError) as exc:
            await repository.create_order(new_order(items), items)

        assert exc.value.product_id == gold_bar.id
        assert exc.value.details == {"product_id": gold_bar.id, "available": 10, "requested": 11}
        assert await stock_of(database, silver_coin.id) == 100
        assert await stock_of(database, gold_bar.id) == 10
        assert await count(database, Order) == 0
        assert await count(database, OrderItem) == 0
        assert await count(database, OrderStatusHistory) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_concurrent_orders_never_oversell(self, file_database):
        """Stock 1, two concurrent orders → exactly one succeeds."""
        repository = OrderRepository(file_database)
        product = await add_product(file_database, stock_quantity=1)

        results = await asyncio.gather(
            place(repository, product, user_id="user-a"),
            place(repository, product, user_id="user-b"),
            return_exceptions=True,
        )

        placed = [r for r in results if isinstance(r, Order)]
        rejected = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(placed) == 1
        assert len(rejected) == 1
        assert rejected[0].details["available"] == 0
        assert await stock_of(file_database, product.id) == 0
        assert await count(file_database, Order) == 1

    @pytest.mark.asyncio
    async def test_taken_order_number_is_conflict(self, database, repository, gold_bar):
        first = await place(repository, gold_bar)
        items = [enriched(gold_bar, 1)]
        clash = NewOrder(
            id=str(uuid.uuid4()),
            order_number=first.order_number,
            user_id="user-bob",
            type="buy",
            currency="CHF",
            totals=compute_totals(items),
        )

        with pytest.raises(OrderNumberConflictError) as exc:
            await repository.create_order(clash, items)

        assert exc.value.details == {"order_number": first.order_number}
        assert await count(database, Order) == 1
        assert await stock_of(database, gold_bar.id) == 9


class TestTransitionStatus:

    @pytest.mark.asyncio
    async def test_applies_and_records_history(self, repository, gold_bar):
        order = await place(repository, gold_bar)

        result = await repository.transition_status(
            order.id, WorkflowTrigger.PROCESS, actor_id="admin-carol", privileged=True
        )

        assert result.previous_status == OrderStatus.PENDING
        assert result.new_status == OrderStatus.CONFIRMED
        assert (await repository.get_order(order.id)).status == "confirmed"

        history = await repository.get_status_history(order.id)
        assert history[-1].from_status == "pending"
        assert history[-1].to_status == "confirmed"
        assert history[-1].actor_id == "admin-carol"

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_status(self, repository, gold_bar):
        order = await place(repository, gold_bar)
        for _ in range(5):
            await repository.transition_status(order.id, "process", privileged=True)

        with pytest.raises(WorkflowInvalidStateError):
            await repository.transition_status(order.id, "process", privileged=True)

        assert (await repository.get_order(order.id)).status == "completed"
        assert len(await repository.get_status_history(order.id)) == 6

    @pytest.mark.asyncio
    async def test_unknown_order(self, repository):
        with pytest.raises(NotFoundError):
            await repository.transition_status(str(uuid.uuid4()), "process", privileged=True)

    @pytest.mark.asyncio
    async def test_expected_status_mismatch(self, repository, gold_bar):
        order = await place(repository, gold_bar)
        await repository.transition_status(order.id, "process", privileged=True)

        with pytest.raises(ConcurrentModificationError) as exc:
            await repository.transition_status(
                order.id, "cancel", privileged=True, expected_status=OrderStatus.PENDING
            )
        assert exc.value.details["actual_status"] == "confirmed"
        assert (await repository.get_order(order.id)).status == "confirmed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_status_changed_after_read_is_not_overwritten(self, file_database, monkeypatch):
        """Another writer commits between the status read and the conditional update."""
        repository = OrderRepository(file_database)
        product = await add_product(file_database)
        order = await place(repository, product)
        path = file_database.engine.url.database
        evaluate = order_repository.apply_trigger

        def apply_after_other_writer(current, trigger, **kwargs):
            with closing(sqlite3.connect(path)) as conn, conn:
                conn.execute("UPDATE orders SET status = 'cancelled' WHERE id = ?", (order.id,))
            return evaluate(current, trigger, **kwargs)

        monkeypatch.setattr(order_repository, "apply_trigger", apply_after_other_writer)

        with pytest.raises(ConcurrentModificationError) as exc:
            await repository.transition_status(order.id, "process", privileged=True)

        assert exc.value.details["expected_status"] == "pending"
        assert (await repository.get_order(order.id)).status == "cancelled"
        history = await repository.get_status_history(order.id)
        assert [h.to_status for h in history] == ["pending"]

    @pytest.mark.asyncio
    async def test_cancel_restocks(self, database, repository, gold_bar):
        order = await place(repository, gold_bar, quantity=3)
        assert await stock_of(database, gold_bar.id) == 7

        result = await repository.transition_status(order.id, "cancel", actor_id="user-alice")

        assert result.new_status == OrderStatus.CANCELLED
        assert result.restocked is True
        assert await stock_of(database, gold_bar.id) == 10

    @pytest.mark.asyncio
    async def test_cancel_after_shipping_keeps_stock(self, database, repository, gold_bar):
        order = await place(repository, gold_bar, quantity=3)
        for _ in range(3):
            await repository.transition_status(order.id, "process", privileged=True)

        result = await repository.transition_status(order.id, "cancel", privileged=True)

        assert result.restocked is False
        assert await stock_of(database, gold_bar.id) == 7

    @pytest.mark.asyncio
    async def test_cancel_twice_is_already_terminal(self, database, repository, gold_bar):
        order = await place(repository, gold_bar, quantity=3)
        await repository.transition_status(order.id, "cancel")

        with pytest.raises(AlreadyTerminalError):
            await repository.transition_status(order.id, "cancel", privileged=True)
        assert await stock_of(database, gold_bar.id) == 10

    @pytest.mark.asyncio
    async def test_event_written_with_transition(self, database, repository, gold_bar):
        order = await place(repository, gold_bar)
        event = LedgerEvent(id="evt_1", type="payment_intent.succeeded")

        await repository.transition_status(order.id, WorkflowTrigger.PAYMENT_SUCCEEDED, event=event)

        assert await repository.is_event_processed("evt_1")
        history = await repository.get_status_history(order.id)
        assert history[-1].event_id == "evt_1"

    @pytest.mark.asyncio
    async def test_duplicate_event_rolls_back_transition(self, database, repository, gold_bar):
        first = await place(repository, gold_bar)
        second = await place(repository, gold_bar)
        event = LedgerEvent(id="evt_1", type="payment_intent.succeeded")
        await repository.transition_status(first.id, "payment_succeeded", event=event)

        with pytest.raises(DuplicateEventError):
            await repository.transition_status(second.id, "payment_succeeded", event=event)

        assert (await repository.get_order(second.id)).status == "pending"
        assert len(await repository.get_status_history(second.id)) == 1
        assert await count(database, ProcessedPaymentEvent) == 1


class TestReads:

    @pytest.mark.asyncio
    async def test_list_filters_and_paginates(self, repository, gold_bar):
        mine = [await place(repository, gold_bar, user_id="user-alice") for _ in range(3)]
        await place(repository, gold_bar, user_id="user-bob")
        await repository.transition_status(mine[0].id, "cancel")

        orders, total = await repository.list_orders(user_id="user-alice", limit=2)
        assert total == 3
        assert len(orders) == 2
        assert all(o.user_id == "user-alice" for o in orders)

        cancelled, total = await repository.list_orders(status="cancelled")
        assert total == 1
        assert cancelled[0].id == mine[0].id

        everything, total = await repository.list_orders(limit=10, offset=3)
        assert total == 4
        assert len(everything) == 1

    @pytest.mark.asyncio
    async def test_stats_cover_every_status(self, repository, gold_bar):
        order = await place(repository, gold_bar)
        await place(repository, gold_bar)
        await repository.transition_status(order.id, "process", privileged=True)

        stats = await repository.order_stats()

        assert stats["pending"] == 1
        assert stats["confirmed"] == 1
        assert stats["completed"] == 0
        assert set(stats) == {s.value for s in OrderStatus}


class TestLedger:

    @pytest.mark.asyncio
    async def test_record_event_is_idempotent(self, database, repository):
        event = LedgerEvent(id="evt_9", type="payment_intent.payment_failed")

        assert await repository.record_event(event, order_id=None, outcome=LedgerOutcome.REJECTED) is True
        assert await repository.record_event(event, order_id=None, outcome=LedgerOutcome.REJECTED) is False
        assert await repository.is_event_processed("evt_9")
        assert await count(database, ProcessedPaymentEvent) == 1

    @pytest.mark.asyncio
    async def test_unknown_event_not_processed(self, repository):
        assert await repository.is_event_processed("evt_unknown") is False
