"""
SQLAlchemy ORM models for the Bullion Order Backend.

Tables:
    products                  — catalog rows (owned by the catalog module; read for
                                availability, conditionally decremented at commit time)
    orders                    — customer buy/sell orders
    order_items               — immutable line items with snapshot prices
    order_status_history      — one row per applied workflow transition
    processed_payment_events  — idempotency ledger for payment webhooks
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from database import Base
from domain.enums import OrderStatus, OrderType


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({quoted})"


Money = Numeric(14, 2)


class Product(Base):
    """Catalog product with stock bookkeeping."""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    price = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="CHF")
    stock_quantity = Column(Integer, nullable=False, default=0)
    minimum_order_quantity = Column(Integer, nullable=False, default=1)
    in_stock = Column(Boolean, nullable=False, default=True)  # catalog flag, independent of quantity
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )


class Order(Base):
    """
    A customer order.

    Money columns hold the totals computed at creation time; they are never
    recomputed from live catalog prices.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(20), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    currency = Column(String(3), nullable=False)
    subtotal = Column(Money, nullable=False)
    processing_fee = Column(Money, nullable=False, default=0)
    shipping_fee = Column(Money, nullable=False, default=0)
    insurance_fee = Column(Money, nullable=False, default=0)
    taxes = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False)
    custody_service_id = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)
    updated_at = Column(DateTime, default=_utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.line_number",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_in_list("status", OrderStatus), name="ck_orders_status"),
        CheckConstraint(_in_list("type", OrderType), name="ck_orders_type"),
        # For customer order history: filter by user_id, order by created_at DESC
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class OrderItem(Base):
    """Line item; quantity and unit price are frozen at order creation."""
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    total_price = Column(Money, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_order_item_product"),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price_non_negative"),
    )


class OrderStatusHistory(Base):
    """
    Audit trail of order status changes.

    from_status is NULL for the creation row. event_id links transitions
    driven by payment webhooks back to the processor event.
    """
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    trigger = Column(String(40), nullable=False)
    actor_id = Column(String(64), nullable=True)
    event_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)


class ProcessedPaymentEvent(Base):
    """
    Idempotency ledger for payment processor webhooks.

    Delivery is at-least-once; the unique event_id is the serialization
    point that keeps a duplicate delivery from applying twice.
    """
    __tablename__ = "processed_payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    order_id = Column(String(36), nullable=True, index=True)
    outcome = Column(String(20), nullable=False)  # "applied" | "rejected"
    processed_at = Column(DateTime, default=_utcnow)
