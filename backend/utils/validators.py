"""
Input validation utilities for the order API.

Order ids are UUIDs; anything else is rejected before touching the store.
"""
import uuid

from fastapi import Path

from domain.enums import OrderStatus, OrderType
from domain.errors import InvalidInputError


def validate_order_id(order_id: str) -> str:
    """
    Validate an order id format.

    Args:
        order_id: Order id string

    Returns:
        The canonical (lower-case, hyphenated) id

    Raises:
        InvalidInputError(400) if the id is not a UUID
    """
    if not order_id:
        raise InvalidInputError("Order id is required", field="order_id")
    try:
        return str(uuid.UUID(str(order_id)))
    except ValueError:
        raise InvalidInputError(f"Invalid order id: {str(order_id)[:40]}", field="order_id")


def validate_order_type(value: str) -> OrderType:
    """Order type, case-insensitive (`buy` / `sell`)."""
    try:
        return OrderType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in OrderType)
        raise InvalidInputError(f"must be one of: {allowed}", field="type")


def validate_order_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError(f"unknown status '{value}'", field="status")


def validated_order_id(order_id: str = Path(..., description="Order id (UUID)")) -> str:
    """FastAPI dependency for validating order id path parameters."""
    return validate_order_id(order_id)
