"""
Shared FastAPI dependencies.

Routers import from here (service handles, auth guards, pagination) rather
than reaching into app.state themselves.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Query, Request

from services.order_service import OrderService
from middleware.auth import require_actor, require_admin  # noqa: F401  re-exported for routers


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


def get_order_service(request: Request) -> OrderService:
    """The OrderService wired in main.lifespan."""
    return request.app.state.order_service
