"""
Order endpoints — place, read, list, process and cancel orders.

Endpoints:
    POST /orders                   — Place a buy/sell order (rate limited)
    GET  /orders                   — List orders (customers: own; admins: all, filterable)
    GET  /orders/admin/stats       — Order count per status (admin)
    GET  /orders/{order_id}        — Order detail
    GET  /orders/{order_id}/history — Status history
    POST /orders/{order_id}/process — Advance one workflow step (admin)
    POST /orders/{order_id}/cancel  — Cancel (owner while awaiting payment; admin any non-terminal)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from config import settings
from deps import Pagination, get_order_service, pagination_params, require_actor, require_admin
from domain.actor import Actor
from domain.responses import paginated_response, success_response
from middleware.rate_limit import rate_limit
from models import (
    CreateOrderRequest,
    OrderResponse,
    StatusHistoryResponse,
    TransitionResponse,
)
from services.order_service import OrderService
from utils.validators import validated_order_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    body: CreateOrderRequest,
    actor: Actor = Depends(require_actor),
    service: OrderService = Depends(get_order_service),
    _=Depends(rate_limit(settings.order_rate_limit, settings.order_rate_window_seconds)),
):
    """Place an order for the authenticated user. Returns the order with totals."""
    order = await service.create_order(
        actor.user_id,
        body.type,
        [{"product_id": i.product_id, "quantity": i.quantity} for i in body.items],
        custody_service_id=body.custody_service_id,
        notes=body.notes,
    )
    return success_response(OrderResponse.model_validate(order).to_json())


@router.get("")
async def list_orders(
    user_id: Optional[str] = Query(None, alias="userId"),
    order_status: Optional[str] = Query(None, alias="status"),
    order_type: Optional[str] = Query(None, alias="type"),
    page: Pagination = Depends(pagination_params),
    actor: Actor = Depends(require_actor),
    service: OrderService = Depends(get_order_service),
):
    orders, total = await service.list_orders(
        actor,
        user_id=user_id,
        status=order_status,
        order_type=order_type,
        limit=page["limit"],
        offset=page["offset"],
    )
    return paginated_response(
        [OrderResponse.model_validate(o).to_json() for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


# Declared before /{order_id} so "admin" is never parsed as an order id
@router.get("/admin/stats")
async def order_stats(
    actor: Actor = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return success_response(await service.order_stats(actor))


@router.get("/{order_id}")
async def get_order(
    order_id: str = Depends(validated_order_id),
    actor: Actor = Depends(require_actor),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(order_id, actor)
    return success_response(OrderResponse.model_validate(order).to_json())


@router.get("/{order_id}/history")
async def get_order_history(
    order_id: str = Depends(validated_order_id),
    actor: Actor = Depends(require_actor),
    service: OrderService = Depends(get_order_service),
):
    history = await service.get_order_history(order_id, actor)
    return success_response([StatusHistoryResponse.model_validate(h).to_json() for h in history])


@router.post("/{order_id}/process")
async def process_order(
    order_id: str = Depends(validated_order_id),
    actor: Actor = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """Advance the order one step: pending → confirmed → … → completed."""
    result = await service.process_order(order_id, actor)
    return success_response(
        TransitionResponse(
            order_id=result.order_id,
            previous_status=result.previous_status.value,
            new_status=result.new_status.value,
        ).to_json()
    )


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str = Depends(validated_order_id),
    actor: Actor = Depends(require_actor),
    service: OrderService = Depends(get_order_service),
):
    order = await service.cancel_order(order_id, actor)
    return success_response(OrderResponse.model_validate(order).to_json())
