"""
Pydantic models for request/response validation.

Field names are snake_case in Python and camelCase on the wire.
Money fields are Decimal and serialize as strings ("1022.96").
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class ApiBase(BaseModel):
    """Shared base — allows construction by Python name or alias, and from ORM rows."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ── Requests ────────────────────────────────────────────────────────

class OrderItemRequest(ApiBase):
    product_id: str = Field(..., alias="productId", min_length=1, max_length=64)
    quantity: int = Field(..., gt=0, description="Units to order (> 0)")


class CreateOrderRequest(ApiBase):
    """Place a buy or sell order."""
    type: str = Field(..., description="'buy' or 'sell' (case-insensitive)")
    items: List[OrderItemRequest] = Field(..., min_length=1)
    custody_service_id: Optional[str] = Field(
        None,
        alias="custodyServiceId",
        max_length=64,
        description="Custody service holding the metal (optional)",
    )
    notes: Optional[str] = Field(None, max_length=1000)


# ── Responses ───────────────────────────────────────────────────────

class OrderItemResponse(ApiBase):
    id: str
    line_number: int = Field(..., alias="lineNumber")
    product_id: str = Field(..., alias="productId")
    product_name: str = Field(..., alias="productName")
    quantity: int
    unit_price: Decimal = Field(..., alias="unitPrice")
    total_price: Decimal = Field(..., alias="totalPrice")


class OrderResponse(ApiBase):
    id: str
    order_number: str = Field(..., alias="orderNumber")
    user_id: str = Field(..., alias="userId")
    type: str
    status: str
    currency: str
    subtotal: Decimal
    processing_fee: Decimal = Field(..., alias="processingFee")
    shipping_fee: Decimal = Field(..., alias="shippingFee")
    insurance_fee: Decimal = Field(..., alias="insuranceFee")
    taxes: Decimal
    total: Decimal
    custody_service_id: Optional[str] = Field(None, alias="custodyServiceId")
    notes: Optional[str] = None
    items: List[OrderItemResponse] = Field(default_factory=list)
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class StatusHistoryResponse(ApiBase):
    from_status: Optional[str] = Field(None, alias="fromStatus")
    to_status: str = Field(..., alias="toStatus")
    trigger: str
    actor_id: Optional[str] = Field(None, alias="actorId")
    event_id: Optional[str] = Field(None, alias="eventId")
    created_at: datetime = Field(..., alias="createdAt")


class TransitionResponse(ApiBase):
    order_id: str = Field(..., alias="orderId")
    previous_status: str = Field(..., alias="previousStatus")
    new_status: str = Field(..., alias="newStatus")


class WebhookAckResponse(ApiBase):
    """Acknowledgement returned to the payment processor."""
    received: bool = True
    outcome: str
    reason: Optional[str] = None
    event_id: Optional[str] = Field(None, alias="eventId")
    order_id: Optional[str] = Field(None, alias="orderId")
