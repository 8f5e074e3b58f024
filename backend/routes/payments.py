"""
Payment processor webhook.

    POST /payments/webhook — signed processor events (payment_intent.*)

Response contract with the processor:
    200 {"received": true, ...}  event accepted (applied, or ignored as a
                                 duplicate / unknown type / invalid transition)
    400 invalid_signature        never retried into success; processor alerts
"""
import logging

from fastapi import APIRouter, Depends, Request

from config import settings
from deps import get_order_service
from models import WebhookAckResponse
from services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    service: OrderService = Depends(get_order_service),
):
    """
    Payment processor webhook callback.

    The raw body is verified before parsing; a re-serialized body would not
    match the signature.
    """
    body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    result = await service.handle_payment_webhook(body, signature)

    return WebhookAckResponse(
        outcome=result.outcome.value,
        reason=result.reason,
        event_id=result.event_id,
        order_id=result.order_id,
    ).to_json()
