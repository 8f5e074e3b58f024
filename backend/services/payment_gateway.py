"""
Payment processor client — webhook signature verification and event parsing.

Signature header format (Stripe-style):

    stripe-signature: t=1700000000,v1=5257a869e7ecebeda32affa62cdca3fa51cad7e77a0e56ff536d0ce8e108d8bd

The signed payload is "{t}.{raw_body}", HMAC-SHA256 with the endpoint secret.
Several v1 entries may be present (secret rotation); any match is accepted.
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from domain.constants import PAYMENT_METADATA_ORDER_KEY
from domain.errors import InvalidInputError, InvalidSignatureError

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"


@dataclass(frozen=True)
class PaymentEvent:
    """A verified processor event."""
    id: str
    type: str
    order_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


def compute_signature(body: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def build_signature_header(body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Produce a header value the processor would send (used by tests and local tooling)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(body, timestamp, secret)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise InvalidSignatureError("Malformed signature timestamp")
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)

    if timestamp is None:
        raise InvalidSignatureError("Signature header has no timestamp")
    if not signatures:
        raise InvalidSignatureError(f"Signature header has no {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


def verify_signature(
    body: bytes,
    header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """
    Verify a webhook signature header against the raw request body.

    FAILS CLOSED: no configured secret means no event is accepted.

    Raises:
        InvalidSignatureError: secret missing, header missing/malformed,
            no matching signature, or timestamp outside tolerance
    """
    if not secret:
        logger.error(
            "PAYMENT_WEBHOOK_SECRET not configured — rejecting webhook. "
            "Set PAYMENT_WEBHOOK_SECRET in .env to accept payment events."
        )
        raise InvalidSignatureError("Webhook secret not configured")

    if not header:
        logger.warning("Payment webhook received without signature header")
        raise InvalidSignatureError("Missing signature header")

    timestamp, signatures = _parse_header(header)

    expected = compute_signature(body, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        logger.warning("Payment webhook signature mismatch")
        raise InvalidSignatureError("No signature matches the payload")

    now = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(now - timestamp) > tolerance_seconds:
        logger.warning(f"Payment webhook timestamp {timestamp} outside {tolerance_seconds}s tolerance")
        raise InvalidSignatureError("Signature timestamp outside the tolerance zone")


def parse_event(body: bytes) -> PaymentEvent:
    """Parse a (verified) event body. Does not check the signature."""
    try:
        payload = json.loads(body)
    except ValueError:
        raise InvalidInputError("Webhook body is not valid JSON")

    if not isinstance(payload, dict) or not payload.get("id") or not payload.get("type"):
        raise InvalidInputError("Webhook body is not a payment event")

    order_id = None
    data = payload.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if isinstance(data_object, dict) and isinstance(data_object.get("metadata"), dict):
        order_id = data_object["metadata"].get(PAYMENT_METADATA_ORDER_KEY)

    return PaymentEvent(
        id=str(payload["id"]),
        type=str(payload["type"]),
        order_id=str(order_id) if order_id else None,
        payload=payload,
    )


def construct_event(
    body: bytes,
    header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> PaymentEvent:
    """Verify the signature, then parse the event."""
    verify_signature(body, header, secret, tolerance_seconds=tolerance_seconds, now=now)
    return parse_event(body)
