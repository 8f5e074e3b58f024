"""
Domain constants used across services/routers.
"""

# Human-readable order number: ORD-<first 8 hex chars of the id, upper-cased>
ORDER_NUMBER_PREFIX = "ORD-"
ORDER_NUMBER_ID_CHARS = 8

# Payment processor metadata key carrying our order id (set at payment-intent creation)
PAYMENT_METADATA_ORDER_KEY = "orderId"

# Processor event type → workflow trigger value
PAYMENT_EVENT_TRIGGERS = {
    "payment_intent.succeeded": "payment_succeeded",
    "payment_intent.payment_failed": "payment_failed",
    "payment_intent.canceled": "payment_canceled",
    "payment_intent.requires_action": "payment_requires_action",
}

# Monetary rounding tolerance for total consistency checks
TOTAL_TOLERANCE = "0.01"
