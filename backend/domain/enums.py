"""
Domain enums — closed value sets for order type, status, workflow triggers and roles.
"""

from enum import Enum


class OrderType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    REQUIRES_ACTION = "requires_action"


class WorkflowTrigger(str, Enum):
    CREATE = "create"
    PROCESS = "process"
    CANCEL = "cancel"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"
    PAYMENT_REQUIRES_ACTION = "payment_requires_action"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"


class LedgerOutcome(str, Enum):
    """Outcome stored with a processed payment event."""
    APPLIED = "applied"
    REJECTED = "rejected"
