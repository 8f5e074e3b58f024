"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the exception handlers
in main.py. Each carries a stable machine code, a user-facing message and a
details dict with the context needed to render a precise message.

Retry semantics:
    InvalidInputError, catalog rejections, workflow rejections — not retryable as-is
    ConcurrentModificationError — re-read and retry once
    TransientFailureError — retry with backoff
    InvalidSignatureError — never retried, always rejected
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    code = "domain_error"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: dict | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class InvalidInputError(DomainError):
    """Malformed request (400)."""
    code = "invalid_input"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class NotFoundError(DomainError):
    """Resource not found (404)."""
    code = "not_found"

    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ProductNotFoundError(NotFoundError):
    code = "product_not_found"

    def __init__(self, product_id: str):
        super().__init__("Product", product_id, details={"product_id": product_id})


class OutOfStockError(DomainError):
    """Product flagged as not in stock by the catalog (409)."""
    code = "out_of_stock"

    def __init__(self, product_id: str, product_name: str):
        super().__init__(
            f"{product_name} is currently out of stock",
            status_code=status.HTTP_409_CONFLICT,
            details={"product_id": product_id},
        )


class InsufficientStockError(DomainError):
    """Requested quantity exceeds remaining stock (409)."""
    code = "insufficient_stock"

    def __init__(self, product_id: str, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, requested: {requested}",
            status_code=status.HTTP_409_CONFLICT,
            details={"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id


class BelowMinimumOrderError(DomainError):
    """Requested quantity below the product's minimum order quantity (422)."""
    code = "below_minimum_order"

    def __init__(self, product_id: str, product_name: str, minimum: int, requested: int):
        super().__init__(
            f"Minimum order quantity for {product_name} is {minimum}, requested: {requested}",
            status_code=422,
            details={"product_id": product_id, "minimum": minimum, "requested": requested},
        )


class WorkflowInvalidStateError(DomainError):
    """Trigger not valid from the order's current status (409)."""
    code = "workflow_invalid_state"

    def __init__(self, current_status: str, trigger: str, message: str | None = None):
        super().__init__(
            message or f"Cannot apply '{trigger}' to an order in status '{current_status}'",
            status_code=status.HTTP_409_CONFLICT,
            details={"current_status": current_status, "trigger": trigger},
        )
        self.current_status = current_status
        self.trigger = trigger


class AlreadyTerminalError(WorkflowInvalidStateError):
    """Order already completed or cancelled (409)."""
    code = "already_terminal"

    def __init__(self, current_status: str, trigger: str):
        super().__init__(
            current_status,
            trigger,
            message=f"Order is already {current_status} and cannot be changed",
        )


class ConcurrentModificationError(DomainError):
    """Another writer changed the order first (409)."""
    code = "concurrent_modification"

    def __init__(self, order_id: str, expected_status: str | None = None, actual_status: str | None = None):
        super().__init__(
            f"Order {order_id} was modified concurrently; re-read and retry",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "order_id": order_id,
                "expected_status": expected_status,
                "actual_status": actual_status,
            },
        )


class DuplicateEventError(DomainError):
    """Payment event id already present in the ledger (409)."""
    code = "duplicate_event"

    def __init__(self, event_id: str):
        super().__init__(
            f"Payment event already processed: {event_id}",
            status_code=status.HTTP_409_CONFLICT,
            details={"event_id": event_id},
        )


class InvalidSignatureError(DomainError):
    """Webhook signature verification failed (400)."""
    code = "invalid_signature"

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST)


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    code = "forbidden"

    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class RateLimitError(DomainError):
    """Rate limit exceeded (429)."""
    code = "rate_limited"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: dict | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(
            message, status_code=status.HTTP_429_TOO_MANY_REQUESTS, details=details, headers=headers
        )


class TransientFailureError(DomainError):
    """Store or upstream I/O failure; safe to retry with backoff (503)."""
    code = "transient_failure"

    def __init__(self, message: str = "Temporary failure, please retry", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class OrderNumberConflictError(DomainError):
    """Generated order number already taken; retry with a fresh id (409)."""
    code = "order_number_conflict"

    def __init__(self, order_number: str):
        super().__init__(
            f"Order number already in use: {order_number}",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_number": order_number},
        )
