"""
Payment reconciliation — applies processor webhook events to orders.

Events may arrive more than once and in any order. Every event is:
    1. verified (signature + timestamp tolerance), else rejected outright
    2. checked against the processed-event ledger
    3. mapped to a workflow trigger and applied with compare-and-swap,
       the ledger row committed in the same transaction

Business rejections (malformed body, unknown type, no order reference, unknown order,
transition not allowed) are acknowledged as "ignored" so the processor
stops redelivering; only bad signatures are refused.
"""
import logging
from dataclasses import dataclass

from domain.constants import PAYMENT_EVENT_TRIGGERS
from domain.enums import LedgerOutcome, OrderStatus, ReconciliationOutcome, WorkflowTrigger
from domain.errors import (
    ConcurrentModificationError,
    DuplicateEventError,
    InvalidInputError,
    InvalidSignatureError,
    NotFoundError,
    WorkflowInvalidStateError,
)
from services.notification_service import (
    ORDER_STATUS_CHANGED,
    LoggingNotifier,
    Notifier,
    notification_hook,
    run_post_commit,
)
from services.order_repository import LedgerEvent, OrderRepository
from services.payment_gateway import PaymentEvent, parse_event, verify_signature

logger = logging.getLogger(__name__)

# Ignore reasons
DUPLICATE_EVENT = "duplicate_event"
UNHANDLED_EVENT_TYPE = "unhandled_event_type"
NO_ORDER_REFERENCE = "no_order_reference"
ORDER_NOT_FOUND = "order_not_found"
INVALID_TRANSITION = "invalid_transition"
MALFORMED_EVENT = "malformed_event"

_MAX_ATTEMPTS = 2


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    event_id: str | None
    event_type: str | None
    reason: str | None = None
    order_id: str | None = None
    previous_status: OrderStatus | None = None
    new_status: OrderStatus | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == ReconciliationOutcome.APPLIED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "orderId": self.order_id,
            "previousStatus": self.previous_status.value if self.previous_status else None,
            "newStatus": self.new_status.value if self.new_status else None,
        }


def _ignored(event: PaymentEvent, reason: str, order_id: str | None = None) -> ReconciliationResult:
    logger.info(f"Payment event {event.id} ({event.type}) ignored: {reason}")
    return ReconciliationResult(
        outcome=ReconciliationOutcome.IGNORED,
        event_id=event.id,
        event_type=event.type,
        reason=reason,
        order_id=order_id,
    )


class PaymentReconciliationService:
    def __init__(
        self,
        repository: OrderRepository,
        *,
        webhook_secret: str,
        tolerance_seconds: int = 300,
        notifier: Notifier | None = None,
    ):
        self._repository = repository
        self._webhook_secret = webhook_secret
        self._tolerance_seconds = tolerance_seconds
        self._notifier = notifier or LoggingNotifier()

    async def handle_event(self, raw_body: bytes, signature_header: str | None) -> ReconciliationResult:
        """
        Verify and reconcile one webhook delivery.

        Raises:
            InvalidSignatureError: signature missing, wrong, stale, or no secret configured
            ConcurrentModificationError: the order kept changing across the retry
            TransientFailureError: store unavailable

        A correctly signed body that is not a payment event is acknowledged
        as ignored; redelivering it would never succeed.
        """
        try:
            verify_signature(
                raw_body,
                signature_header,
                self._webhook_secret,
                tolerance_seconds=self._tolerance_seconds,
            )
        except InvalidSignatureError as e:
            logger.warning(f"Payment webhook rejected: {e.message}")
            raise

        try:
            event = parse_event(raw_body)
        except InvalidInputError as e:
            logger.error(f"Signed payment webhook could not be parsed, ignoring: {e.message}")
            return ReconciliationResult(
                outcome=ReconciliationOutcome.IGNORED,
                event_id=None,
                event_type=None,
                reason=MALFORMED_EVENT,
            )

        return await self.reconcile(event)

    async def reconcile(self, event: PaymentEvent) -> ReconciliationResult:
        """Apply an already-verified event."""
        if await self._repository.is_event_processed(event.id):
            return _ignored(event, DUPLICATE_EVENT, event.order_id)

        trigger_value = PAYMENT_EVENT_TRIGGERS.get(event.type)
        if trigger_value is None:
            return _ignored(event, UNHANDLED_EVENT_TYPE, event.order_id)
        trigger = WorkflowTrigger(trigger_value)

        if not event.order_id:
            logger.warning(f"Payment event {event.id} ({event.type}) carries no order reference")
            return _ignored(event, NO_ORDER_REFERENCE)

        ledger_event = LedgerEvent(id=event.id, type=event.type)

        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                result = await self._repository.transition_status(
                    event.order_id,
                    trigger,
                    event=ledger_event,
                )
                break
            except NotFoundError:
                return _ignored(event, ORDER_NOT_FOUND, event.order_id)
            except DuplicateEventError:
                return _ignored(event, DUPLICATE_EVENT, event.order_id)
            except ConcurrentModificationError:
                if attempt == _MAX_ATTEMPTS:
                    logger.error(f"Payment event {event.id}: order {event.order_id} kept changing, giving up")
                    raise
                logger.info(f"Payment event {event.id}: order {event.order_id} changed concurrently, retrying")
            except WorkflowInvalidStateError as e:
                # covers AlreadyTerminalError
                recorded = await self._repository.record_event(
                    ledger_event,
                    order_id=event.order_id,
                    outcome=LedgerOutcome.REJECTED,
                )
                if not recorded:
                    return _ignored(event, DUPLICATE_EVENT, event.order_id)
                logger.warning(
                    f"Payment event {event.id} ({event.type}) rejected for order "
                    f"{event.order_id}: {e.message}"
                )
                return _ignored(event, INVALID_TRANSITION, event.order_id)

        await run_post_commit([
            notification_hook(
                self._notifier,
                ORDER_STATUS_CHANGED,
                result.order_id,
                {
                    "previousStatus": result.previous_status.value,
                    "newStatus": result.new_status.value,
                    "eventId": event.id,
                },
            ),
        ])

        logger.info(
            f"Payment event {event.id} ({event.type}) applied to order {result.order_id}: "
            f"{result.previous_status.value} -> {result.new_status.value}"
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.APPLIED,
            event_id=event.id,
            event_type=event.type,
            order_id=result.order_id,
            previous_status=result.previous_status,
            new_status=result.new_status,
        )
