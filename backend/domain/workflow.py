"""
Order workflow state machine.

    pending → confirmed → processing → shipped → delivered → completed

    Payment sub-states (reachable only before confirmation):
        pending ⇄ requires_action ⇄ payment_failed

    Terminal: completed, cancelled

Triggers:
    process                  one step along the linear chain (administrators)
    cancel                   customers: pending / payment sub-states only
                             administrators: any non-terminal status
    payment_succeeded        → confirmed
    payment_failed           → payment_failed
    payment_canceled         → cancelled
    payment_requires_action  → requires_action

Everything here is pure. Callers evaluate triggers against the status they
just read from the store and persist with a conditional update.
"""
from dataclasses import dataclass

from domain.enums import OrderStatus, WorkflowTrigger
from domain.errors import AlreadyTerminalError, WorkflowInvalidStateError

LINEAR_CHAIN: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

PAYMENT_SUBSTATES = frozenset({OrderStatus.PAYMENT_FAILED, OrderStatus.REQUIRES_ACTION})

# Statuses a customer may still cancel from
PRE_CONFIRMATION = frozenset({OrderStatus.PENDING}) | PAYMENT_SUBSTATES

_PAYMENT_TARGETS = {
    WorkflowTrigger.PAYMENT_SUCCEEDED: OrderStatus.CONFIRMED,
    WorkflowTrigger.PAYMENT_FAILED: OrderStatus.PAYMENT_FAILED,
    WorkflowTrigger.PAYMENT_CANCELED: OrderStatus.CANCELLED,
    WorkflowTrigger.PAYMENT_REQUIRES_ACTION: OrderStatus.REQUIRES_ACTION,
}


def _build_transitions() -> dict[tuple[OrderStatus, WorkflowTrigger], OrderStatus]:
    table: dict[tuple[OrderStatus, WorkflowTrigger], OrderStatus] = {}

    for current, following in zip(LINEAR_CHAIN, LINEAR_CHAIN[1:]):
        table[(current, WorkflowTrigger.PROCESS)] = following

    for current in PRE_CONFIRMATION:
        for trigger, target in _PAYMENT_TARGETS.items():
            if target != current:
                table[(current, trigger)] = target

    for current in OrderStatus:
        if current not in TERMINAL_STATUSES:
            table[(current, WorkflowTrigger.CANCEL)] = OrderStatus.CANCELLED

    return table


# (from_status, trigger) → to_status
VALID_TRANSITIONS = _build_transitions()


@dataclass(frozen=True)
class Transition:
    from_status: OrderStatus
    to_status: OrderStatus
    trigger: WorkflowTrigger


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def status_rank(status: OrderStatus | str) -> int:
    """
    Position along the linear chain.

    Payment sub-states share the rank of pending; cancelled ranks after
    completed so that a cancellation never reads as a step backwards.
    """
    status = OrderStatus(status)
    if status in PAYMENT_SUBSTATES:
        return 0
    if status == OrderStatus.CANCELLED:
        return len(LINEAR_CHAIN)
    return LINEAR_CHAIN.index(status)


def next_status(
    current: OrderStatus | str,
    trigger: WorkflowTrigger | str,
    *,
    privileged: bool = False,
) -> OrderStatus:
    """
    Evaluate a trigger against the current status.

    Args:
        current: Status as read from the store
        trigger: Workflow trigger to apply
        privileged: True when an administrator is acting (widens `cancel`)

    Returns:
        The status the order moves to

    Raises:
        AlreadyTerminalError: cancel on a completed/cancelled order
        WorkflowInvalidStateError: any other transition not in the table
    """
    current = OrderStatus(current)
    trigger = WorkflowTrigger(trigger)

    if current in TERMINAL_STATUSES:
        if trigger == WorkflowTrigger.CANCEL:
            raise AlreadyTerminalError(current.value, trigger.value)
        if trigger == WorkflowTrigger.PROCESS:
            raise WorkflowInvalidStateError(
                current.value,
                trigger.value,
                message=f"Order is {current.value} and cannot be processed further",
            )
        raise WorkflowInvalidStateError(current.value, trigger.value)

    target = VALID_TRANSITIONS.get((current, trigger))
    if target is None:
        raise WorkflowInvalidStateError(current.value, trigger.value)

    if trigger == WorkflowTrigger.CANCEL and not privileged and current not in PRE_CONFIRMATION:
        raise WorkflowInvalidStateError(
            current.value,
            trigger.value,
            message=(
                f"Cannot cancel order with status '{current.value}'. "
                "Only pending orders can be cancelled by customers."
            ),
        )

    return target


def apply_trigger(
    current: OrderStatus | str,
    trigger: WorkflowTrigger | str,
    *,
    privileged: bool = False,
) -> Transition:
    target = next_status(current, trigger, privileged=privileged)
    return Transition(OrderStatus(current), target, WorkflowTrigger(trigger))


def is_valid_transition(
    from_status: OrderStatus | str,
    to_status: OrderStatus | str,
    trigger: WorkflowTrigger | str,
    *,
    privileged: bool = False,
) -> bool:
    try:
        return next_status(from_status, trigger, privileged=privileged) == OrderStatus(to_status)
    except WorkflowInvalidStateError:
        return False


def allowed_triggers(current: OrderStatus | str, *, privileged: bool = False) -> list[WorkflowTrigger]:
    """Triggers that would succeed from `current`, in declaration order."""
    allowed = []
    for trigger in WorkflowTrigger:
        if trigger == WorkflowTrigger.CREATE:
            continue
        try:
            next_status(current, trigger, privileged=privileged)
        except WorkflowInvalidStateError:
            continue
        allowed.append(trigger)
    return allowed
