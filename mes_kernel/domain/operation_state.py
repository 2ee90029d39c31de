"""
OperationStateMachine -- pure transition rules for routing operations.

Responsibility:
    Decides which operation status transitions are legal, whether a
    confirmation is partial or full, and which operation becomes READY when
    its predecessor is confirmed.  Persistence lives in
    ``mes_kernel.services.operation_service``; this module only decides.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - CONFIRMED is terminal.
    - BLOCKED is reachable from every non-terminal, non-blocked status and
      unblock returns to the status held before the block.
    - ``confirmed_qty`` only grows: ``resolve_confirmation`` adds the
      produced quantity, it never subtracts.
    - "Progress to next" readies exactly one NOT_STARTED operation (the
      first one after the confirmed step by sequence number) or none.

Failure modes:
    - InvalidStateTransitionError from ``validate_transition``.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol, TypeVar

from mes_kernel.domain.quantities import ZERO
from mes_kernel.domain.statuses import ConfirmationStatus, OperationStatus
from mes_kernel.exceptions import InvalidStateTransitionError

S = OperationStatus

TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    S.NOT_STARTED: frozenset({S.READY, S.BLOCKED}),
    S.READY: frozenset({S.IN_PROGRESS, S.PARTIALLY_CONFIRMED, S.CONFIRMED, S.BLOCKED}),
    S.IN_PROGRESS: frozenset({S.PARTIALLY_CONFIRMED, S.CONFIRMED, S.BLOCKED}),
    S.PARTIALLY_CONFIRMED: frozenset({S.IN_PROGRESS, S.CONFIRMED, S.BLOCKED}),
    S.BLOCKED: frozenset({S.NOT_STARTED, S.READY, S.IN_PROGRESS, S.PARTIALLY_CONFIRMED}),
    S.CONFIRMED: frozenset(),
}

EXECUTABLE_STATUSES = frozenset({S.READY, S.IN_PROGRESS})

BLOCKABLE_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if S.BLOCKED in targets
)


def can_transition(current: OperationStatus | str, target: OperationStatus | str) -> bool:
    return OperationStatus(target) in TRANSITIONS[OperationStatus(current)]


def validate_transition(operation_id, current, target) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransitionError("operation", operation_id, current, target)


def is_executable(status: OperationStatus | str) -> bool:
    """An operation accepts confirmations only while READY or IN_PROGRESS."""
    return OperationStatus(status) in EXECUTABLE_STATUSES


def is_terminal(status: OperationStatus | str) -> bool:
    return not TRANSITIONS[OperationStatus(status)]


@dataclass(frozen=True)
class ConfirmationOutcome:
    """Quantity bookkeeping decided for one confirmation."""

    total_confirmed: Decimal
    is_partial: bool
    remaining_qty: Decimal
    confirmation_status: ConfirmationStatus
    operation_status: OperationStatus


def resolve_confirmation(
    confirmed_qty: Decimal,
    produced_qty: Decimal,
    target_qty: Decimal,
    force_partial: bool = False,
) -> ConfirmationOutcome:
    """
    Decide partial vs. full for a confirmation.

    ``total = confirmed + produced``; the confirmation is partial when the
    caller forces it or when ``total < target``.  A partial confirmation
    leaves the operation IN_PROGRESS; a full one CONFIRMS it.
    """
    total = confirmed_qty + produced_qty
    is_partial = force_partial or total < target_qty
    if is_partial:
        remaining = target_qty - total
        return ConfirmationOutcome(
            total_confirmed=total,
            is_partial=True,
            remaining_qty=remaining if remaining > ZERO else ZERO,
            confirmation_status=ConfirmationStatus.PARTIALLY_CONFIRMED,
            operation_status=OperationStatus.IN_PROGRESS,
        )
    return ConfirmationOutcome(
        total_confirmed=total,
        is_partial=False,
        remaining_qty=ZERO,
        confirmation_status=ConfirmationStatus.CONFIRMED,
        operation_status=OperationStatus.CONFIRMED,
    )


class SequencedOperation(Protocol):
    sequence_number: int
    status: str


O = TypeVar("O", bound=SequencedOperation)


def next_ready_operation(operations: Iterable[O], confirmed_sequence: int) -> O | None:
    """
    Pick the operation to release after ``confirmed_sequence`` is CONFIRMED.

    Scans the order line's operations by sequence number and returns the
    first NOT_STARTED one after the confirmed step, skipping anything in
    another status.  ``None`` means the order line's work is complete.
    """
    for operation in sorted(operations, key=lambda op: op.sequence_number):
        if operation.sequence_number <= confirmed_sequence:
            continue
        if OperationStatus(operation.status) == OperationStatus.NOT_STARTED:
            return operation
    return None


def restore_status_after_unblock(pre_block_status: str | None) -> OperationStatus:
    """Status an operation returns to on unblock (READY when nothing was recorded)."""
    if pre_block_status is None:
        return OperationStatus.READY
    status = OperationStatus(pre_block_status)
    if status in (OperationStatus.BLOCKED, OperationStatus.CONFIRMED):
        return OperationStatus.READY
    return status
