"""
Typed Exception Hierarchy for the MES Production Kernel.

===============================================================================
ERROR KINDS
===============================================================================

Every kernel error belongs to exactly one ErrorKind.  Public service
operations never let these exceptions escape: they catch them, roll back the
unit of work, and return an ``OperationResult`` whose ``error.kind`` callers
pattern-match on.  Internal primitives (the pieces the confirmation engine
composes inside one transaction) raise them directly.

    Kind                  | Meaning
    ----------------------|---------------------------------------------------
    NOT_FOUND             | Referenced entity does not exist (id included)
    INVALID_STATE         | Entity status forbids the request (status named)
    INSUFFICIENT_QUANTITY | Requested > available (both amounts included)
    VALIDATION_FAILURE    | Malformed input (bad quantity, blank reason, ...)
    CONFLICT              | Duplicate allocation, duplicate batch number
    ON_HOLD               | An ACTIVE hold blocks the entity

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    MesKernelError (base)
    |
    +-- NotFoundError
    |   +-- OperationNotFoundError
    |   +-- ProcessNotFoundError
    |   +-- OrderLineNotFoundError
    |   +-- BatchNotFoundError
    |   +-- InventoryNotFoundError
    |   +-- AllocationNotFoundError
    |   +-- ConfirmationNotFoundError
    |   +-- HoldNotFoundError
    |
    +-- InvalidStateError
    |   +-- OperationNotExecutableError
    |   +-- InvalidStateTransitionError
    |   +-- InvalidBatchStateError
    |   +-- InventoryNotConsumableError
    |   +-- ProcessNotActiveError
    |   +-- AllocationNotActiveError
    |   +-- ConfirmationAlreadyRejectedError
    |   +-- HoldAlreadyReleasedError
    |
    +-- ImmutabilityViolationError   (kind INVALID_STATE)
    |
    +-- InsufficientQuantityError
    |   +-- InsufficientBatchQuantityError
    |   +-- InsufficientInventoryQuantityError
    |
    +-- ValidationFailureError
    |   +-- InvalidQuantityError
    |   +-- BlankReasonError
    |   +-- EmptyPortionListError
    |   +-- DuplicateBatchIdsError
    |   +-- MergeMismatchError
    |   +-- UnknownValueError
    |
    +-- ConflictError
    |   +-- DuplicateAllocationError
    |   +-- DuplicateBatchNumberError
    |   +-- RoutingAlreadyExistsError
    |
    +-- OnHoldError
        +-- EntityOnHoldError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ``code`` and ``kind`` are CLASS attributes: static per exception type,
   readable without instantiation.

2. All context is stored as attributes (ids, statuses, available/requested
   quantities).  ``OperationError.from_exception`` copies them into the
   result's ``details`` and the structured log formatter emits them as
   ``exc_*`` fields.

3. Messages are operator-facing and embed the offending id and/or the
   available vs. requested amounts, so no caller needs to reformat them.

===============================================================================
"""

from decimal import Decimal
from enum import Enum

from mes_kernel.domain.quantities import format_quantity


def _text(value) -> str:
    """Plain text for statuses that may arrive as Enum members."""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class ErrorKind(str, Enum):
    """Caller-facing error taxonomy."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    INSUFFICIENT_QUANTITY = "INSUFFICIENT_QUANTITY"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    CONFLICT = "CONFLICT"
    ON_HOLD = "ON_HOLD"


class MesKernelError(Exception):
    """
    Base exception for all MES kernel errors.

    All subclasses carry a machine-readable ``code`` and an ``ErrorKind``.
    """

    code: str = "MES_KERNEL_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION_FAILURE


# Not found


class NotFoundError(MesKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND
    entity_type: str = "Entity"

    def __init__(self, entity_id):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class OperationNotFoundError(NotFoundError):
    code: str = "OPERATION_NOT_FOUND"
    entity_type = "Operation"


class ProcessNotFoundError(NotFoundError):
    code: str = "PROCESS_NOT_FOUND"
    entity_type = "Process"


class OrderLineNotFoundError(NotFoundError):
    code: str = "ORDER_LINE_NOT_FOUND"
    entity_type = "Order line"


class BatchNotFoundError(NotFoundError):
    code: str = "BATCH_NOT_FOUND"
    entity_type = "Batch"


class InventoryNotFoundError(NotFoundError):
    code: str = "INVENTORY_NOT_FOUND"
    entity_type = "Inventory"


class AllocationNotFoundError(NotFoundError):
    code: str = "ALLOCATION_NOT_FOUND"
    entity_type = "Allocation"


class ConfirmationNotFoundError(NotFoundError):
    code: str = "CONFIRMATION_NOT_FOUND"
    entity_type = "Production confirmation"


class HoldNotFoundError(NotFoundError):
    code: str = "HOLD_NOT_FOUND"
    entity_type = "Hold"


# Invalid state


class InvalidStateError(MesKernelError):
    """
    Entity exists but its status forbids the requested action.

    The message always names the current status.
    """

    code: str = "INVALID_STATE"
    kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(
        self,
        entity_type: str,
        entity_id,
        current_status: str,
        action: str,
        detail: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_status = _text(current_status)
        self.action = action
        message = (
            f"Cannot {action} {entity_type} {entity_id}: "
            f"current status is {self.current_status}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class OperationNotExecutableError(InvalidStateError):
    """Operation is not READY or IN_PROGRESS."""

    code: str = "OPERATION_NOT_EXECUTABLE"

    def __init__(self, operation_id, current_status: str):
        super().__init__(
            "operation",
            operation_id,
            current_status,
            "confirm production for",
            "expected READY or IN_PROGRESS",
        )


class InvalidStateTransitionError(InvalidStateError):
    """A state machine refused the transition."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, entity_type: str, entity_id, from_status: str, to_status: str):
        self.to_status = _text(to_status)
        super().__init__(
            entity_type,
            entity_id,
            from_status,
            f"move to {self.to_status}",
        )


class InvalidBatchStateError(InvalidStateError):
    code: str = "INVALID_BATCH_STATE"

    def __init__(self, batch_id, current_status: str, action: str, allowed=None):
        self.allowed_statuses = sorted(_text(s) for s in allowed) if allowed else []
        detail = (
            f"allowed: {', '.join(self.allowed_statuses)}"
            if self.allowed_statuses
            else None
        )
        super().__init__("batch", batch_id, current_status, action, detail)


class InventoryNotConsumableError(InvalidStateError):
    code: str = "INVENTORY_NOT_CONSUMABLE"

    def __init__(self, inventory_id, current_state: str, detail: str | None = None):
        super().__init__("inventory", inventory_id, current_state, "consume", detail)


class ProcessNotActiveError(InvalidStateError):
    code: str = "PROCESS_NOT_ACTIVE"

    def __init__(self, process_id, current_status: str):
        super().__init__(
            "process", process_id, current_status, "run operations of", "expected ACTIVE"
        )


class AllocationNotActiveError(InvalidStateError):
    code: str = "ALLOCATION_NOT_ACTIVE"

    def __init__(self, allocation_id, current_status: str, action: str):
        super().__init__("allocation", allocation_id, current_status, action)


class ConfirmationAlreadyRejectedError(InvalidStateError):
    code: str = "CONFIRMATION_ALREADY_REJECTED"

    def __init__(self, confirmation_id):
        super().__init__("confirmation", confirmation_id, "REJECTED", "reject")


class HoldAlreadyReleasedError(InvalidStateError):
    code: str = "HOLD_ALREADY_RELEASED"

    def __init__(self, hold_id):
        super().__init__("hold", hold_id, "RELEASED", "release")


class ImmutabilityViolationError(MesKernelError):
    """Attempted to modify or delete an append-only or frozen record."""

    code: str = "IMMUTABILITY_VIOLATION"
    kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(self, entity_type: str, entity_id, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Insufficient quantity


class InsufficientQuantityError(MesKernelError):
    """Requested quantity exceeds what is available."""

    code: str = "INSUFFICIENT_QUANTITY"
    kind: ErrorKind = ErrorKind.INSUFFICIENT_QUANTITY
    subject: str = "quantity"

    def __init__(self, entity_id, available: Decimal, requested: Decimal):
        self.entity_id = str(entity_id)
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient {self.subject}. "
            f"Available: {format_quantity(available)}, "
            f"Requested: {format_quantity(requested)} ({entity_id})"
        )


class InsufficientBatchQuantityError(InsufficientQuantityError):
    code: str = "INSUFFICIENT_BATCH_QUANTITY"
    subject = "batch quantity"


class InsufficientInventoryQuantityError(InsufficientQuantityError):
    code: str = "INSUFFICIENT_INVENTORY_QUANTITY"
    subject = "inventory quantity"


# Validation


class ValidationFailureError(MesKernelError):
    """Malformed input."""

    code: str = "VALIDATION_FAILURE"
    kind: ErrorKind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidQuantityError(ValidationFailureError):
    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value, requirement: str = "must be greater than zero"):
        self.value = value
        super().__init__(field, f"{value} {requirement}")


class BlankReasonError(ValidationFailureError):
    code: str = "BLANK_REASON"

    def __init__(self, field: str = "reason"):
        super().__init__(field, "a non-blank value is required")


class EmptyPortionListError(ValidationFailureError):
    code: str = "EMPTY_PORTION_LIST"

    def __init__(self):
        super().__init__("portions", "at least one portion is required")


class DuplicateBatchIdsError(ValidationFailureError):
    code: str = "DUPLICATE_BATCH_IDS"

    def __init__(self, duplicate_ids):
        self.duplicate_ids = sorted(str(i) for i in duplicate_ids)
        super().__init__(
            "source_batch_ids", f"duplicate ids {', '.join(self.duplicate_ids)}"
        )


class MergeMismatchError(ValidationFailureError):
    code: str = "MERGE_MISMATCH"

    def __init__(self, attribute: str, values):
        self.attribute = attribute
        self.values = sorted(_text(v) for v in values)
        super().__init__(
            attribute,
            f"all merged batches must share the same {attribute}, "
            f"got {', '.join(self.values)}",
        )


class UnknownValueError(ValidationFailureError):
    code: str = "UNKNOWN_VALUE"

    def __init__(self, field: str, value, allowed):
        self.value = value
        self.allowed = sorted(_text(a) for a in allowed)
        super().__init__(field, f"{value!r} is not one of {', '.join(self.allowed)}")


# Conflict


class ConflictError(MesKernelError):
    code: str = "CONFLICT"
    kind: ErrorKind = ErrorKind.CONFLICT


class DuplicateAllocationError(ConflictError):
    code: str = "DUPLICATE_ALLOCATION"

    def __init__(self, batch_id, order_line_id, allocation_id):
        self.batch_id = str(batch_id)
        self.order_line_id = str(order_line_id)
        self.allocation_id = str(allocation_id)
        super().__init__(
            f"Batch {batch_id} already has an active allocation "
            f"{allocation_id} for order line {order_line_id}"
        )


class DuplicateBatchNumberError(ConflictError):
    code: str = "DUPLICATE_BATCH_NUMBER"

    def __init__(self, batch_number: str):
        self.batch_number = batch_number
        super().__init__(f"Batch number already exists: {batch_number}")


class RoutingAlreadyExistsError(ConflictError):
    code: str = "ROUTING_ALREADY_EXISTS"

    def __init__(self, order_line_id, operation_count: int):
        self.order_line_id = str(order_line_id)
        self.operation_count = operation_count
        super().__init__(
            f"Order line {order_line_id} already has {operation_count} routed operations"
        )


# Holds


class OnHoldError(MesKernelError):
    code: str = "ON_HOLD"
    kind: ErrorKind = ErrorKind.ON_HOLD


class EntityOnHoldError(OnHoldError):
    code: str = "ENTITY_ON_HOLD"

    def __init__(self, entity_type: str, entity_id, hold_id, reason: str | None):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.hold_id = str(hold_id)
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} is on hold (hold {hold_id}: {reason or 'no reason given'})"
        )
