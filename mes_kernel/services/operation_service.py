"""
OperationService -- persistence side of the operation state machine.

Responsibility:
    Instantiates routings for order lines, blocks and unblocks operations
    and releases the next operation when one is confirmed.  Every decision
    is delegated to ``mes_kernel.domain.operation_state``; this module loads,
    locks, writes and audits.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.operation_state``.

Invariants enforced:
    - At most one operation per order line is READY or IN_PROGRESS.
    - Block metadata (reason, actor, timestamp, pre-block status) is set
      together on block and cleared together on unblock.
    - ``progress_to_next`` readies exactly one NOT_STARTED successor or
      none.

Failure modes:
    - NOT_FOUND for unknown operation, order line or process ids.
    - INVALID_STATE when blocking a CONFIRMED/BLOCKED operation, unblocking
      a non-BLOCKED one, or progressing from a non-CONFIRMED one.
    - VALIDATION_FAILURE for blank reasons, empty routings or non-positive
      target quantities.
    - CONFLICT when the order line already has a routing.
"""

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mes_kernel.domain import operation_state
from mes_kernel.domain.clock import Clock
from mes_kernel.domain.dtos import OperationInfo, RoutingStep
from mes_kernel.domain.quantities import ZERO, format_quantity, to_quantity
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import OperationStatus
from mes_kernel.exceptions import (
    BlankReasonError,
    InvalidQuantityError,
    InvalidStateError,
    OperationNotFoundError,
    OrderLineNotFoundError,
    ProcessNotFoundError,
    RoutingAlreadyExistsError,
    ValidationFailureError,
)
from mes_kernel.logging_config import LogContext, get_logger
from mes_kernel.models.process import OperationModel, OrderLineModel, ProcessModel
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService

logger = get_logger("services.operation")


class OperationService(BaseService):
    """Operation state machine persistence."""

    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock=clock, audit=audit, auto_commit=auto_commit)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def lock(self, operation_id: UUID) -> OperationModel:
        operation = self.session.get(OperationModel, operation_id, with_for_update=True)
        if operation is None:
            raise OperationNotFoundError(operation_id)
        return operation

    def transition(self, operation: OperationModel, target: OperationStatus, actor: str) -> None:
        """Move ``operation`` to ``target`` or raise InvalidStateTransitionError."""
        current = OperationStatus(operation.status)
        if current == target:
            return
        operation_state.validate_transition(operation.id, current, target)
        operation.status = target.value
        operation.updated_by = actor
        self.audit.log_status_change("Operation", operation.id, current, target, actor)

    def operations_for_line(self, order_line_id: UUID) -> list[OperationModel]:
        return list(
            self.session.scalars(
                select(OperationModel)
                .where(OperationModel.order_line_id == order_line_id)
                .order_by(OperationModel.sequence_number)
            )
        )

    def release_next(self, operation: OperationModel, actor: str) -> OperationModel | None:
        """
        Ready the successor of a CONFIRMED operation.

        Primitive: raises, never commits.  Returns None when the order
        line has no NOT_STARTED operation left.
        """
        if OperationStatus(operation.status) != OperationStatus.CONFIRMED:
            raise InvalidStateError(
                "operation", operation.id, operation.status, "progress past", "expected CONFIRMED"
            )
        successor = operation_state.next_ready_operation(
            self.operations_for_line(operation.order_line_id), operation.sequence_number
        )
        if successor is None:
            logger.info(
                "routing_complete",
                extra={"order_line_id": str(operation.order_line_id), "operation_id": str(operation.id)},
            )
            return None
        self.transition(successor, OperationStatus.READY, actor)
        logger.info(
            "operation_released",
            extra={
                "operation_id": str(successor.id),
                "sequence_number": successor.sequence_number,
                "after_operation_id": str(operation.id),
            },
        )
        return successor

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_operation(self, operation_id: UUID) -> OperationResult[OperationInfo]:
        def work() -> OperationInfo:
            operation = self.session.get(OperationModel, operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)
            return operation.to_dto()

        return self._execute("operation_get", work, operation_id=str(operation_id))

    def list_operations(self, order_line_id: UUID) -> OperationResult[list[OperationInfo]]:
        def work() -> list[OperationInfo]:
            if self.session.get(OrderLineModel, order_line_id) is None:
                raise OrderLineNotFoundError(order_line_id)
            return [operation.to_dto() for operation in self.operations_for_line(order_line_id)]

        return self._execute("operation_list", work, order_line_id=str(order_line_id))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def instantiate_routing(
        self,
        order_line_id: UUID,
        process_id: UUID,
        steps: Sequence[RoutingStep],
        actor: str | None = None,
    ) -> OperationResult[list[OperationInfo]]:
        """
        Create one operation per routing step for an order line.

        Sequence numbers run 1..n in step order.  The first operation is
        READY, the rest NOT_STARTED.
        """
        actor = self._actor(actor)

        def work() -> list[OperationInfo]:
            order_line = self.session.get(OrderLineModel, order_line_id, with_for_update=True)
            if order_line is None:
                raise OrderLineNotFoundError(order_line_id)
            if self.session.get(ProcessModel, process_id) is None:
                raise ProcessNotFoundError(process_id)
            if not steps:
                raise ValidationFailureError("steps", "a routing needs at least one step")

            existing = self.session.scalar(
                select(func.count())
                .select_from(OperationModel)
                .where(OperationModel.order_line_id == order_line_id)
            )
            if existing:
                raise RoutingAlreadyExistsError(order_line_id, existing)

            operations = []
            for sequence, step in enumerate(steps, start=1):
                if not step.name or not step.name.strip():
                    raise BlankReasonError(f"steps[{sequence}].name")
                if not step.operation_type or not step.operation_type.strip():
                    raise BlankReasonError(f"steps[{sequence}].operation_type")
                target = to_quantity(step.target_qty)
                if target <= ZERO:
                    raise InvalidQuantityError(f"steps[{sequence}].target_qty", format_quantity(target))
                status = OperationStatus.READY if sequence == 1 else OperationStatus.NOT_STARTED
                operation = OperationModel(
                    order_line_id=order_line_id,
                    process_id=process_id,
                    name=step.name.strip(),
                    operation_type=step.operation_type.strip().upper(),
                    sequence_number=sequence,
                    status=status.value,
                    target_qty=target,
                    confirmed_qty=ZERO,
                    created_by=actor,
                )
                self.session.add(operation)
                operations.append(operation)

            self.session.flush()
            for operation in operations:
                self.audit.log_create(
                    "Operation",
                    operation.id,
                    f"Operation {operation.sequence_number} {operation.name} "
                    f"[{operation.operation_type}] for order line {order_line_id}",
                    actor,
                )
            logger.info(
                "routing_instantiated",
                extra={
                    "order_line_id": str(order_line_id),
                    "process_id": str(process_id),
                    "operation_count": len(operations),
                },
            )
            return [operation.to_dto() for operation in operations]

        return self._execute("routing_instantiate", work, order_line_id=str(order_line_id))

    def start_operation(self, operation_id: UUID, actor: str | None = None) -> OperationResult[OperationInfo]:
        """READY -> IN_PROGRESS."""
        actor = self._actor(actor)

        def work() -> OperationInfo:
            operation = self.lock(operation_id)
            if OperationStatus(operation.status) != OperationStatus.READY:
                raise InvalidStateError("operation", operation.id, operation.status, "start")
            self.transition(operation, OperationStatus.IN_PROGRESS, actor)
            self.session.flush()
            return operation.to_dto()

        return self._execute("operation_start", work, operation_id=str(operation_id))

    def block_operation(
        self,
        operation_id: UUID,
        reason: str,
        actor: str | None = None,
    ) -> OperationResult[OperationInfo]:
        """Block a non-terminal operation, remembering where it was."""
        actor = self._actor(actor)

        def work() -> OperationInfo:
            if not reason or not reason.strip():
                raise BlankReasonError()
            operation = self.lock(operation_id)
            current = OperationStatus(operation.status)
            if current not in operation_state.BLOCKABLE_STATUSES:
                raise InvalidStateError("operation", operation.id, current, "block")

            self.transition(operation, OperationStatus.BLOCKED, actor)
            operation.pre_block_status = current.value
            operation.block_reason = reason.strip()
            operation.blocked_by = actor
            operation.blocked_at = self.clock.now()
            self.session.flush()
            logger.info(
                "operation_blocked",
                extra={
                    "operation_id": str(operation.id),
                    "pre_block_status": current.value,
                    "reason": operation.block_reason,
                },
            )
            return operation.to_dto()

        with LogContext.bind(operation_id=operation_id, actor_id=actor):
            return self._execute("operation_block", work, operation_id=str(operation_id))

    def unblock_operation(self, operation_id: UUID, actor: str | None = None) -> OperationResult[OperationInfo]:
        """Return a BLOCKED operation to its pre-block status and clear block metadata."""
        actor = self._actor(actor)

        def work() -> OperationInfo:
            operation = self.lock(operation_id)
            if OperationStatus(operation.status) != OperationStatus.BLOCKED:
                raise InvalidStateError("operation", operation.id, operation.status, "unblock")

            restored = operation_state.restore_status_after_unblock(operation.pre_block_status)
            self.transition(operation, restored, actor)
            operation.pre_block_status = None
            operation.block_reason = None
            operation.blocked_by = None
            operation.blocked_at = None
            self.session.flush()
            logger.info(
                "operation_unblocked",
                extra={"operation_id": str(operation.id), "restored_status": restored.value},
            )
            return operation.to_dto()

        with LogContext.bind(operation_id=operation_id, actor_id=actor):
            return self._execute("operation_unblock", work, operation_id=str(operation_id))

    def progress_to_next(
        self, operation_id: UUID, actor: str | None = None
    ) -> OperationResult[OperationInfo | None]:
        """Ready the successor of a CONFIRMED operation; None when the line is done."""
        actor = self._actor(actor)

        def work() -> OperationInfo | None:
            successor = self.release_next(self.lock(operation_id), actor)
            self.session.flush()
            return successor.to_dto() if successor is not None else None

        return self._execute("operation_progress", work, operation_id=str(operation_id))
