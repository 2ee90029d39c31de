"""
BatchAllocationService -- reserve batch quantity for order lines.

Responsibility:
    Creates, resizes and releases allocations of a batch's quantity to
    order lines, and answers availability questions.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - available(batch) = batch.quantity - sum(ALLOCATED allocated_qty).
      A new or resized allocation never drives it below zero.
    - At most one ALLOCATED allocation per (batch, order line).
    - The batch row is locked before the active-sum read, so the read and
      the insert/update are one atomic unit.
    - RELEASED allocations are excluded from every sum.

Failure modes:
    - NOT_FOUND for unknown batch, order line or allocation ids.
    - VALIDATION_FAILURE for non-positive quantities.
    - CONFLICT for a second active allocation of the same pair.
    - INSUFFICIENT_QUANTITY naming available and requested amounts.
    - INVALID_STATE when releasing or resizing a RELEASED allocation.
    - ON_HOLD when the batch carries an ACTIVE hold.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_kernel.domain.clock import Clock
from mes_kernel.domain.dtos import AllocationInfo
from mes_kernel.domain.quantities import ZERO, format_quantity, quantity_sum, to_quantity
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import AllocationStatus, HoldEntityType
from mes_kernel.exceptions import (
    AllocationNotActiveError,
    AllocationNotFoundError,
    BatchNotFoundError,
    DuplicateAllocationError,
    InsufficientBatchQuantityError,
    InvalidQuantityError,
    OrderLineNotFoundError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.allocation import BatchOrderAllocationModel
from mes_kernel.models.batch import BatchModel
from mes_kernel.models.process import OrderLineModel
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService
from mes_kernel.services.hold_service import HoldService

logger = get_logger("services.batch_allocation")


class BatchAllocationService(BaseService):
    """Batch allocation engine."""

    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        holds: HoldService | None = None,
    ):
        super().__init__(session, clock=clock, audit=audit, auto_commit=auto_commit)
        self.holds = holds or HoldService(session, clock=self.clock, audit=audit, auto_commit=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _batch(self, batch_id: UUID, lock: bool = False) -> BatchModel:
        if lock:
            batch = self.session.get(BatchModel, batch_id, with_for_update=True)
        else:
            batch = self.session.get(BatchModel, batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def _active_allocations(self, batch_id: UUID) -> list[BatchOrderAllocationModel]:
        return list(
            self.session.scalars(
                select(BatchOrderAllocationModel).where(
                    BatchOrderAllocationModel.batch_id == batch_id,
                    BatchOrderAllocationModel.status == AllocationStatus.ALLOCATED.value,
                )
            )
        )

    def _allocated_total(self, batch_id: UUID) -> Decimal:
        # Summed in Python: quantities are exact decimals on every backend
        return quantity_sum(a.allocated_qty for a in self._active_allocations(batch_id))

    def _available(self, batch: BatchModel) -> Decimal:
        return batch.quantity - self._allocated_total(batch.id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def allocate(
        self,
        batch_id: UUID,
        order_line_id: UUID,
        quantity: Decimal,
        actor: str | None = None,
    ) -> OperationResult[AllocationInfo]:
        """Reserve ``quantity`` of a batch for an order line."""
        actor = self._actor(actor)

        def work() -> AllocationInfo:
            batch = self._batch(batch_id, lock=True)
            if self.session.get(OrderLineModel, order_line_id) is None:
                raise OrderLineNotFoundError(order_line_id)
            amount = to_quantity(quantity)
            if amount <= ZERO:
                raise InvalidQuantityError("quantity", format_quantity(amount))
            self.holds.ensure_not_on_hold(HoldEntityType.BATCH, batch_id)

            duplicate = self.session.scalars(
                select(BatchOrderAllocationModel).where(
                    BatchOrderAllocationModel.batch_id == batch_id,
                    BatchOrderAllocationModel.order_line_id == order_line_id,
                    BatchOrderAllocationModel.status == AllocationStatus.ALLOCATED.value,
                )
            ).first()
            if duplicate is not None:
                raise DuplicateAllocationError(batch_id, order_line_id, duplicate.id)

            available = self._available(batch)
            if amount > available:
                raise InsufficientBatchQuantityError(batch_id, available, amount)

            allocation = BatchOrderAllocationModel(
                batch_id=batch_id,
                order_line_id=order_line_id,
                allocated_qty=amount,
                status=AllocationStatus.ALLOCATED.value,
                created_by=actor,
            )
            self.session.add(allocation)
            self.session.flush()
            self.audit.log_create(
                "BatchAllocation",
                allocation.id,
                f"Allocated {format_quantity(amount)} of batch {batch.batch_number} "
                f"to order line {order_line_id}",
                actor,
            )
            logger.info(
                "batch_allocated",
                extra={
                    "allocation_id": str(allocation.id),
                    "batch_id": str(batch_id),
                    "order_line_id": str(order_line_id),
                    "quantity": str(amount),
                    "available_after": str(available - amount),
                },
            )
            return allocation.to_dto()

        return self._execute(
            "batch_allocate", work, batch_id=str(batch_id), order_line_id=str(order_line_id)
        )

    def release(self, allocation_id: UUID, actor: str | None = None) -> OperationResult[AllocationInfo]:
        """Release an ALLOCATED allocation; its quantity becomes available again."""
        actor = self._actor(actor)

        def work() -> AllocationInfo:
            allocation = self.session.get(
                BatchOrderAllocationModel, allocation_id, with_for_update=True
            )
            if allocation is None:
                raise AllocationNotFoundError(allocation_id)
            if not allocation.is_active:
                raise AllocationNotActiveError(allocation_id, allocation.status, "release")

            allocation.status = AllocationStatus.RELEASED.value
            allocation.released_by = actor
            allocation.released_at = self.clock.now()
            allocation.updated_by = actor
            self.session.flush()
            self.audit.log_status_change(
                "BatchAllocation",
                allocation.id,
                AllocationStatus.ALLOCATED,
                AllocationStatus.RELEASED,
                actor,
            )
            logger.info(
                "batch_allocation_released",
                extra={"allocation_id": str(allocation.id), "batch_id": str(allocation.batch_id)},
            )
            return allocation.to_dto()

        return self._execute("batch_allocation_release", work, allocation_id=str(allocation_id))

    def update_quantity(
        self,
        allocation_id: UUID,
        new_quantity: Decimal,
        actor: str | None = None,
    ) -> OperationResult[AllocationInfo]:
        """
        Resize an ALLOCATED allocation.

        The allocation's own current quantity is excluded from the
        "already allocated" baseline: new <= available + current.
        """
        actor = self._actor(actor)

        def work() -> AllocationInfo:
            allocation = self.session.get(
                BatchOrderAllocationModel, allocation_id, with_for_update=True
            )
            if allocation is None:
                raise AllocationNotFoundError(allocation_id)
            if not allocation.is_active:
                raise AllocationNotActiveError(allocation_id, allocation.status, "update quantity of")
            amount = to_quantity(new_quantity)
            if amount <= ZERO:
                raise InvalidQuantityError("new_quantity", format_quantity(amount))

            batch = self._batch(allocation.batch_id, lock=True)
            headroom = self._available(batch) + allocation.allocated_qty
            if amount > headroom:
                raise InsufficientBatchQuantityError(batch.id, headroom, amount)

            old_quantity = allocation.allocated_qty
            allocation.allocated_qty = amount
            allocation.updated_by = actor
            self.session.flush()
            self.audit.log_update(
                "BatchAllocation", allocation.id, "allocated_qty", old_quantity, amount, actor
            )
            logger.info(
                "batch_allocation_resized",
                extra={
                    "allocation_id": str(allocation.id),
                    "old_quantity": str(old_quantity),
                    "new_quantity": str(amount),
                },
            )
            return allocation.to_dto()

        return self._execute("batch_allocation_update", work, allocation_id=str(allocation_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_available_quantity(self, batch_id: UUID) -> OperationResult[Decimal]:
        return self._execute(
            "batch_available_quantity",
            lambda: self._available(self._batch(batch_id)),
            batch_id=str(batch_id),
        )

    def is_fully_allocated(self, batch_id: UUID) -> OperationResult[bool]:
        return self._execute(
            "batch_fully_allocated",
            lambda: self._available(self._batch(batch_id)) <= ZERO,
            batch_id=str(batch_id),
        )

    def get_total_allocated(self, batch_id: UUID) -> OperationResult[Decimal]:
        def work() -> Decimal:
            self._batch(batch_id)
            return self._allocated_total(batch_id)

        return self._execute("batch_total_allocated", work, batch_id=str(batch_id))

    def get_batch_allocations(
        self, batch_id: UUID, active_only: bool = False
    ) -> OperationResult[list[AllocationInfo]]:
        def work() -> list[AllocationInfo]:
            self._batch(batch_id)
            stmt = select(BatchOrderAllocationModel).where(
                BatchOrderAllocationModel.batch_id == batch_id
            )
            if active_only:
                stmt = stmt.where(BatchOrderAllocationModel.status == AllocationStatus.ALLOCATED.value)
            return [a.to_dto() for a in self.session.scalars(stmt.order_by(BatchOrderAllocationModel.created_at))]

        return self._execute("batch_allocations", work, batch_id=str(batch_id))

    def get_order_line_allocations(
        self, order_line_id: UUID, active_only: bool = False
    ) -> OperationResult[list[AllocationInfo]]:
        def work() -> list[AllocationInfo]:
            if self.session.get(OrderLineModel, order_line_id) is None:
                raise OrderLineNotFoundError(order_line_id)
            stmt = select(BatchOrderAllocationModel).where(
                BatchOrderAllocationModel.order_line_id == order_line_id
            )
            if active_only:
                stmt = stmt.where(BatchOrderAllocationModel.status == AllocationStatus.ALLOCATED.value)
            return [a.to_dto() for a in self.session.scalars(stmt.order_by(BatchOrderAllocationModel.created_at))]

        return self._execute("order_line_allocations", work, order_line_id=str(order_line_id))
