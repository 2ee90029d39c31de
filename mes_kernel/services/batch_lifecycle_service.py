"""
BatchLifecycleService -- split, merge, adjust and trace batches.

Responsibility:
    Owns every batch quantity change that is not a production consumption
    or an allocation: splitting a batch into children, merging batches into
    one, explicit quantity adjustments, quality decisions and scrapping.
    Also provides the ``create_batch`` / ``create_relation`` primitives the
    confirmation engine and the receipt service build on, and the genealogy
    and conservation read side.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - SPLIT conservation: sum(SPLIT children quantity_consumed) + remaining
      quantity == quantity held when the batch was first split (shifted by
      later adjustments).  Decimal-exact.
    - MERGE conservation: merged quantity == sum of source quantities; every
      source ends CONSUMED.
    - Batch rows are locked (SELECT ... FOR UPDATE) before any quantity
      change.  Merge locks its sources in id order.
    - Relations and adjustments are append-only.
    - Split, merge and adjustment never take a batch below its ALLOCATED
      total.

Failure modes:
    - NOT_FOUND for unknown batch ids.
    - INVALID_STATE when the batch status forbids the change.
    - INSUFFICIENT_QUANTITY when portions exceed the unallocated quantity
      or a merge source carries active allocations.
    - VALIDATION_FAILURE for empty portion lists, non-positive portions,
      duplicate or too few merge sources, material/unit mismatches, blank
      reasons, negative quantities, adjustments below the allocated
      total and unknown adjustment types.
    - CONFLICT for an explicit merge number that already exists.
"""

from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_kernel.config import KernelConfig
from mes_kernel.domain.clock import Clock
from mes_kernel.domain.dtos import (
    AdjustmentResult,
    BatchGenealogy,
    InvariantCheck,
    MergeResult,
    SplitPortion,
    SplitResult,
)
from mes_kernel.domain.quantities import ZERO, format_quantity, quantity_sum, to_quantity
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import (
    AdjustmentType,
    AllocationStatus,
    BatchCreatedVia,
    BatchStatus,
    RelationType,
)
from mes_kernel.exceptions import (
    BatchNotFoundError,
    BlankReasonError,
    DuplicateBatchIdsError,
    DuplicateBatchNumberError,
    EmptyPortionListError,
    InsufficientBatchQuantityError,
    InvalidBatchStateError,
    InvalidQuantityError,
    MergeMismatchError,
    UnknownValueError,
    ValidationFailureError,
)
from mes_kernel.logging_config import LogContext, get_logger
from mes_kernel.models.allocation import BatchOrderAllocationModel
from mes_kernel.models.batch import (
    BatchModel,
    BatchQuantityAdjustmentModel,
    BatchRelationModel,
)
from mes_kernel.selectors.genealogy_selector import GenealogySelector
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService
from mes_kernel.services.batch_number_service import BatchNumberService

logger = get_logger("services.batch_lifecycle")

SPLITTABLE_STATUSES = frozenset({BatchStatus.AVAILABLE, BatchStatus.RESERVED, BatchStatus.BLOCKED})
MERGEABLE_STATUSES = frozenset({BatchStatus.AVAILABLE})
QUALITY_DECISION_STATUSES = frozenset({BatchStatus.QUALITY_PENDING, BatchStatus.PRODUCED})
CLOSED_STATUSES = frozenset({BatchStatus.CONSUMED, BatchStatus.SCRAPPED})


def _require_reason(reason: str | None, field: str = "reason") -> str:
    if reason is None or not reason.strip():
        raise BlankReasonError(field)
    return reason.strip()


class BatchLifecycleService(BaseService):
    """
    Batch lifecycle manager.

    Contract:
        Public operations return ``OperationResult`` and run as one unit of
        work.  ``create_batch``, ``create_relation`` and ``lock_batch`` are
        primitives: they raise and never commit.
    """

    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        config: KernelConfig | None = None,
        numbers: BatchNumberService | None = None,
    ):
        self.config = config or KernelConfig.with_defaults()
        super().__init__(
            session,
            clock=clock,
            audit=audit,
            auto_commit=auto_commit,
            default_actor=self.config.default_actor,
        )
        self.numbers = numbers or BatchNumberService(
            session, clock=self.clock, audit=audit, auto_commit=False, config=self.config
        )
        self.genealogy = GenealogySelector(session)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def lock_batch(self, batch_id: UUID) -> BatchModel:
        batch = self.session.get(BatchModel, batch_id, with_for_update=True)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def allocated_quantity(self, batch_id: UUID) -> Decimal:
        """Sum of the batch's ALLOCATED allocations."""
        return quantity_sum(
            self.session.scalars(
                select(BatchOrderAllocationModel.allocated_qty).where(
                    BatchOrderAllocationModel.batch_id == batch_id,
                    BatchOrderAllocationModel.status == AllocationStatus.ALLOCATED.value,
                )
            )
        )

    def create_batch(
        self,
        *,
        batch_number: str,
        material_id: str,
        quantity: Decimal,
        unit: str,
        actor: str,
        material_name: str | None = None,
        status: BatchStatus = BatchStatus.AVAILABLE,
        created_via: BatchCreatedVia = BatchCreatedVia.MANUAL,
        generated_at_operation_id: UUID | None = None,
        confirmation_id: UUID | None = None,
        supplier_batch_number: str | None = None,
        supplier_id: str | None = None,
        received_date: date | None = None,
        expiry_date: date | None = None,
    ) -> BatchModel:
        """Insert a batch row and audit its creation.  Raises DuplicateBatchNumberError."""
        existing = self.session.scalars(
            select(BatchModel.id).where(BatchModel.batch_number == batch_number)
        ).first()
        if existing is not None:
            raise DuplicateBatchNumberError(batch_number)

        batch = BatchModel(
            batch_number=batch_number,
            material_id=material_id,
            material_name=material_name,
            quantity=quantity,
            unit=unit,
            status=BatchStatus(status).value,
            created_via=BatchCreatedVia(created_via).value,
            generated_at_operation_id=generated_at_operation_id,
            confirmation_id=confirmation_id,
            supplier_batch_number=supplier_batch_number,
            supplier_id=supplier_id,
            received_date=received_date,
            expiry_date=expiry_date,
            created_by=actor,
        )
        self.session.add(batch)
        self.session.flush()
        self.audit.log_create(
            "Batch",
            batch.id,
            f"Batch {batch_number}: {format_quantity(quantity)} {unit} of {material_id} "
            f"via {BatchCreatedVia(created_via).value}",
            actor,
        )
        logger.info(
            "batch_created",
            extra={
                "batch_id": str(batch.id),
                "batch_number": batch_number,
                "material_id": material_id,
                "quantity": str(quantity),
                "created_via": BatchCreatedVia(created_via).value,
            },
        )
        return batch

    def create_relation(
        self,
        parent: BatchModel,
        child: BatchModel,
        relation_type: RelationType,
        quantity_consumed: Decimal,
        actor: str,
        operation_id: UUID | None = None,
    ) -> BatchRelationModel:
        relation = BatchRelationModel(
            parent_batch_id=parent.id,
            child_batch_id=child.id,
            relation_type=relation_type.value,
            quantity_consumed=quantity_consumed,
            operation_id=operation_id,
            created_by=actor,
        )
        self.session.add(relation)
        return relation

    def _set_status(self, batch: BatchModel, status: BatchStatus, actor: str) -> None:
        old = BatchStatus(batch.status)
        if old == status:
            return
        batch.status = status.value
        batch.updated_by = actor
        self.audit.log_status_change("Batch", batch.id, old, status, actor)

    def _set_quantity(self, batch: BatchModel, quantity: Decimal, actor: str) -> None:
        old = batch.quantity
        batch.quantity = quantity
        batch.updated_by = actor
        self.audit.log_update("Batch", batch.id, "quantity", old, quantity, actor)

    def consume_quantity(self, batch: BatchModel, quantity: Decimal, actor: str) -> Decimal:
        """
        Decrement a locked batch by a production consumption.

        Primitive: raises, never commits.  The batch becomes CONSUMED at zero.
        """
        remaining = batch.quantity - quantity
        if remaining < ZERO:
            raise InsufficientBatchQuantityError(batch.id, batch.quantity, quantity)
        self._set_quantity(batch, remaining, actor)
        if remaining == ZERO:
            self._set_status(batch, BatchStatus.CONSUMED, actor)
        return remaining

    # ------------------------------------------------------------------
    # Split
    # ------------------------------------------------------------------

    def split_batch(
        self,
        source_batch_id: UUID,
        portions: Sequence[SplitPortion],
        reason: str | None = None,
        actor: str | None = None,
    ) -> OperationResult[SplitResult]:
        """
        Split ``source_batch_id`` into one child per portion.

        The source keeps the remainder; it becomes SPLIT when nothing is left.
        """
        actor = self._actor(actor)

        def work() -> SplitResult:
            if not portions:
                raise EmptyPortionListError()
            quantities = []
            for index, portion in enumerate(portions, start=1):
                quantity = to_quantity(portion.quantity)
                if quantity <= ZERO:
                    raise InvalidQuantityError(f"portions[{index}].quantity", format_quantity(quantity))
                quantities.append(quantity)

            source = self.lock_batch(source_batch_id)
            status = BatchStatus(source.status)
            if status not in SPLITTABLE_STATUSES:
                raise InvalidBatchStateError(source.id, status, "split", SPLITTABLE_STATUSES)

            # Allocated quantity stays with the source
            requested = quantity_sum(quantities)
            available = source.quantity - self.allocated_quantity(source.id)
            if requested > available:
                raise InsufficientBatchQuantityError(source.id, available, requested)

            original = source.quantity
            if source.split_baseline_quantity is None:
                source.split_baseline_quantity = original
            already_split = self.genealogy.count_children(source.id, RelationType.SPLIT)

            children = []
            for offset, (portion, quantity) in enumerate(zip(portions, quantities), start=1):
                suffix = (portion.suffix or "").strip()
                if suffix:
                    number = f"{source.batch_number}-{suffix}"
                else:
                    number = self.numbers.generate_split_number(
                        source.batch_number, already_split + offset
                    )
                child = self.create_batch(
                    batch_number=number,
                    material_id=source.material_id,
                    material_name=source.material_name,
                    quantity=quantity,
                    unit=source.unit,
                    status=BatchStatus.AVAILABLE,
                    created_via=BatchCreatedVia.SPLIT,
                    generated_at_operation_id=source.generated_at_operation_id,
                    actor=actor,
                )
                self.create_relation(source, child, RelationType.SPLIT, quantity, actor)
                children.append(child)

            remaining = original - requested
            self._set_quantity(source, remaining, actor)
            if remaining == ZERO:
                self._set_status(source, BatchStatus.SPLIT, actor)
            self.session.flush()

            logger.info(
                "batch_split",
                extra={
                    "batch_id": str(source.id),
                    "batch_number": source.batch_number,
                    "portions": len(children),
                    "split_quantity": str(requested),
                    "remaining": str(remaining),
                    "reason": reason,
                },
            )
            return SplitResult(
                source_batch=source.to_dto(),
                child_batches=tuple(child.to_dto() for child in children),
                original_quantity=original,
                remaining_quantity=remaining,
            )

        with LogContext.bind(batch_id=source_batch_id, actor_id=actor):
            return self._execute("batch_split", work, batch_id=str(source_batch_id))

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge_batches(
        self,
        source_batch_ids: Sequence[UUID],
        target_batch_number: str | None = None,
        reason: str | None = None,
        actor: str | None = None,
    ) -> OperationResult[MergeResult]:
        """Merge two or more AVAILABLE batches of one material and unit into a new batch."""
        actor = self._actor(actor)

        def work() -> MergeResult:
            ids = list(source_batch_ids)
            if len(ids) < 2:
                raise ValidationFailureError("source_batch_ids", "at least two batches are required")
            duplicates = {batch_id for batch_id in ids if ids.count(batch_id) > 1}
            if duplicates:
                raise DuplicateBatchIdsError(duplicates)

            locked = {batch_id: self.lock_batch(batch_id) for batch_id in sorted(ids, key=str)}
            sources = [locked[batch_id] for batch_id in ids]

            for source in sources:
                status = BatchStatus(source.status)
                if status not in MERGEABLE_STATUSES:
                    raise InvalidBatchStateError(source.id, status, "merge", MERGEABLE_STATUSES)
            materials = {source.material_id for source in sources}
            if len(materials) > 1:
                raise MergeMismatchError("material_id", materials)
            units = {source.unit for source in sources}
            if len(units) > 1:
                raise MergeMismatchError("unit", units)
            for source in sources:
                allocated = self.allocated_quantity(source.id)
                if allocated > ZERO:
                    raise InsufficientBatchQuantityError(
                        source.id, source.quantity - allocated, source.quantity
                    )

            number = (target_batch_number or "").strip() or self.numbers.generate_merge_number()
            source_quantities = tuple(source.quantity for source in sources)
            total = quantity_sum(source_quantities)
            first = sources[0]

            merged = self.create_batch(
                batch_number=number,
                material_id=first.material_id,
                material_name=first.material_name,
                quantity=total,
                unit=first.unit,
                status=BatchStatus.AVAILABLE,
                created_via=BatchCreatedVia.MERGE,
                actor=actor,
            )
            for source in sources:
                self.create_relation(source, merged, RelationType.MERGE, source.quantity, actor)
                self._set_quantity(source, ZERO, actor)
                self._set_status(source, BatchStatus.CONSUMED, actor)
            self.session.flush()

            logger.info(
                "batches_merged",
                extra={
                    "batch_id": str(merged.id),
                    "batch_number": merged.batch_number,
                    "source_count": len(sources),
                    "total_quantity": str(total),
                    "reason": reason,
                },
            )
            return MergeResult(
                merged_batch=merged.to_dto(),
                source_batches=tuple(source.to_dto() for source in sources),
                source_quantities=source_quantities,
                total_quantity=total,
            )

        return self._execute("batch_merge", work, source_count=len(source_batch_ids))

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def adjust_quantity(
        self,
        batch_id: UUID,
        new_quantity: Decimal,
        adjustment_type: AdjustmentType | str,
        reason: str,
        actor: str | None = None,
    ) -> OperationResult[AdjustmentResult]:
        """Set a batch's quantity explicitly, recording old/new/difference and the reason."""
        actor = self._actor(actor)

        def work() -> AdjustmentResult:
            cleaned_reason = _require_reason(reason)
            try:
                kind = AdjustmentType(adjustment_type)
            except ValueError:
                raise UnknownValueError("adjustment_type", adjustment_type, list(AdjustmentType)) from None
            quantity = to_quantity(new_quantity)
            if quantity < ZERO:
                raise InvalidQuantityError("new_quantity", format_quantity(quantity), "must not be negative")

            batch = self.lock_batch(batch_id)
            status = BatchStatus(batch.status)
            if status in CLOSED_STATUSES:
                raise InvalidBatchStateError(batch.id, status, "adjust quantity of")
            allocated = self.allocated_quantity(batch.id)
            if quantity < allocated:
                raise InvalidQuantityError(
                    "new_quantity",
                    format_quantity(quantity),
                    f"is below the allocated quantity {format_quantity(allocated)}",
                )

            old_quantity = batch.quantity
            difference = quantity - old_quantity
            adjustment = BatchQuantityAdjustmentModel(
                batch_id=batch.id,
                old_quantity=old_quantity,
                new_quantity=quantity,
                difference=difference,
                adjustment_type=kind.value,
                reason=cleaned_reason,
                adjusted_by=actor,
                adjusted_at=self.clock.now(),
            )
            self.session.add(adjustment)
            self._set_quantity(batch, quantity, actor)
            if batch.split_baseline_quantity is not None:
                batch.split_baseline_quantity = batch.split_baseline_quantity + difference
            self.session.flush()

            logger.info(
                "batch_quantity_adjusted",
                extra={
                    "batch_id": str(batch.id),
                    "old_quantity": str(old_quantity),
                    "new_quantity": str(quantity),
                    "difference": str(difference),
                    "adjustment_type": kind.value,
                },
            )
            return adjustment.to_dto(batch.batch_number)

        return self._execute("batch_adjust", work, batch_id=str(batch_id))

    def get_adjustment_history(self, batch_id: UUID) -> OperationResult[list[AdjustmentResult]]:
        def work() -> list[AdjustmentResult]:
            batch = self.session.get(BatchModel, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            rows = self.session.scalars(
                select(BatchQuantityAdjustmentModel)
                .where(BatchQuantityAdjustmentModel.batch_id == batch_id)
                .order_by(BatchQuantityAdjustmentModel.adjusted_at)
            )
            return [row.to_dto(batch.batch_number) for row in rows]

        return self._execute("batch_adjustment_history", work, batch_id=str(batch_id))

    # ------------------------------------------------------------------
    # Quality decision and scrap
    # ------------------------------------------------------------------

    def approve_batch(self, batch_id: UUID, actor: str | None = None):
        """Release a QUALITY_PENDING or PRODUCED batch for use (-> AVAILABLE)."""
        actor = self._actor(actor)

        def work():
            batch = self.lock_batch(batch_id)
            status = BatchStatus(batch.status)
            if status not in QUALITY_DECISION_STATUSES:
                raise InvalidBatchStateError(batch.id, status, "approve", QUALITY_DECISION_STATUSES)
            batch.approved_by = actor
            batch.approved_at = self.clock.now()
            self._set_status(batch, BatchStatus.AVAILABLE, actor)
            self.session.flush()
            logger.info("batch_approved", extra={"batch_id": str(batch.id)})
            return batch.to_dto()

        return self._execute("batch_approve", work, batch_id=str(batch_id))

    def reject_batch(self, batch_id: UUID, reason: str, actor: str | None = None):
        """Quality rejection of a QUALITY_PENDING or PRODUCED batch (-> BLOCKED)."""
        actor = self._actor(actor)

        def work():
            cleaned_reason = _require_reason(reason)
            batch = self.lock_batch(batch_id)
            status = BatchStatus(batch.status)
            if status not in QUALITY_DECISION_STATUSES:
                raise InvalidBatchStateError(batch.id, status, "reject", QUALITY_DECISION_STATUSES)
            batch.rejection_reason = cleaned_reason
            batch.rejected_by = actor
            batch.rejected_at = self.clock.now()
            self._set_status(batch, BatchStatus.BLOCKED, actor)
            self.session.flush()
            logger.info("batch_rejected", extra={"batch_id": str(batch.id), "reason": cleaned_reason})
            return batch.to_dto()

        return self._execute("batch_reject", work, batch_id=str(batch_id))

    def scrap_batch(self, batch_id: UUID, reason: str, actor: str | None = None):
        """Soft delete: the batch row stays for genealogy, its status becomes SCRAPPED."""
        actor = self._actor(actor)

        def work():
            cleaned_reason = _require_reason(reason)
            batch = self.lock_batch(batch_id)
            status = BatchStatus(batch.status)
            if status in CLOSED_STATUSES:
                raise InvalidBatchStateError(batch.id, status, "scrap")
            self._set_status(batch, BatchStatus.SCRAPPED, actor)
            self.session.flush()
            logger.info("batch_scrapped", extra={"batch_id": str(batch.id), "reason": cleaned_reason})
            return batch.to_dto()

        return self._execute("batch_scrap", work, batch_id=str(batch_id))

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_genealogy(self, batch_id: UUID) -> OperationResult[BatchGenealogy]:
        return self._execute(
            "batch_genealogy",
            lambda: self.genealogy.get_genealogy(batch_id),
            batch_id=str(batch_id),
        )

    def validate_split_invariant(self, batch_id: UUID) -> OperationResult[InvariantCheck]:
        """Check sum(SPLIT children) + remaining == quantity at first split."""

        def work() -> InvariantCheck:
            batch = self.session.get(BatchModel, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            if batch.split_baseline_quantity is None:
                return InvariantCheck(True, "Batch has not been split", batch.id, batch.batch_number)

            children = self.genealogy.children_of(batch.id, RelationType.SPLIT)
            split_total = quantity_sum(link.quantity_consumed for link in children)
            accounted = split_total + batch.quantity
            valid = accounted == batch.split_baseline_quantity
            details = {
                "baseline_quantity": str(batch.split_baseline_quantity),
                "split_quantity": str(split_total),
                "remaining_quantity": str(batch.quantity),
            }
            if valid:
                message = "Split quantities balance"
            else:
                message = (
                    f"Split quantities do not balance: {format_quantity(split_total)} split + "
                    f"{format_quantity(batch.quantity)} remaining != "
                    f"{format_quantity(batch.split_baseline_quantity)}"
                )
                logger.error("split_invariant_violated", extra={"batch_id": str(batch.id), **details})
            return InvariantCheck(valid, message, batch.id, batch.batch_number, details)

        return self._execute("batch_split_invariant", work, batch_id=str(batch_id))

    def validate_merge_invariant(self, batch_id: UUID) -> OperationResult[InvariantCheck]:
        """Check a merged batch's quantity against the sum its MERGE relations consumed."""

        def work() -> InvariantCheck:
            batch = self.session.get(BatchModel, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            parents = self.genealogy.parents_of(batch.id, RelationType.MERGE)
            if not parents:
                return InvariantCheck(True, "Batch is not a merge result", batch.id, batch.batch_number)

            merged_total = quantity_sum(link.quantity_consumed for link in parents)
            expected = batch.split_baseline_quantity if batch.split_baseline_quantity is not None else batch.quantity
            valid = merged_total == expected
            details = {
                "merged_quantity": str(merged_total),
                "batch_quantity": str(expected),
                "source_count": str(len(parents)),
            }
            if valid:
                message = "Merge quantities balance"
            else:
                message = (
                    f"Merge quantities do not balance: sources {format_quantity(merged_total)} "
                    f"!= batch {format_quantity(expected)}"
                )
                logger.error("merge_invariant_violated", extra={"batch_id": str(batch.id), **details})
            return InvariantCheck(valid, message, batch.id, batch.batch_number, details)

        return self._execute("batch_merge_invariant", work, batch_id=str(batch_id))
