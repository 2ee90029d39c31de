"""
Module: mes_kernel.models.batch
Responsibility: ORM persistence for batches, the genealogy edges between
    them, and the append-only quantity adjustment log.
Architecture position: Kernel > Models.  May import from db/ and domain/.
    MUST NOT import from services/ or selectors/.

Invariants enforced:
    - batch_number is unique and never changes once assigned (unique
      constraint + db.immutability listener).
    - quantity is never negative; it is decremented only by split,
      consumption or an explicit adjustment.
    - BatchRelation and BatchQuantityAdjustment rows are append-only.
    - SPLIT conservation: for a batch that has been split,
      sum(SPLIT children quantity_consumed) + quantity == split_baseline_quantity.

Failure modes:
    - IntegrityError on a duplicate batch_number.
    - ImmutabilityViolationError on batch_number change or on any
      UPDATE/DELETE of a relation or adjustment row.

Audit relevance:
    Relations are the genealogy: every SPLIT, MERGE and TRANSFORM records
    exactly how much of the parent went into the child.  Adjustments carry
    old/new/difference with a mandatory reason.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import Base, TrackedBase, UUIDString
from mes_kernel.domain.dtos import AdjustmentResult, BatchInfo, BatchRelationInfo
from mes_kernel.domain.statuses import (
    AdjustmentType,
    BatchCreatedVia,
    BatchStatus,
    RelationStatus,
    RelationType,
)


class BatchModel(TrackedBase):
    """
    A traceable quantity of a single material.

    Contract:
        Created by BatchLifecycleService.create_batch (production, receipt,
        split, merge).  Quantity and status change only through the
        lifecycle, allocation and confirmation services.

    Guarantees:
        - batch_number is unique and immutable.
        - generated_at_operation_id / confirmation_id identify the
          production step that created the batch, when there was one.

    Non-goals:
        - No live back-references to relations or inventory; genealogy is
          read through selectors.genealogy_selector.
    """

    __tablename__ = "batches"

    __table_args__ = (
        Index("idx_batch_material_status", "material_id", "status"),
        Index("idx_batch_operation", "generated_at_operation_id"),
    )

    batch_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    material_id: Mapped[str] = mapped_column(String(100), nullable=False)

    material_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=BatchStatus.AVAILABLE.value,
    )

    created_via: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BatchCreatedVia.MANUAL.value,
    )

    # Production context (no FK: output batches exist before their confirmation row)
    generated_at_operation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    confirmation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Receipt context
    supplier_batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    received_date: Mapped[date | None] = mapped_column(nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(nullable=True)

    # Quantity held when the first split happened; anchors the split balance
    split_baseline_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Quality decision
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> BatchInfo:
        return BatchInfo(
            id=self.id,
            batch_number=self.batch_number,
            material_id=self.material_id,
            material_name=self.material_name,
            quantity=self.quantity,
            unit=self.unit,
            status=BatchStatus(self.status),
            created_via=BatchCreatedVia(self.created_via),
            generated_at_operation_id=self.generated_at_operation_id,
            confirmation_id=self.confirmation_id,
            supplier_batch_number=self.supplier_batch_number,
            supplier_id=self.supplier_id,
            received_date=self.received_date,
            expiry_date=self.expiry_date,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<Batch {self.batch_number} {self.quantity} {self.unit} ({self.status})>"


class BatchRelationModel(TrackedBase):
    """
    Directed genealogy edge parent -> child.

    quantity_consumed is how much of the parent went into the child.
    Append-only.
    """

    __tablename__ = "batch_relations"

    __table_args__ = (
        Index("idx_batch_relation_parent", "parent_batch_id"),
        Index("idx_batch_relation_child", "child_batch_id"),
    )

    parent_batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=False,
    )

    child_batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=False,
    )

    relation_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_consumed: Mapped[Decimal] = mapped_column(nullable=False)

    operation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RelationStatus.ACTIVE.value,
    )

    def to_dto(self) -> BatchRelationInfo:
        return BatchRelationInfo(
            id=self.id,
            parent_batch_id=self.parent_batch_id,
            child_batch_id=self.child_batch_id,
            relation_type=RelationType(self.relation_type),
            quantity_consumed=self.quantity_consumed,
            operation_id=self.operation_id,
        )

    def __repr__(self) -> str:
        return (
            f"<BatchRelation {self.relation_type} "
            f"{self.parent_batch_id} -> {self.child_batch_id} ({self.quantity_consumed})>"
        )


class BatchQuantityAdjustmentModel(Base):
    """Append-only record of one explicit quantity change."""

    __tablename__ = "batch_quantity_adjustments"

    __table_args__ = (Index("idx_batch_adjustment_batch", "batch_id", "adjusted_at"),)

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=False,
    )

    old_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    new_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    difference: Mapped[Decimal] = mapped_column(nullable=False)

    adjustment_type: Mapped[str] = mapped_column(String(30), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)

    adjusted_by: Mapped[str] = mapped_column(String(100), nullable=False)

    adjusted_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self, batch_number: str) -> AdjustmentResult:
        return AdjustmentResult(
            adjustment_id=self.id,
            batch_id=self.batch_id,
            batch_number=batch_number,
            old_quantity=self.old_quantity,
            new_quantity=self.new_quantity,
            difference=self.difference,
            adjustment_type=AdjustmentType(self.adjustment_type),
            reason=self.reason,
            adjusted_by=self.adjusted_by,
            adjusted_on=self.adjusted_at,
        )

    def __repr__(self) -> str:
        return (
            f"<BatchQuantityAdjustment {self.batch_id} "
            f"{self.old_quantity} -> {self.new_quantity} ({self.adjustment_type})>"
        )
