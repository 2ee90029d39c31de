"""
Module: mes_kernel.models.confirmation
Responsibility: ORM persistence for production confirmation records.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Produced/scrap quantities, times, consumed materials and output batch
      ids never change after insert.
    - status moves CONFIRMED | PARTIALLY_CONFIRMED -> REJECTED at most
      once (service precondition + db.immutability listener).

Failure modes:
    - ImmutabilityViolationError on any other UPDATE, or any DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import TrackedBase, UUIDString
from mes_kernel.domain.dtos import ConfirmationInfo, ConsumedMaterial
from mes_kernel.domain.statuses import ConfirmationStatus


class ProductionConfirmationModel(TrackedBase):
    """
    Immutable record of one production confirmation.

    consumed_materials holds ``ConsumedMaterial.to_payload()`` dicts with
    quantities as decimal strings; output_batch_ids holds UUID strings.
    """

    __tablename__ = "production_confirmations"

    __table_args__ = (Index("idx_confirmation_operation", "operation_id", "created_at"),)

    operation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("operations.id"),
        nullable=False,
    )

    produced_qty: Mapped[Decimal] = mapped_column(nullable=False)
    scrap_qty: Mapped[Decimal] = mapped_column(nullable=False)

    start_time: Mapped[datetime | None] = mapped_column(nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False)

    is_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    remaining_qty: Mapped[Decimal] = mapped_column(nullable=False)

    consumed_materials: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    output_batch_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    equipment_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    operator_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Rejection
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_rejected(self) -> bool:
        return self.status == ConfirmationStatus.REJECTED

    def to_dto(self) -> ConfirmationInfo:
        return ConfirmationInfo(
            id=self.id,
            operation_id=self.operation_id,
            produced_qty=self.produced_qty,
            scrap_qty=self.scrap_qty,
            start_time=self.start_time,
            end_time=self.end_time,
            status=ConfirmationStatus(self.status),
            is_partial=self.is_partial,
            remaining_qty=self.remaining_qty,
            consumed_materials=tuple(
                ConsumedMaterial.from_payload(item) for item in self.consumed_materials or ()
            ),
            output_batch_ids=tuple(UUID(item) for item in self.output_batch_ids or ()),
            equipment_ids=tuple(self.equipment_ids or ()),
            operator_ids=tuple(self.operator_ids or ()),
            notes=self.notes,
            rejection_reason=self.rejection_reason,
            rejection_notes=self.rejection_notes,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<ProductionConfirmation {self.operation_id} "
            f"produced={self.produced_qty} ({self.status})>"
        )
