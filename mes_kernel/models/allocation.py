"""
Module: mes_kernel.models.allocation
Responsibility: ORM persistence for reservations of batch quantity against
    order lines.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - At most one ALLOCATED allocation per (batch_id, order_line_id):
      partial unique index on PostgreSQL and SQLite, checked again by
      BatchAllocationService before insert.
    - sum(ALLOCATED allocated_qty for a batch) <= batch.quantity
      (service-level, under the batch row lock).

Failure modes:
    - IntegrityError on a second ALLOCATED row for the same pair.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import TrackedBase, UUIDString
from mes_kernel.domain.dtos import AllocationInfo
from mes_kernel.domain.statuses import AllocationStatus

_ACTIVE_ONLY = text("status = 'ALLOCATED'")


class BatchOrderAllocationModel(TrackedBase):
    """Reservation of part of a batch for one order line."""

    __tablename__ = "batch_order_allocations"

    __table_args__ = (
        Index(
            "uq_allocation_active_pair",
            "batch_id",
            "order_line_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("idx_allocation_batch_status", "batch_id", "status"),
        Index("idx_allocation_order_line", "order_line_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=False,
    )

    order_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("order_lines.id"),
        nullable=False,
    )

    allocated_qty: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AllocationStatus.ALLOCATED.value,
    )

    released_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == AllocationStatus.ALLOCATED

    def to_dto(self) -> AllocationInfo:
        return AllocationInfo(
            id=self.id,
            batch_id=self.batch_id,
            order_line_id=self.order_line_id,
            allocated_qty=self.allocated_qty,
            status=AllocationStatus(self.status),
            created_by=self.created_by,
            created_at=self.created_at,
            released_by=self.released_by,
            released_at=self.released_at,
        )

    def __repr__(self) -> str:
        return (
            f"<Allocation {self.batch_id} -> {self.order_line_id} "
            f"{self.allocated_qty} ({self.status})>"
        )
