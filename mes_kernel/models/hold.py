"""
Module: mes_kernel.models.hold
Responsibility: ORM persistence for holds placed on operations, processes,
    batches and inventory.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - A hold is ACTIVE until released; RELEASED is terminal.
    - While an ACTIVE hold exists on an operation or its process, the
      operation accepts no confirmations.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import TrackedBase, UUIDString
from mes_kernel.domain.dtos import HoldInfo
from mes_kernel.domain.statuses import HoldEntityType, HoldStatus


class HoldRecordModel(TrackedBase):
    """A hold on one entity.  entity_id is polymorphic, so it carries no FK."""

    __tablename__ = "hold_records"

    __table_args__ = (Index("idx_hold_entity_status", "entity_type", "entity_id", "status"),)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=HoldStatus.ACTIVE.value,
    )

    applied_by: Mapped[str] = mapped_column(String(100), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(nullable=False)

    released_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    release_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> HoldInfo:
        return HoldInfo(
            id=self.id,
            entity_type=HoldEntityType(self.entity_type),
            entity_id=self.entity_id,
            reason=self.reason,
            status=HoldStatus(self.status),
            applied_by=self.applied_by,
            applied_at=self.applied_at,
            released_by=self.released_by,
            released_at=self.released_at,
            release_notes=self.release_notes,
        )

    def __repr__(self) -> str:
        return f"<Hold {self.entity_type}:{self.entity_id} ({self.status})>"
