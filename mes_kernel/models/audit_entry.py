"""
Module: mes_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only audit trail written by
    services.audit_service.SessionAuditSink.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit entries are never updated or deleted (db.immutability).
"""

from datetime import datetime

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import Base


class AuditEntryModel(Base):
    """One CREATE, UPDATE or STATUS_CHANGE fact about an entity."""

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_occurred_at", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    action: Mapped[str] = mapped_column(String(20), nullable=False)

    # UPDATE: the field changed; STATUS_CHANGE: "status"
    field_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    actor: Mapped[str] = mapped_column(String(100), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action} {self.entity_type}:{self.entity_id} by {self.actor}>"
