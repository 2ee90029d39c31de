"""
Module: mes_kernel.models.batch_numbering
Responsibility: ORM persistence for batch number configurations and the
    per-bucket sequence counters they draw from.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - (config_id, sequence_key) is unique: one counter per configuration
      scope and reset bucket.  config_id is the configuration UUID as a
      string, or the fallback scope name.
    - current_value never decreases; it only moves through the atomic
      increment in services.sequence_service.

Failure modes:
    - IntegrityError when two transactions insert the same counter; the
      sequence service retries the increment.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import Base, TrackedBase
from mes_kernel.domain.batch_numbering import BatchNumberConfigInfo, SequenceReset
from mes_kernel.domain.statuses import ConfigStatus


class BatchNumberConfigModel(TrackedBase):
    """
    One numbering configuration.

    operation_type / material_id / product_sku are nullable match keys;
    the precedence rules live in domain.batch_numbering.resolve_config.
    """

    __tablename__ = "batch_number_configs"

    __table_args__ = (Index("idx_batch_number_config_status", "status"),)

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    operation_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    material_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)

    prefix: Mapped[str] = mapped_column(String(20), nullable=False)

    include_operation_code: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    operation_code_length: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    separator: Mapped[str] = mapped_column(String(5), nullable=False, default="-")

    date_format: Mapped[str] = mapped_column(String(20), nullable=False, default="yyyyMMdd")
    include_date: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    sequence_length: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    sequence_reset: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=SequenceReset.DAILY.value,
    )

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=ConfigStatus.ACTIVE.value,
    )

    def to_info(self) -> BatchNumberConfigInfo:
        return BatchNumberConfigInfo(
            config_id=str(self.id),
            name=self.name,
            prefix=self.prefix,
            operation_type=self.operation_type,
            material_id=self.material_id,
            product_sku=self.product_sku,
            include_operation_code=self.include_operation_code,
            operation_code_length=self.operation_code_length,
            separator=self.separator,
            date_format=self.date_format,
            include_date=self.include_date,
            sequence_length=self.sequence_length,
            sequence_reset=SequenceReset(self.sequence_reset),
            priority=self.priority,
            status=ConfigStatus(self.status),
        )

    def __repr__(self) -> str:
        return f"<BatchNumberConfig {self.name} prefix={self.prefix} ({self.status})>"


class BatchNumberSequenceModel(Base):
    """Counter row for one (configuration scope, reset bucket)."""

    __tablename__ = "batch_number_sequences"

    __table_args__ = (
        UniqueConstraint("config_id", "sequence_key", name="uq_batch_number_sequence"),
    )

    config_id: Mapped[str] = mapped_column(String(64), nullable=False)

    sequence_key: Mapped[str] = mapped_column(String(150), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    last_reset_on: Mapped[date | None] = mapped_column(nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<BatchNumberSequence {self.config_id}:{self.sequence_key}={self.current_value}>"
