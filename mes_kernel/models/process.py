"""
Module: mes_kernel.models.process
Responsibility: ORM persistence for processes, order lines and the routed
    operations that bind them together.
Architecture position: Kernel > Models.  May import from db/ and domain/.
    MUST NOT import from services/ or selectors/.

Invariants enforced:
    - (order_line_id, sequence_number) is unique: operation sequence numbers
      strictly increase within an order line.
    - confirmed_qty never decreases (enforced by the confirmation engine).
    - pre_block_status is set only while status is BLOCKED.

Failure modes:
    - IntegrityError on a duplicate (order_line_id, sequence_number).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import TrackedBase, UUIDString
from mes_kernel.domain.dtos import OperationInfo
from mes_kernel.domain.quantities import ZERO
from mes_kernel.domain.statuses import (
    OperationStatus,
    OrderLineStatus,
    ProcessStatus,
)


class ProcessModel(TrackedBase):
    """A manufacturing process.  Only ACTIVE processes accept confirmations."""

    __tablename__ = "processes"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProcessStatus.DRAFT.value,
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == ProcessStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Process {self.name} ({self.status})>"


class OrderLineModel(TrackedBase):
    """
    Reference to an order line; order and customer management live elsewhere.

    Status moves CREATED -> IN_PROGRESS on the first confirmation and
    IN_PROGRESS -> COMPLETED when the last operation is confirmed.
    """

    __tablename__ = "order_lines"

    __table_args__ = (Index("idx_order_line_reference", "order_reference"),)

    order_reference: Mapped[str] = mapped_column(String(100), nullable=False)

    product_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="EA")

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderLineStatus.CREATED.value,
    )

    def __repr__(self) -> str:
        return f"<OrderLine {self.order_reference} {self.product_sku} ({self.status})>"


class OperationModel(TrackedBase):
    """
    One routed step of production for an order line.

    Contract:
        Created by OperationService.instantiate_routing; mutated only by the
        confirmation engine and by block/unblock.  Never deleted.

    Guarantees:
        - sequence_number is unique per order line.
        - block_reason/blocked_by/blocked_at/pre_block_status are populated
          together while BLOCKED and cleared together on unblock.
    """

    __tablename__ = "operations"

    __table_args__ = (
        UniqueConstraint(
            "order_line_id", "sequence_number", name="uq_operation_line_sequence"
        ),
        Index("idx_operation_status", "status"),
        Index("idx_operation_process", "process_id"),
    )

    order_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("order_lines.id"),
        nullable=False,
    )

    process_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("processes.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Free-form operation type (e.g. MELTING, CASTING), drives numbering
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)

    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=OperationStatus.NOT_STARTED.value,
    )

    target_qty: Mapped[Decimal] = mapped_column(nullable=False)

    confirmed_qty: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Block metadata
    pre_block_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    block_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> OperationInfo:
        return OperationInfo(
            id=self.id,
            order_line_id=self.order_line_id,
            process_id=self.process_id,
            name=self.name,
            operation_type=self.operation_type,
            sequence_number=self.sequence_number,
            status=OperationStatus(self.status),
            target_qty=self.target_qty,
            confirmed_qty=self.confirmed_qty,
            block_reason=self.block_reason,
            blocked_by=self.blocked_by,
            blocked_at=self.blocked_at,
        )

    def __repr__(self) -> str:
        return (
            f"<Operation {self.sequence_number}:{self.name} "
            f"[{self.operation_type}] ({self.status})>"
        )
