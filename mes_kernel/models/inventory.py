"""
Module: mes_kernel.models.inventory
Responsibility: ORM persistence for stock units of one material, optionally
    bound to a batch.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - quantity never goes negative (consumption checks before decrementing).
    - CONSUMED and SCRAPPED are terminal states (domain.inventory_state).
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import TrackedBase, UUIDString
from mes_kernel.domain.dtos import InventoryInfo
from mes_kernel.domain.statuses import InventoryState, InventoryType


class InventoryModel(TrackedBase):
    """A quantity of material at a location, in one inventory state."""

    __tablename__ = "inventory"

    __table_args__ = (
        Index("idx_inventory_batch", "batch_id"),
        Index("idx_inventory_material_state", "material_id", "state"),
    )

    material_id: Mapped[str] = mapped_column(String(100), nullable=False)

    material_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    inventory_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=InventoryType.RM.value,
    )

    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InventoryState.AVAILABLE.value,
    )

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=True,
    )

    reserved_for_order_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def to_dto(self) -> InventoryInfo:
        return InventoryInfo(
            id=self.id,
            material_id=self.material_id,
            material_name=self.material_name,
            inventory_type=InventoryType(self.inventory_type),
            state=InventoryState(self.state),
            quantity=self.quantity,
            unit=self.unit,
            batch_id=self.batch_id,
            location=self.location,
            reserved_for_order_line_id=self.reserved_for_order_line_id,
        )

    def __repr__(self) -> str:
        return f"<Inventory {self.material_id} {self.quantity} {self.unit} ({self.state})>"
