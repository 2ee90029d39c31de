"""
DTOs -- frozen value objects crossing the service boundary.

Responsibility:
    Plain, immutable records holding foreign-key ids rather than live object
    graphs.  ORM rows build them through ``to_dto()``; services accept the
    request types and return the result types inside ``OperationResult``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - All models are ``frozen=True``.
    - All quantities are ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from mes_kernel.domain.quantities import ZERO
from mes_kernel.domain.statuses import (
    AdjustmentType,
    AllocationStatus,
    BatchCreatedVia,
    BatchStatus,
    ConfirmationStatus,
    HoldEntityType,
    HoldStatus,
    InventoryState,
    InventoryType,
    OperationStatus,
    RelationType,
)

SYSTEM_ACTOR = "SYSTEM"


def resolve_actor(actor: str | None, default: str = SYSTEM_ACTOR) -> str:
    """The acting user, or the ``SYSTEM`` sentinel when none was supplied."""
    if actor is None or not str(actor).strip():
        return default
    return str(actor).strip()


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchInfo:
    id: UUID
    batch_number: str
    material_id: str
    material_name: str | None
    quantity: Decimal
    unit: str
    status: BatchStatus
    created_via: BatchCreatedVia
    generated_at_operation_id: UUID | None = None
    confirmation_id: UUID | None = None
    supplier_batch_number: str | None = None
    supplier_id: str | None = None
    received_date: date | None = None
    expiry_date: date | None = None
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class BatchRelationInfo:
    id: UUID
    parent_batch_id: UUID
    child_batch_id: UUID
    relation_type: RelationType
    quantity_consumed: Decimal
    operation_id: UUID | None = None


@dataclass(frozen=True)
class SplitPortion:
    """One requested child of a split; ``suffix`` overrides the generated number."""

    quantity: Decimal
    suffix: str | None = None


@dataclass(frozen=True)
class SplitResult:
    source_batch: BatchInfo
    child_batches: tuple[BatchInfo, ...]
    original_quantity: Decimal
    remaining_quantity: Decimal

    @property
    def split_quantity(self) -> Decimal:
        return self.original_quantity - self.remaining_quantity


@dataclass(frozen=True)
class MergeResult:
    merged_batch: BatchInfo
    source_batches: tuple[BatchInfo, ...]
    source_quantities: tuple[Decimal, ...]
    total_quantity: Decimal


@dataclass(frozen=True)
class AdjustmentResult:
    adjustment_id: UUID
    batch_id: UUID
    batch_number: str
    old_quantity: Decimal
    new_quantity: Decimal
    difference: Decimal
    adjustment_type: AdjustmentType
    reason: str
    adjusted_by: str
    adjusted_on: datetime


@dataclass(frozen=True)
class GenealogyLink:
    """A direct parent or child of the queried batch, with the edge that joins them."""

    batch: BatchInfo
    relation_id: UUID
    relation_type: RelationType
    quantity_consumed: Decimal


@dataclass(frozen=True)
class ProductionInfo:
    operation_id: UUID
    operation_name: str
    operation_type: str | None
    process_id: UUID | None
    process_name: str | None
    order_line_id: UUID | None
    order_reference: str | None
    production_date: datetime | None


@dataclass(frozen=True)
class BatchGenealogy:
    batch: BatchInfo
    parents: tuple[GenealogyLink, ...] = ()
    children: tuple[GenealogyLink, ...] = ()
    production_info: ProductionInfo | None = None


@dataclass(frozen=True)
class InvariantCheck:
    """Outcome of a split/merge conservation check on one batch."""

    valid: bool
    message: str
    batch_id: UUID
    batch_number: str
    details: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Inventory, allocations, holds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryInfo:
    id: UUID
    material_id: str
    material_name: str | None
    inventory_type: InventoryType
    state: InventoryState
    quantity: Decimal
    unit: str
    batch_id: UUID | None = None
    location: str | None = None
    reserved_for_order_line_id: UUID | None = None


@dataclass(frozen=True)
class ReceiptResult:
    batch: BatchInfo
    inventory: InventoryInfo


@dataclass(frozen=True)
class AllocationInfo:
    id: UUID
    batch_id: UUID
    order_line_id: UUID
    allocated_qty: Decimal
    status: AllocationStatus
    created_by: str | None = None
    created_at: datetime | None = None
    released_by: str | None = None
    released_at: datetime | None = None


@dataclass(frozen=True)
class HoldInfo:
    id: UUID
    entity_type: HoldEntityType
    entity_id: UUID
    reason: str
    status: HoldStatus
    applied_by: str
    applied_at: datetime | None = None
    released_by: str | None = None
    released_at: datetime | None = None
    release_notes: str | None = None


# ---------------------------------------------------------------------------
# Operations and confirmations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationInfo:
    id: UUID
    order_line_id: UUID
    process_id: UUID
    name: str
    operation_type: str
    sequence_number: int
    status: OperationStatus
    target_qty: Decimal
    confirmed_qty: Decimal = ZERO
    block_reason: str | None = None
    blocked_by: str | None = None
    blocked_at: datetime | None = None


@dataclass(frozen=True)
class RoutingStep:
    """One step of a routing to instantiate against an order line."""

    name: str
    operation_type: str
    target_qty: Decimal


@dataclass(frozen=True)
class MaterialConsumption:
    """Request line: consume ``quantity`` from inventory unit ``inventory_id``."""

    inventory_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class ConsumedMaterial:
    """What a confirmation actually consumed (persisted on the record)."""

    inventory_id: UUID
    batch_id: UUID | None
    batch_number: str | None
    material_id: str
    quantity: Decimal

    def to_payload(self) -> dict[str, str | None]:
        return {
            "inventory_id": str(self.inventory_id),
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "batch_number": self.batch_number,
            "material_id": self.material_id,
            "quantity": str(self.quantity),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ConsumedMaterial":
        return cls(
            inventory_id=UUID(payload["inventory_id"]),
            batch_id=UUID(payload["batch_id"]) if payload.get("batch_id") else None,
            batch_number=payload.get("batch_number"),
            material_id=payload["material_id"],
            quantity=Decimal(payload["quantity"]),
        )


@dataclass(frozen=True)
class ConfirmationRequest:
    operation_id: UUID
    produced_qty: Decimal
    materials_consumed: tuple[MaterialConsumption, ...] = ()
    scrap_qty: Decimal = ZERO
    start_time: datetime | None = None
    end_time: datetime | None = None
    equipment_ids: tuple[str, ...] = ()
    operator_ids: tuple[str, ...] = ()
    notes: str | None = None
    force_partial: bool = False


@dataclass(frozen=True)
class ConfirmationInfo:
    id: UUID
    operation_id: UUID
    produced_qty: Decimal
    scrap_qty: Decimal
    start_time: datetime | None
    end_time: datetime | None
    status: ConfirmationStatus
    is_partial: bool
    remaining_qty: Decimal
    consumed_materials: tuple[ConsumedMaterial, ...]
    output_batch_ids: tuple[UUID, ...]
    equipment_ids: tuple[str, ...] = ()
    operator_ids: tuple[str, ...] = ()
    notes: str | None = None
    rejection_reason: str | None = None
    rejection_notes: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ConfirmationResult:
    confirmation: ConfirmationInfo
    operation: OperationInfo
    output_batches: tuple[BatchInfo, ...]
    total_confirmed_qty: Decimal
    next_operation: OperationInfo | None = None

    @property
    def status(self) -> ConfirmationStatus:
        return self.confirmation.status

    @property
    def is_partial(self) -> bool:
        return self.confirmation.is_partial

    @property
    def remaining_qty(self) -> Decimal:
        return self.confirmation.remaining_qty
