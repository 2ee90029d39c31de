"""
ProductionConfirmationService -- record production against an operation.

Responsibility:
    Orchestrates one production confirmation: checks the operation, its
    process and holds, consumes input inventory and batches, creates the
    output batches and their TRANSFORM genealogy, persists the immutable
    confirmation record and advances the operation state machine.

Architecture position:
    Kernel > Services -- imperative shell.  Composes HoldService,
    InventoryStateValidator, BatchLifecycleService (with its
    BatchNumberService) and OperationService on one session, all with
    ``auto_commit=False``; this service owns the commit.

Invariants enforced:
    - All or nothing: inventory decrements, batch creation, relations, the
      confirmation row and the operation/order-line updates commit together.
    - Preconditions are checked in a fixed order and the first failure wins:
      operation exists, operation executable, no hold on operation or
      process, process ACTIVE, every input and its backing batch
      consumable in full.
    - confirmed_qty only grows; a CONFIRMED operation releases exactly one
      successor or completes the order line.
    - A confirmation row changes once at most, to REJECTED.

Failure modes:
    - VALIDATION_FAILURE for non-positive produced quantity, negative scrap,
      non-positive consumption lines or an end time before the start time.
    - NOT_FOUND, INVALID_STATE, ON_HOLD and INSUFFICIENT_QUANTITY from the
      preconditions above.
    - CONFLICT when a generated output batch number already exists.
"""

from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_kernel.config import KernelConfig
from mes_kernel.domain import operation_state
from mes_kernel.domain.batch_sizing import BatchSizer, SingleBatchSizer
from mes_kernel.domain.clock import Clock
from mes_kernel.domain.dtos import (
    ConfirmationInfo,
    ConfirmationRequest,
    ConfirmationResult,
    ConsumedMaterial,
    MaterialConsumption,
)
from mes_kernel.domain.quantities import ZERO, format_quantity, quantity_sum, to_quantity
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import (
    BatchCreatedVia,
    BatchStatus,
    ConfirmationStatus,
    HoldEntityType,
    InventoryState,
    InventoryType,
    OperationStatus,
    OrderLineStatus,
    RelationType,
)
from mes_kernel.exceptions import (
    BlankReasonError,
    ConfirmationAlreadyRejectedError,
    ConfirmationNotFoundError,
    InsufficientBatchQuantityError,
    InvalidBatchStateError,
    InvalidQuantityError,
    OperationNotExecutableError,
    OperationNotFoundError,
    ProcessNotActiveError,
    ProcessNotFoundError,
    ValidationFailureError,
)
from mes_kernel.logging_config import LogContext, get_logger
from mes_kernel.models.batch import BatchModel
from mes_kernel.models.confirmation import ProductionConfirmationModel
from mes_kernel.models.inventory import InventoryModel
from mes_kernel.models.process import OperationModel, OrderLineModel, ProcessModel
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService
from mes_kernel.services.batch_lifecycle_service import BatchLifecycleService
from mes_kernel.services.hold_service import HoldService
from mes_kernel.services.inventory_state_validator import InventoryStateValidator
from mes_kernel.services.operation_service import OperationService

logger = get_logger("services.production_confirmation")

UNCONSUMABLE_BATCH_STATUSES = frozenset(
    {BatchStatus.BLOCKED, BatchStatus.SPLIT, BatchStatus.CONSUMED, BatchStatus.SCRAPPED}
)


def _aggregate(lines: Sequence[MaterialConsumption]) -> dict[UUID, Decimal]:
    """Sum repeated inventory ids, keeping first-seen order."""
    totals: dict[UUID, Decimal] = {}
    for index, line in enumerate(lines, start=1):
        quantity = to_quantity(line.quantity)
        if quantity <= ZERO:
            raise InvalidQuantityError(
                f"materials_consumed[{index}].quantity", format_quantity(quantity)
            )
        totals[line.inventory_id] = totals.get(line.inventory_id, ZERO) + quantity
    return totals


class ProductionConfirmationService(BaseService):
    """
    Production confirmation engine.

    Contract:
        ``confirm`` and ``reject`` return ``OperationResult`` and run as one
        unit of work.  Output batch quantities come from the injected
        ``BatchSizer`` (one batch per confirmation by default).
    """

    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        config: KernelConfig | None = None,
        sizer: BatchSizer | None = None,
        holds: HoldService | None = None,
        inventory: InventoryStateValidator | None = None,
        lifecycle: BatchLifecycleService | None = None,
        operations: OperationService | None = None,
    ):
        self.config = config or KernelConfig.with_defaults()
        super().__init__(
            session,
            clock=clock,
            audit=audit,
            auto_commit=auto_commit,
            default_actor=self.config.default_actor,
        )
        self.sizer = sizer or SingleBatchSizer()
        self.holds = holds or HoldService(session, clock=self.clock, audit=audit, auto_commit=False)
        self.inventory = inventory or InventoryStateValidator(
            session, clock=self.clock, audit=audit, auto_commit=False, holds=self.holds
        )
        self.lifecycle = lifecycle or BatchLifecycleService(
            session, clock=self.clock, audit=audit, auto_commit=False, config=self.config
        )
        self.operations = operations or OperationService(
            session, clock=self.clock, audit=audit, auto_commit=False
        )

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def confirm(
        self,
        request: ConfirmationRequest,
        actor: str | None = None,
    ) -> OperationResult[ConfirmationResult]:
        """
        Confirm production for ``request.operation_id``.

        ``total = confirmed_qty + produced_qty``.  The confirmation is
        partial when ``request.force_partial`` is set or the total is below
        the operation's target; a partial confirmation leaves the operation
        IN_PROGRESS, a full one CONFIRMS it and readies the next operation.
        """
        actor = self._actor(actor)
        confirmation_id = uuid4()

        def work() -> ConfirmationResult:
            produced, scrap, consumption = self._validate_request(request)

            # Preconditions, first failure wins
            operation = self.session.get(OperationModel, request.operation_id, with_for_update=True)
            if operation is None:
                raise OperationNotFoundError(request.operation_id)
            if not operation_state.is_executable(operation.status):
                raise OperationNotExecutableError(operation.id, operation.status)
            self.holds.ensure_not_on_hold(HoldEntityType.OPERATION, operation.id)
            self.holds.ensure_not_on_hold(HoldEntityType.PROCESS, operation.process_id)
            process = self.session.get(ProcessModel, operation.process_id)
            if process is None:
                raise ProcessNotFoundError(operation.process_id)
            if not process.is_active:
                raise ProcessNotActiveError(process.id, process.status)

            inputs = self._lock_inputs(operation, consumption)

            # Effects
            consumed = self._consume_inputs(inputs, actor)
            outcome = operation_state.resolve_confirmation(
                operation.confirmed_qty, produced, operation.target_qty, request.force_partial
            )
            order_line = self.session.get(OrderLineModel, operation.order_line_id, with_for_update=True)
            outputs = self._create_outputs(
                operation, order_line, confirmation_id, produced, inputs, actor
            )

            confirmation = ProductionConfirmationModel(
                id=confirmation_id,
                operation_id=operation.id,
                produced_qty=produced,
                scrap_qty=scrap,
                start_time=request.start_time,
                end_time=request.end_time,
                status=outcome.confirmation_status.value,
                is_partial=outcome.is_partial,
                remaining_qty=outcome.remaining_qty,
                consumed_materials=[item.to_payload() for item in consumed],
                output_batch_ids=[str(batch.id) for batch in outputs],
                equipment_ids=list(request.equipment_ids),
                operator_ids=list(request.operator_ids),
                notes=request.notes,
                created_by=actor,
            )
            self.session.add(confirmation)

            old_confirmed = operation.confirmed_qty
            operation.confirmed_qty = outcome.total_confirmed
            operation.updated_by = actor
            self.audit.log_update(
                "Operation", operation.id, "confirmed_qty", old_confirmed, outcome.total_confirmed, actor
            )
            self.operations.transition(operation, outcome.operation_status, actor)
            successor = None
            if outcome.operation_status == OperationStatus.CONFIRMED:
                successor = self.operations.release_next(operation, actor)
            self._advance_order_line(order_line, outcome.is_partial, successor is None, actor)

            self.session.flush()
            self.audit.log_create(
                "ProductionConfirmation",
                confirmation.id,
                f"Confirmed {format_quantity(produced)} for operation {operation.name} "
                f"({outcome.confirmation_status.value})",
                actor,
            )
            logger.info(
                "production_confirmed",
                extra={
                    "status": outcome.confirmation_status.value,
                    "produced_qty": str(produced),
                    "scrap_qty": str(scrap),
                    "total_confirmed": str(outcome.total_confirmed),
                    "remaining_qty": str(outcome.remaining_qty),
                    "inputs": len(consumed),
                    "output_batches": [batch.batch_number for batch in outputs],
                },
            )
            return ConfirmationResult(
                confirmation=confirmation.to_dto(),
                operation=operation.to_dto(),
                output_batches=tuple(batch.to_dto() for batch in outputs),
                total_confirmed_qty=outcome.total_confirmed,
                next_operation=successor.to_dto() if successor is not None else None,
            )

        with LogContext.bind(
            operation_id=request.operation_id, confirmation_id=confirmation_id, actor_id=actor
        ):
            return self._execute(
                "production_confirm", work, operation_id=str(request.operation_id)
            )

    def _validate_request(
        self, request: ConfirmationRequest
    ) -> tuple[Decimal, Decimal, dict[UUID, Decimal]]:
        produced = to_quantity(request.produced_qty)
        if produced <= ZERO:
            raise InvalidQuantityError("produced_qty", format_quantity(produced))
        scrap = to_quantity(request.scrap_qty or ZERO)
        if scrap < ZERO:
            raise InvalidQuantityError("scrap_qty", format_quantity(scrap), "must not be negative")
        if (
            request.start_time is not None
            and request.end_time is not None
            and request.end_time < request.start_time
        ):
            raise ValidationFailureError("end_time", "must not be before start_time")
        return produced, scrap, _aggregate(request.materials_consumed)

    def _lock_inputs(
        self,
        operation: OperationModel,
        consumption: dict[UUID, Decimal],
    ) -> list[tuple[InventoryModel, BatchModel | None, Decimal]]:
        """Lock and check every input; rows are locked in id order."""
        locked: dict[UUID, tuple[InventoryModel, BatchModel | None]] = {}
        for inventory_id in sorted(consumption, key=str):
            quantity = consumption[inventory_id]
            inventory = self.inventory.require_consumable(
                inventory_id, quantity, operation.order_line_id
            )
            batch = None
            if inventory.batch_id is not None:
                batch = self.lifecycle.lock_batch(inventory.batch_id)
                self.holds.ensure_not_on_hold(HoldEntityType.BATCH, batch.id)
                status = BatchStatus(batch.status)
                if status in UNCONSUMABLE_BATCH_STATUSES:
                    raise InvalidBatchStateError(batch.id, status, "consume")
                if quantity > batch.quantity:
                    raise InsufficientBatchQuantityError(batch.id, batch.quantity, quantity)
            locked[inventory_id] = (inventory, batch)
        return [(*locked[inventory_id], consumption[inventory_id]) for inventory_id in consumption]

    def _consume_inputs(
        self,
        inputs: list[tuple[InventoryModel, BatchModel | None, Decimal]],
        actor: str,
    ) -> list[ConsumedMaterial]:
        consumed = []
        for inventory, batch, quantity in inputs:
            self.inventory.consume(inventory, quantity, actor)
            if batch is not None:
                self.lifecycle.consume_quantity(batch, quantity, actor)
            consumed.append(
                ConsumedMaterial(
                    inventory_id=inventory.id,
                    batch_id=batch.id if batch is not None else None,
                    batch_number=batch.batch_number if batch is not None else None,
                    material_id=inventory.material_id,
                    quantity=quantity,
                )
            )
        return consumed

    def _create_outputs(
        self,
        operation: OperationModel,
        order_line: OrderLineModel | None,
        confirmation_id: UUID,
        produced: Decimal,
        inputs: list[tuple[InventoryModel, BatchModel | None, Decimal]],
        actor: str,
    ) -> list[BatchModel]:
        material_id = f"IM-{operation.operation_type.upper()}"
        product_sku = order_line.product_sku if order_line is not None else None
        unit = inputs[0][0].unit if inputs else self.config.default_unit

        sizes = self.sizer.split(
            produced,
            operation_type=operation.operation_type,
            product_sku=product_sku,
            material_id=material_id,
        )
        if not sizes or any(size <= ZERO for size in sizes) or quantity_sum(sizes) != produced:
            raise ValidationFailureError(
                "batch_sizes",
                f"sizer returned {[str(size) for size in sizes]} for {format_quantity(produced)}",
            )

        base_number = self.lifecycle.numbers.generate_production_number(
            operation.operation_type, product_sku=product_sku, material_id=material_id
        )
        outputs = []
        for index, size in enumerate(sizes, start=1):
            number = base_number if len(sizes) == 1 else f"{base_number}-{index:02d}"
            batch = self.lifecycle.create_batch(
                batch_number=number,
                material_id=material_id,
                material_name=f"{operation.name} Output",
                quantity=size,
                unit=unit,
                status=BatchStatus.QUALITY_PENDING,
                created_via=BatchCreatedVia.PRODUCTION,
                generated_at_operation_id=operation.id,
                confirmation_id=confirmation_id,
                actor=actor,
            )
            for _, source, consumed_qty in inputs:
                if source is not None:
                    self.lifecycle.create_relation(
                        source, batch, RelationType.TRANSFORM, consumed_qty, actor, operation_id=operation.id
                    )
            output_inventory = InventoryModel(
                material_id=material_id,
                material_name=batch.material_name,
                inventory_type=InventoryType.IM.value,
                state=InventoryState.AVAILABLE.value,
                quantity=size,
                unit=unit,
                location=f"{operation.operation_type} Area",
                batch_id=batch.id,
                created_by=actor,
            )
            self.session.add(output_inventory)
            outputs.append(batch)
        return outputs

    def _advance_order_line(
        self,
        order_line: OrderLineModel | None,
        is_partial: bool,
        routing_done: bool,
        actor: str,
    ) -> None:
        if order_line is None:
            return
        current = OrderLineStatus(order_line.status)
        target = current
        if current == OrderLineStatus.CREATED:
            target = OrderLineStatus.IN_PROGRESS
        if not is_partial and routing_done:
            target = OrderLineStatus.COMPLETED
        if target == current:
            return
        order_line.status = target.value
        order_line.updated_by = actor
        self.audit.log_status_change("OrderLine", order_line.id, current, target, actor)
        logger.info(
            "order_line_status_changed",
            extra={"order_line_id": str(order_line.id), "from": current.value, "to": target.value},
        )

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    def reject(
        self,
        confirmation_id: UUID,
        reason: str,
        notes: str | None = None,
        actor: str | None = None,
    ) -> OperationResult[ConfirmationInfo]:
        """
        Mark a confirmation REJECTED.

        Inventory consumption and output batches stay as they are; reversal
        is a separate compensating operation.
        """
        actor = self._actor(actor)

        def work() -> ConfirmationInfo:
            if not reason or not reason.strip():
                raise BlankReasonError()
            confirmation = self.session.get(
                ProductionConfirmationModel, confirmation_id, with_for_update=True
            )
            if confirmation is None:
                raise ConfirmationNotFoundError(confirmation_id)
            if confirmation.is_rejected:
                raise ConfirmationAlreadyRejectedError(confirmation_id)

            previous = ConfirmationStatus(confirmation.status)
            confirmation.status = ConfirmationStatus.REJECTED.value
            confirmation.rejection_reason = reason.strip()
            confirmation.rejection_notes = notes
            confirmation.rejected_by = actor
            confirmation.rejected_at = self.clock.now()
            confirmation.updated_by = actor
            self.session.flush()
            self.audit.log_status_change(
                "ProductionConfirmation", confirmation.id, previous, ConfirmationStatus.REJECTED, actor
            )
            logger.info(
                "production_confirmation_rejected",
                extra={"previous_status": previous.value, "reason": confirmation.rejection_reason},
            )
            return confirmation.to_dto()

        with LogContext.bind(confirmation_id=confirmation_id, actor_id=actor):
            return self._execute("production_reject", work, confirmation_id=str(confirmation_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_confirmation(self, confirmation_id: UUID) -> OperationResult[ConfirmationInfo]:
        def work() -> ConfirmationInfo:
            confirmation = self.session.get(ProductionConfirmationModel, confirmation_id)
            if confirmation is None:
                raise ConfirmationNotFoundError(confirmation_id)
            return confirmation.to_dto()

        return self._execute("confirmation_get", work, confirmation_id=str(confirmation_id))

    def list_confirmations_for_operation(
        self, operation_id: UUID
    ) -> OperationResult[list[ConfirmationInfo]]:
        def work() -> list[ConfirmationInfo]:
            if self.session.get(OperationModel, operation_id) is None:
                raise OperationNotFoundError(operation_id)
            rows = self.session.scalars(
                select(ProductionConfirmationModel)
                .where(ProductionConfirmationModel.operation_id == operation_id)
                .order_by(ProductionConfirmationModel.created_at)
            )
            return [row.to_dto() for row in rows]

        return self._execute("confirmation_list", work, operation_id=str(operation_id))
