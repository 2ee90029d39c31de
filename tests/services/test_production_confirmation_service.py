"""
Tests for ProductionConfirmationService.

Covers:
- Partial and full confirmations, successor release, order line completion
- Inventory and batch consumption, output batches, TRANSFORM genealogy
- Precondition order and all-or-nothing behaviour on refusal
- Pluggable batch sizing
- Rejection
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from mes_kernel.domain.batch_sizing import BatchSizeRule, MaxBatchSizeSizer
from mes_kernel.domain.dtos import ConfirmationRequest, MaterialConsumption, RoutingStep
from mes_kernel.domain.statuses import (
    BatchCreatedVia,
    BatchStatus,
    ConfirmationStatus,
    HoldEntityType,
    InventoryState,
    InventoryType,
    OperationStatus,
    OrderLineStatus,
    ProcessStatus,
    RelationType,
)
from mes_kernel.exceptions import ErrorKind
from mes_kernel.models.batch import BatchModel, BatchRelationModel
from mes_kernel.models.inventory import InventoryModel
from mes_kernel.models.process import OrderLineModel
from mes_kernel.services.audit_service import AuditService
from mes_kernel.services.production_confirmation_service import ProductionConfirmationService


def _request(operation_id, produced, *lines, **kwargs) -> ConfirmationRequest:
    return ConfirmationRequest(
        operation_id=operation_id,
        produced_qty=Decimal(str(produced)),
        materials_consumed=tuple(
            MaterialConsumption(inventory.id, Decimal(str(quantity))) for inventory, quantity in lines
        ),
        **kwargs,
    )


class TestConfirm:

    def test_partial_confirmation(self, confirmation_service, routed_order_line, create_inventory, session, actor):
        _, line, ops = routed_order_line()
        steel = create_inventory(quantity="200")

        result = confirmation_service.confirm(_request(ops[0].id, 60, (steel, 80)), actor=actor).unwrap()

        assert result.status == ConfirmationStatus.PARTIALLY_CONFIRMED
        assert result.is_partial
        assert result.remaining_qty == Decimal("40")
        assert result.total_confirmed_qty == Decimal("60")
        assert result.operation.status == OperationStatus.IN_PROGRESS
        assert result.operation.confirmed_qty == Decimal("60")
        assert result.next_operation is None
        assert result.confirmation.created_by == actor

        session.refresh(steel)
        assert steel.quantity == Decimal("120")
        assert steel.state == InventoryState.AVAILABLE.value
        assert session.get(BatchModel, steel.batch_id).quantity == Decimal("120")
        assert session.get(OrderLineModel, line.id).status == OrderLineStatus.IN_PROGRESS.value

    def test_full_confirmation_readies_next(self, confirmation_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="200")
        confirmation_service.confirm(_request(ops[0].id, 60, (steel, 60))).unwrap()

        result = confirmation_service.confirm(_request(ops[0].id, 40, (steel, 40))).unwrap()

        assert result.status == ConfirmationStatus.CONFIRMED
        assert not result.is_partial
        assert result.total_confirmed_qty == Decimal("100")
        assert result.operation.status == OperationStatus.CONFIRMED
        assert result.next_operation.id == ops[1].id
        assert result.next_operation.status == OperationStatus.READY

    def test_forced_partial_keeps_operation_open(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        result = confirmation_service.confirm(_request(ops[0].id, 100, force_partial=True)).unwrap()

        assert result.is_partial
        assert result.remaining_qty == Decimal("0")
        assert result.operation.status == OperationStatus.IN_PROGRESS

    def test_last_operation_completes_order_line(self, confirmation_service, routed_order_line, session):
        _, line, ops = routed_order_line()
        for op in ops:
            result = confirmation_service.confirm(_request(op.id, 100)).unwrap()

        assert result.next_operation is None
        assert session.get(OrderLineModel, line.id).status == OrderLineStatus.COMPLETED.value

    def test_single_step_routing_completes_at_once(self, confirmation_service, routed_order_line, session):
        _, line, ops = routed_order_line(steps=[RoutingStep("Pack", "PACKING", Decimal("10"))])
        confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        assert session.get(OrderLineModel, line.id).status == OrderLineStatus.COMPLETED.value

    def test_default_actor_is_system(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        result = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        assert result.confirmation.created_by == "SYSTEM"
        assert result.output_batches[0].created_by == "SYSTEM"

    def test_record_fields_persisted(self, confirmation_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="50")
        start = datetime(2026, 2, 6, 6, 0, tzinfo=timezone.utc)
        result = confirmation_service.confirm(
            _request(
                ops[0].id,
                45,
                (steel, 50),
                scrap_qty=Decimal("5"),
                start_time=start,
                end_time=start + timedelta(hours=2),
                equipment_ids=("FURNACE-1",),
                operator_ids=("op-7", "op-9"),
                notes="heat 42",
            )
        ).unwrap()

        stored = confirmation_service.get_confirmation(result.confirmation.id).unwrap()
        assert stored.scrap_qty == Decimal("5")
        assert stored.equipment_ids == ("FURNACE-1",)
        assert stored.operator_ids == ("op-7", "op-9")
        assert stored.notes == "heat 42"
        assert stored.output_batch_ids == tuple(b.id for b in result.output_batches)
        assert len(stored.consumed_materials) == 1
        consumed = stored.consumed_materials[0]
        assert consumed.inventory_id == steel.id
        assert consumed.batch_id == steel.batch_id
        assert consumed.quantity == Decimal("50")

    def test_repeated_inventory_lines_are_summed(self, confirmation_service, routed_order_line, create_inventory, session):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        result = confirmation_service.confirm(_request(ops[0].id, 50, (steel, 30), (steel, 30))).unwrap()

        assert [c.quantity for c in result.confirmation.consumed_materials] == [Decimal("60")]
        session.refresh(steel)
        assert steel.quantity == Decimal("40")


class TestConsumptionAndOutputs:

    def test_consuming_everything_closes_input(self, confirmation_service, routed_order_line, create_inventory, session):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        confirmation_service.confirm(_request(ops[0].id, 100, (steel, 100))).unwrap()

        session.refresh(steel)
        batch = session.get(BatchModel, steel.batch_id)
        assert steel.quantity == Decimal("0")
        assert steel.state == InventoryState.CONSUMED.value
        assert batch.status == BatchStatus.CONSUMED.value

    def test_output_batch_and_inventory(self, confirmation_service, routed_order_line, create_inventory, session):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        result = confirmation_service.confirm(_request(ops[0].id, 90, (steel, 100))).unwrap()

        (output,) = result.output_batches
        assert output.batch_number == "BATCH-ME-20260206-001"
        assert output.material_id == "IM-MELTING"
        assert output.material_name == "Melting Output"
        assert output.quantity == Decimal("90")
        assert output.unit == "KG"
        assert output.status == BatchStatus.QUALITY_PENDING
        assert output.created_via == BatchCreatedVia.PRODUCTION
        assert output.generated_at_operation_id == ops[0].id
        assert output.confirmation_id == result.confirmation.id

        inventory = session.scalars(select(InventoryModel).where(InventoryModel.batch_id == output.id)).one()
        assert inventory.inventory_type == InventoryType.IM.value
        assert inventory.state == InventoryState.AVAILABLE.value
        assert inventory.quantity == Decimal("90")
        assert inventory.location == "MELTING Area"

    def test_output_numbers_count_up(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        first = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        second = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        assert first.output_batches[0].batch_number == "BATCH-ME-20260206-001"
        assert second.output_batches[0].batch_number == "BATCH-ME-20260206-002"

    def test_transform_relations_per_input(self, confirmation_service, routed_order_line, create_inventory, session):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        scrap = create_inventory(quantity="30", material_id="RM-SCRAP")
        result = confirmation_service.confirm(_request(ops[0].id, 100, (steel, 70), (scrap, 30))).unwrap()

        output_id = result.output_batches[0].id
        relations = session.scalars(
            select(BatchRelationModel).where(BatchRelationModel.child_batch_id == output_id)
        ).all()
        assert {(r.parent_batch_id, r.quantity_consumed) for r in relations} == {
            (steel.batch_id, Decimal("70")),
            (scrap.batch_id, Decimal("30")),
        }
        assert {r.relation_type for r in relations} == {RelationType.TRANSFORM.value}
        assert {r.operation_id for r in relations} == {ops[0].id}

    def test_output_genealogy_has_production_context(
        self, confirmation_service, lifecycle_service, routed_order_line, create_inventory
    ):
        process, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        result = confirmation_service.confirm(_request(ops[0].id, 100, (steel, 100))).unwrap()

        tree = lifecycle_service.get_genealogy(result.output_batches[0].id).unwrap()
        assert [link.batch.id for link in tree.parents] == [steel.batch_id]
        assert tree.production_info.operation_name == "Melting"
        assert tree.production_info.process_name == process.name
        assert tree.production_info.order_reference == "SO-1001"

    def test_inventory_without_batch(self, confirmation_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        loose = create_inventory(quantity="20", with_batch=False)
        result = confirmation_service.confirm(_request(ops[0].id, 20, (loose, 20))).unwrap()
        assert result.confirmation.consumed_materials[0].batch_id is None

    def test_reserved_inventory_for_this_line(self, confirmation_service, routed_order_line, create_inventory):
        _, line, ops = routed_order_line()
        reserved = create_inventory(state=InventoryState.RESERVED, reserved_for_order_line_id=line.id)
        assert confirmation_service.confirm(_request(ops[0].id, 10, (reserved, 10))).is_success


class TestBatchSizing:

    def test_sizer_cuts_outputs(
        self, session, deterministic_clock, kernel_config, routed_order_line, create_inventory
    ):
        service = ProductionConfirmationService(
            session,
            clock=deterministic_clock,
            config=kernel_config,
            sizer=MaxBatchSizeSizer([BatchSizeRule(max_batch_size=Decimal("40"))]),
        )
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        result = service.confirm(_request(ops[0].id, 100, (steel, 100))).unwrap()

        assert [b.batch_number for b in result.output_batches] == [
            "BATCH-ME-20260206-001-01",
            "BATCH-ME-20260206-001-02",
            "BATCH-ME-20260206-001-03",
        ]
        assert [b.quantity for b in result.output_batches] == [Decimal("40"), Decimal("40"), Decimal("20")]
        parents = session.scalars(
            select(BatchRelationModel.child_batch_id).where(BatchRelationModel.parent_batch_id == steel.batch_id)
        ).all()
        assert set(parents) == {b.id for b in result.output_batches}

    def test_bad_sizer_rejected(self, session, deterministic_clock, routed_order_line):
        class _LossySizer:
            def split(self, quantity, operation_type=None, product_sku=None, material_id=None):
                return [quantity - 1]

        service = ProductionConfirmationService(session, clock=deterministic_clock, sizer=_LossySizer())
        _, _, ops = routed_order_line()
        result = service.confirm(_request(ops[0].id, 10))
        assert result.error_kind == ErrorKind.VALIDATION_FAILURE
        assert result.error.details["field"] == "batch_sizes"


class TestPreconditions:

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"produced": 0}, "produced_qty"),
            ({"produced": 10, "scrap_qty": Decimal("-1")}, "scrap_qty"),
        ],
    )
    def test_request_validation(self, confirmation_service, routed_order_line, kwargs, field):
        _, _, ops = routed_order_line()
        produced = kwargs.pop("produced")
        result = confirmation_service.confirm(_request(ops[0].id, produced, **kwargs))
        assert result.error_kind == ErrorKind.VALIDATION_FAILURE
        assert result.error.details["field"] == field

    def test_end_before_start(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        start = datetime(2026, 2, 6, 8, 0, tzinfo=timezone.utc)
        result = confirmation_service.confirm(
            _request(ops[0].id, 10, start_time=start, end_time=start - timedelta(minutes=1))
        )
        assert result.error.details["field"] == "end_time"

    def test_non_positive_consumption_line(self, confirmation_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        steel = create_inventory()
        result = confirmation_service.confirm(_request(ops[0].id, 10, (steel, 0)))
        assert result.error.details["field"] == "materials_consumed[1].quantity"

    def test_validation_runs_before_lookups(self, confirmation_service):
        result = confirmation_service.confirm(_request(uuid4(), 0))
        assert result.error_kind == ErrorKind.VALIDATION_FAILURE

    def test_unknown_operation(self, confirmation_service):
        assert confirmation_service.confirm(_request(uuid4(), 1)).error.code == "OPERATION_NOT_FOUND"

    def test_not_started_operation(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        result = confirmation_service.confirm(_request(ops[1].id, 1))
        assert result.error.code == "OPERATION_NOT_EXECUTABLE"
        assert result.error_kind == ErrorKind.INVALID_STATE

    def test_blocked_operation(self, confirmation_service, operation_service, routed_order_line):
        _, _, ops = routed_order_line()
        operation_service.block_operation(ops[0].id, "maintenance").unwrap()
        assert confirmation_service.confirm(_request(ops[0].id, 1)).error.code == "OPERATION_NOT_EXECUTABLE"

    def test_not_executable_beats_hold(self, confirmation_service, hold_service, routed_order_line):
        _, _, ops = routed_order_line()
        hold_service.apply_hold(HoldEntityType.OPERATION, ops[1].id, "qa").unwrap()
        assert confirmation_service.confirm(_request(ops[1].id, 1)).error.code == "OPERATION_NOT_EXECUTABLE"

    @pytest.mark.parametrize("held", ["operation", "process"])
    def test_holds_block_confirmation(self, confirmation_service, hold_service, routed_order_line, held):
        process, _, ops = routed_order_line()
        if held == "operation":
            hold_service.apply_hold(HoldEntityType.OPERATION, ops[0].id, "qa").unwrap()
        else:
            hold_service.apply_hold(HoldEntityType.PROCESS, process.id, "audit").unwrap()

        result = confirmation_service.confirm(_request(ops[0].id, 1))
        assert result.error_kind == ErrorKind.ON_HOLD
        assert result.error.details["entity_type"] == held

    def test_inactive_process(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line(process_status=ProcessStatus.INACTIVE)
        result = confirmation_service.confirm(_request(ops[0].id, 1))
        assert result.error.code == "PROCESS_NOT_ACTIVE"

    def test_held_input_batch(self, confirmation_service, hold_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        steel = create_inventory()
        hold_service.apply_hold(HoldEntityType.BATCH, steel.batch_id, "retest").unwrap()
        assert confirmation_service.confirm(_request(ops[0].id, 1, (steel, 1))).error_kind == ErrorKind.ON_HOLD

    def test_held_input_inventory(self, confirmation_service, hold_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        steel = create_inventory()
        hold_service.apply_hold(HoldEntityType.INVENTORY, steel.id, "damp").unwrap()
        assert confirmation_service.confirm(_request(ops[0].id, 1, (steel, 1))).error_kind == ErrorKind.ON_HOLD

    @pytest.mark.parametrize("state", [InventoryState.BLOCKED, InventoryState.CONSUMED, InventoryState.RESERVED])
    def test_unconsumable_input(self, confirmation_service, routed_order_line, create_inventory, state):
        _, _, ops = routed_order_line()
        inventory = create_inventory(state=state, reserved_for_order_line_id=None)
        result = confirmation_service.confirm(_request(ops[0].id, 1, (inventory, 1)))
        assert result.error.code == "INVENTORY_NOT_CONSUMABLE"

    def test_reserved_for_other_line(self, confirmation_service, routed_order_line, create_order_line, create_inventory):
        _, _, ops = routed_order_line()
        other = create_order_line(order_reference="SO-OTHER")
        inventory = create_inventory(state=InventoryState.RESERVED, reserved_for_order_line_id=other.id)
        result = confirmation_service.confirm(_request(ops[0].id, 1, (inventory, 1)))
        assert result.error.code == "INVENTORY_NOT_CONSUMABLE"

    def test_insufficient_inventory(self, confirmation_service, routed_order_line, create_inventory):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="200")
        result = confirmation_service.confirm(_request(ops[0].id, 100, (steel, 300)))
        assert result.error.code == "INSUFFICIENT_INVENTORY_QUANTITY"
        assert "Available: 200.00, Requested: 300.00" in result.message

    def test_insufficient_batch_behind_inventory(
        self, confirmation_service, routed_order_line, create_batch, create_inventory
    ):
        _, _, ops = routed_order_line()
        batch = create_batch(quantity="50")
        inventory = create_inventory(quantity="100", batch=batch)
        result = confirmation_service.confirm(_request(ops[0].id, 80, (inventory, 80)))
        assert result.error.code == "INSUFFICIENT_BATCH_QUANTITY"

    def test_scrapped_batch_behind_inventory(
        self, confirmation_service, lifecycle_service, routed_order_line, create_inventory, session
    ):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        lifecycle_service.scrap_batch(steel.batch_id, "contaminated").unwrap()

        result = confirmation_service.confirm(_request(ops[0].id, 50, (steel, 50)))

        assert result.error.code == "INVALID_BATCH_STATE"
        batch = session.get(BatchModel, steel.batch_id)
        session.refresh(batch)
        assert batch.status == BatchStatus.SCRAPPED.value
        assert batch.quantity == Decimal("100")

    @pytest.mark.parametrize("status", [BatchStatus.BLOCKED, BatchStatus.SPLIT, BatchStatus.CONSUMED])
    def test_unconsumable_batch_behind_inventory(
        self, confirmation_service, routed_order_line, create_batch, create_inventory, status
    ):
        _, _, ops = routed_order_line()
        batch = create_batch(quantity="100", status=status)
        inventory = create_inventory(quantity="100", batch=batch)
        result = confirmation_service.confirm(_request(ops[0].id, 10, (inventory, 10)))
        assert result.error_kind == ErrorKind.INVALID_STATE

    def test_refusal_changes_nothing(self, confirmation_service, routed_order_line, create_inventory, session):
        _, line, ops = routed_order_line()
        good = create_inventory(quantity="100")
        short = create_inventory(quantity="10")
        batches_before = len(session.scalars(select(BatchModel.id)).all())

        result = confirmation_service.confirm(_request(ops[0].id, 50, (good, 50), (short, 20)))

        assert result.error_kind == ErrorKind.INSUFFICIENT_QUANTITY
        session.refresh(good)
        assert good.quantity == Decimal("100")
        assert session.get(BatchModel, good.batch_id).quantity == Decimal("100")
        assert len(session.scalars(select(BatchModel.id)).all()) == batches_before
        assert confirmation_service.list_confirmations_for_operation(ops[0].id).unwrap() == []
        assert session.get(OrderLineModel, line.id).status == OrderLineStatus.CREATED.value


class TestReject:

    def test_reject_marks_record_only(self, confirmation_service, routed_order_line, create_inventory, session, actor):
        _, _, ops = routed_order_line()
        steel = create_inventory(quantity="100")
        confirmed = confirmation_service.confirm(_request(ops[0].id, 60, (steel, 60))).unwrap()

        rejected = confirmation_service.reject(
            confirmed.confirmation.id, "wrong heat", notes="recount", actor=actor
        ).unwrap()

        assert rejected.status == ConfirmationStatus.REJECTED
        assert rejected.rejection_reason == "wrong heat"
        assert rejected.rejection_notes == "recount"
        assert rejected.rejected_by == actor
        assert rejected.rejected_at is not None
        session.refresh(steel)
        assert steel.quantity == Decimal("40")

    def test_double_reject(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        confirmed = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        confirmation_service.reject(confirmed.confirmation.id, "first").unwrap()

        result = confirmation_service.reject(confirmed.confirmation.id, "second")
        assert result.error.code == "CONFIRMATION_ALREADY_REJECTED"

    def test_blank_reason_and_unknown_id(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        confirmed = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        assert confirmation_service.reject(confirmed.confirmation.id, " ").error.code == "BLANK_REASON"
        assert confirmation_service.reject(uuid4(), "x").error_kind == ErrorKind.NOT_FOUND


class TestQueriesAndAudit:

    def test_list_for_operation(self, confirmation_service, routed_order_line):
        _, _, ops = routed_order_line()
        first = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()
        second = confirmation_service.confirm(_request(ops[0].id, 20)).unwrap()

        listed = confirmation_service.list_confirmations_for_operation(ops[0].id).unwrap()
        assert {c.id for c in listed} == {first.confirmation.id, second.confirmation.id}
        assert confirmation_service.list_confirmations_for_operation(uuid4()).error_kind == ErrorKind.NOT_FOUND

    def test_confirmation_audited(self, confirmation_service, routed_order_line, session, actor):
        _, _, ops = routed_order_line()
        result = confirmation_service.confirm(_request(ops[0].id, 100), actor=actor).unwrap()

        audit = AuditService(session=session)
        assert [e.action for e in audit.history("ProductionConfirmation", result.confirmation.id)] == ["CREATE"]
        operation_changes = {
            (e.field_name, e.new_value) for e in audit.history("Operation", ops[0].id) if e.action != "CREATE"
        }
        assert ("confirmed_qty", "100") in operation_changes
        assert ("status", "CONFIRMED") in operation_changes

    def test_confirmation_logged_with_context(self, confirmation_service, routed_order_line, captured_logs):
        _, _, ops = routed_order_line()
        result = confirmation_service.confirm(_request(ops[0].id, 10)).unwrap()

        record = next(r for r in captured_logs() if r["message"] == "production_confirmed")
        assert record["operation_id"] == str(ops[0].id)
        assert record["confirmation_id"] == str(result.confirmation.id)
        assert record["output_batches"] == ["BATCH-ME-20260206-001"]

    def test_rejected_request_logged_as_warning(self, confirmation_service, captured_logs):
        confirmation_service.confirm(_request(uuid4(), 1))
        record = next(r for r in captured_logs() if r["message"] == "production_confirm_rejected")
        assert record["level"] == "WARNING"
        assert record["error_code"] == "OPERATION_NOT_FOUND"
