"""
Tests for BatchAllocationService.

Available quantity is always batch quantity minus the sum of ALLOCATED
allocations; allocations are never allowed to push it below zero.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from mes_kernel.domain.statuses import AllocationStatus, BatchStatus, HoldEntityType
from mes_kernel.exceptions import ErrorKind
from mes_kernel.services.audit_service import AuditService


@pytest.fixture
def three_lines(create_order_line):
    return [create_order_line(order_reference=f"SO-{n}") for n in (1, 2, 3)]


class TestAllocate:

    def test_allocations_reduce_available(self, allocation_service, create_batch, three_lines, actor):
        batch = create_batch(quantity="500")
        first, second, third = three_lines

        allocation = allocation_service.allocate(batch.id, first.id, Decimal("100"), actor=actor).unwrap()
        allocation_service.allocate(batch.id, second.id, Decimal("150")).unwrap()

        assert allocation.status == AllocationStatus.ALLOCATED
        assert allocation.created_by == actor
        assert allocation_service.get_available_quantity(batch.id).unwrap() == Decimal("250")
        assert allocation_service.get_total_allocated(batch.id).unwrap() == Decimal("250")

        result = allocation_service.allocate(batch.id, third.id, Decimal("300"))
        assert result.error_kind == ErrorKind.INSUFFICIENT_QUANTITY
        assert result.message.startswith("Insufficient batch quantity. Available: 250.00, Requested: 300.00")

    def test_exact_remaining_fully_allocates(self, allocation_service, create_batch, three_lines):
        batch = create_batch(quantity="500")
        allocation_service.allocate(batch.id, three_lines[0].id, Decimal("500")).unwrap()

        assert allocation_service.is_fully_allocated(batch.id).unwrap()
        assert allocation_service.get_available_quantity(batch.id).unwrap() == Decimal("0")

    def test_second_active_allocation_for_same_line_conflicts(
        self, allocation_service, create_batch, three_lines
    ):
        batch = create_batch()
        allocation_service.allocate(batch.id, three_lines[0].id, Decimal("10")).unwrap()
        result = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("10"))

        assert result.error_kind == ErrorKind.CONFLICT
        assert result.error.code == "DUPLICATE_ALLOCATION"

    def test_reallocate_after_release(self, allocation_service, create_batch, three_lines):
        batch = create_batch()
        first = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("10")).unwrap()
        allocation_service.release(first.id).unwrap()

        assert allocation_service.allocate(batch.id, three_lines[0].id, Decimal("20")).is_success

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1")])
    def test_non_positive_quantity(self, allocation_service, create_batch, three_lines, quantity):
        batch = create_batch()
        result = allocation_service.allocate(batch.id, three_lines[0].id, quantity)
        assert result.error_kind == ErrorKind.VALIDATION_FAILURE

    def test_unknown_batch_and_order_line(self, allocation_service, create_batch, three_lines):
        assert allocation_service.allocate(uuid4(), three_lines[0].id, Decimal("1")).error.code == (
            "BATCH_NOT_FOUND"
        )
        assert allocation_service.allocate(create_batch().id, uuid4(), Decimal("1")).error.code == (
            "ORDER_LINE_NOT_FOUND"
        )

    def test_held_batch_cannot_be_allocated(self, allocation_service, hold_service, create_batch, three_lines):
        batch = create_batch()
        hold_service.apply_hold(HoldEntityType.BATCH, batch.id, "lab retest").unwrap()

        result = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("1"))
        assert result.error_kind == ErrorKind.ON_HOLD

    def test_allocation_is_audited(self, allocation_service, create_batch, three_lines, session, actor):
        batch = create_batch()
        allocation = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("5"), actor=actor).unwrap()

        history = AuditService(session=session).history("BatchAllocation", allocation.id)
        assert [entry.action for entry in history] == ["CREATE"]
        assert history[0].actor == actor


class TestReleaseAndResize:

    def test_release_restores_availability(self, allocation_service, create_batch, three_lines, actor):
        batch = create_batch(quantity="100")
        allocation = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("60")).unwrap()

        released = allocation_service.release(allocation.id, actor=actor).unwrap()
        assert released.status == AllocationStatus.RELEASED
        assert released.released_by == actor
        assert released.released_at is not None
        assert allocation_service.get_available_quantity(batch.id).unwrap() == Decimal("100")

    def test_release_twice_is_invalid_state(self, allocation_service, create_batch, three_lines):
        batch = create_batch()
        allocation = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("1")).unwrap()
        allocation_service.release(allocation.id).unwrap()

        result = allocation_service.release(allocation.id)
        assert result.error.code == "ALLOCATION_NOT_ACTIVE"

    def test_release_unknown(self, allocation_service):
        assert allocation_service.release(uuid4()).error_kind == ErrorKind.NOT_FOUND

    def test_resize_excludes_own_quantity(self, allocation_service, create_batch, three_lines):
        batch = create_batch(quantity="100")
        allocation = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("60")).unwrap()
        allocation_service.allocate(batch.id, three_lines[1].id, Decimal("30")).unwrap()

        resized = allocation_service.update_quantity(allocation.id, Decimal("70")).unwrap()
        assert resized.allocated_qty == Decimal("70")
        assert allocation_service.get_available_quantity(batch.id).unwrap() == Decimal("0")

        result = allocation_service.update_quantity(allocation.id, Decimal("71"))
        assert result.error_kind == ErrorKind.INSUFFICIENT_QUANTITY
        assert "Available: 70.00, Requested: 71.00" in result.message

    def test_resize_released_allocation(self, allocation_service, create_batch, three_lines):
        batch = create_batch()
        allocation = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("5")).unwrap()
        allocation_service.release(allocation.id).unwrap()

        assert allocation_service.update_quantity(allocation.id, Decimal("6")).error_kind == (
            ErrorKind.INVALID_STATE
        )

    def test_resize_to_zero_rejected(self, allocation_service, create_batch, three_lines):
        batch = create_batch()
        allocation = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("5")).unwrap()
        assert allocation_service.update_quantity(allocation.id, Decimal("0")).error_kind == (
            ErrorKind.VALIDATION_FAILURE
        )


class TestQueries:

    def test_batch_and_line_listings(self, allocation_service, create_batch, three_lines):
        batch = create_batch(quantity="100")
        other = create_batch(quantity="100")
        kept = allocation_service.allocate(batch.id, three_lines[0].id, Decimal("10")).unwrap()
        dropped = allocation_service.allocate(batch.id, three_lines[1].id, Decimal("20")).unwrap()
        allocation_service.allocate(other.id, three_lines[0].id, Decimal("30")).unwrap()
        allocation_service.release(dropped.id).unwrap()

        everything = allocation_service.get_batch_allocations(batch.id).unwrap()
        active = allocation_service.get_batch_allocations(batch.id, active_only=True).unwrap()
        assert {a.id for a in everything} == {kept.id, dropped.id}
        assert [a.id for a in active] == [kept.id]

        line_allocations = allocation_service.get_order_line_allocations(three_lines[0].id).unwrap()
        assert {a.batch_id for a in line_allocations} == {batch.id, other.id}

    def test_queries_on_unknown_ids(self, allocation_service):
        assert allocation_service.get_available_quantity(uuid4()).error_kind == ErrorKind.NOT_FOUND
        assert allocation_service.get_order_line_allocations(uuid4()).error_kind == ErrorKind.NOT_FOUND

    def test_allocation_ignores_batch_status(self, allocation_service, create_batch, three_lines):
        batch = create_batch(status=BatchStatus.QUALITY_PENDING)
        assert allocation_service.allocate(batch.id, three_lines[0].id, Decimal("1")).is_success
