"""Tests for OperationResult and the inventory state table."""

from decimal import Decimal
from uuid import uuid4

import pytest

from mes_kernel.domain import inventory_state
from mes_kernel.domain.results import OperationResult, ResultStatus
from mes_kernel.domain.statuses import InventoryState
from mes_kernel.exceptions import ErrorKind, InsufficientBatchQuantityError


class TestOperationResult:

    def test_ok_unwraps_value(self):
        result = OperationResult.ok(42)
        assert result.is_success
        assert result.status == ResultStatus.SUCCESS
        assert result.error_kind is None
        assert result.unwrap() == 42

    def test_failure_carries_structured_error(self):
        exc = InsufficientBatchQuantityError("b-1", Decimal("250"), Decimal("300"))
        result = OperationResult.failure(exc)

        assert not result.is_success
        assert result.error_kind == ErrorKind.INSUFFICIENT_QUANTITY
        assert result.error.code == "INSUFFICIENT_BATCH_QUANTITY"
        assert result.error.details["available"] == Decimal("250")
        assert result.error.details["requested"] == Decimal("300")
        assert result.message.startswith(
            "Insufficient batch quantity. Available: 250.00, Requested: 300.00"
        )

    def test_failure_unwrap_reraises_original(self):
        exc = InsufficientBatchQuantityError("b-1", Decimal("1"), Decimal("2"))
        with pytest.raises(InsufficientBatchQuantityError) as exc_info:
            OperationResult.failure(exc).unwrap()
        assert exc_info.value is exc


class TestInventoryStateRules:

    def test_terminal_states(self):
        assert inventory_state.is_terminal(InventoryState.CONSUMED)
        assert inventory_state.is_terminal("SCRAPPED")
        assert not inventory_state.is_terminal(InventoryState.AVAILABLE)

    def test_available_is_consumable(self):
        assert inventory_state.consumability_problem("AVAILABLE", None, uuid4()) is None

    def test_reserved_only_for_its_order_line(self):
        line = uuid4()
        assert inventory_state.consumability_problem("RESERVED", line, line) is None
        assert inventory_state.consumability_problem("RESERVED", line, uuid4()) is not None
        assert inventory_state.consumability_problem("RESERVED", line, None) is not None

    @pytest.mark.parametrize("state", ["BLOCKED", "ON_HOLD", "CONSUMED", "SCRAPPED", "PRODUCED"])
    def test_other_states_not_consumable(self, state):
        assert inventory_state.consumability_problem(state, None, uuid4()) is not None

    def test_transitions(self):
        assert inventory_state.can_transition("AVAILABLE", "RESERVED")
        assert not inventory_state.can_transition("CONSUMED", "AVAILABLE")
