"""
Tests for InventoryStateValidator.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from mes_kernel.domain.statuses import HoldEntityType, InventoryState
from mes_kernel.exceptions import ErrorKind, InvalidStateTransitionError


class TestValidateConsumption:

    def test_available_inventory(self, inventory_validator, create_inventory):
        inventory = create_inventory(quantity="100")
        info = inventory_validator.validate_consumption(inventory.id, Decimal("100")).unwrap()
        assert info.id == inventory.id
        assert info.quantity == Decimal("100")

    def test_check_writes_nothing(self, inventory_validator, create_inventory, session):
        inventory = create_inventory(quantity="100")
        inventory_validator.validate_consumption(inventory.id, Decimal("40")).unwrap()
        session.refresh(inventory)
        assert inventory.quantity == Decimal("100")

    @pytest.mark.parametrize(
        "state", [InventoryState.BLOCKED, InventoryState.CONSUMED, InventoryState.ON_HOLD]
    )
    def test_unconsumable_states(self, inventory_validator, create_inventory, state):
        inventory = create_inventory(state=state)
        result = inventory_validator.validate_consumption(inventory.id, Decimal("1"))
        assert result.error.code == "INVENTORY_NOT_CONSUMABLE"
        assert result.error_kind == ErrorKind.INVALID_STATE

    def test_reserved_inventory(self, inventory_validator, create_inventory, create_order_line):
        mine, theirs = create_order_line(), create_order_line(order_reference="SO-2")
        inventory = create_inventory(state=InventoryState.RESERVED, reserved_for_order_line_id=mine.id)

        assert inventory_validator.validate_consumption(inventory.id, Decimal("1"), mine.id).is_success
        assert not inventory_validator.validate_consumption(inventory.id, Decimal("1"), theirs.id).is_success
        assert not inventory_validator.validate_consumption(inventory.id, Decimal("1")).is_success

    def test_insufficient(self, inventory_validator, create_inventory):
        inventory = create_inventory(quantity="10")
        result = inventory_validator.validate_consumption(inventory.id, Decimal("10.5"))
        assert result.error.code == "INSUFFICIENT_INVENTORY_QUANTITY"
        assert result.message.startswith("Insufficient inventory quantity. Available: 10.00, Requested: 10.50")

    def test_hold_checked_before_state(self, inventory_validator, hold_service, create_inventory):
        inventory = create_inventory(state=InventoryState.BLOCKED)
        hold_service.apply_hold(HoldEntityType.INVENTORY, inventory.id, "investigate").unwrap()
        assert inventory_validator.validate_consumption(inventory.id, Decimal("1")).error_kind == (
            ErrorKind.ON_HOLD
        )

    def test_non_positive_and_unknown(self, inventory_validator, create_inventory):
        inventory = create_inventory()
        assert inventory_validator.validate_consumption(inventory.id, Decimal("0")).error.code == (
            "INVALID_QUANTITY"
        )
        assert inventory_validator.validate_consumption(uuid4(), Decimal("1")).error.code == (
            "INVENTORY_NOT_FOUND"
        )


class TestPrimitives:

    def test_consume_to_zero_marks_consumed(self, inventory_validator, create_inventory, actor):
        inventory = create_inventory(quantity="5")
        assert inventory_validator.consume(inventory, Decimal("5"), actor) == Decimal("0")
        assert inventory.state == InventoryState.CONSUMED.value

    def test_transition_rules(self, inventory_validator, create_inventory, actor):
        inventory = create_inventory(state=InventoryState.CONSUMED)
        with pytest.raises(InvalidStateTransitionError):
            inventory_validator.transition(inventory, InventoryState.AVAILABLE, actor)

        available = create_inventory()
        inventory_validator.transition(available, InventoryState.RESERVED, actor)
        assert available.state == InventoryState.RESERVED.value
