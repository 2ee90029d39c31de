"""
InventoryStateValidator -- consumability and state transitions for inventory.

Responsibility:
    Decides whether an inventory unit may be consumed by a confirmation
    (exists, consumable state, not held, enough quantity) and applies
    inventory state transitions and consumption decrements.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.inventory_state``.
    The confirmation engine calls ``require_consumable`` and ``consume``
    inside its own unit of work.

Invariants enforced:
    - Only AVAILABLE inventory, or RESERVED inventory for the consuming
      order line, is consumed.
    - Inventory quantity never goes negative; it becomes CONSUMED at zero.
    - Transitions follow ``domain.inventory_state.TRANSITIONS``.

Failure modes:
    - InventoryNotFoundError, EntityOnHoldError, InventoryNotConsumableError,
      InsufficientInventoryQuantityError, InvalidStateTransitionError.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from mes_kernel.domain import inventory_state
from mes_kernel.domain.clock import Clock
from mes_kernel.domain.dtos import InventoryInfo
from mes_kernel.domain.quantities import ZERO, format_quantity
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import HoldEntityType, InventoryState
from mes_kernel.exceptions import (
    InsufficientInventoryQuantityError,
    InvalidQuantityError,
    InvalidStateTransitionError,
    InventoryNotConsumableError,
    InventoryNotFoundError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.inventory import InventoryModel
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService
from mes_kernel.services.hold_service import HoldService

logger = get_logger("services.inventory_state")


class InventoryStateValidator(BaseService):
    """Consumability checks and state changes for inventory units."""

    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        holds: HoldService | None = None,
    ):
        super().__init__(session, clock=clock, audit=audit, auto_commit=auto_commit)
        self.holds = holds or HoldService(session, clock=self.clock, audit=audit, auto_commit=False)

    def lock(self, inventory_id: UUID) -> InventoryModel:
        inventory = self.session.get(InventoryModel, inventory_id, with_for_update=True)
        if inventory is None:
            raise InventoryNotFoundError(inventory_id)
        return inventory

    def require_consumable(
        self,
        inventory_id: UUID,
        quantity: Decimal,
        consuming_order_line_id: UUID | None = None,
    ) -> InventoryModel:
        """
        Lock and return the inventory unit if ``quantity`` of it may be consumed.

        Checks, in order: exists, not on hold, consumable state, enough quantity.
        """
        inventory = self.lock(inventory_id)
        self.holds.ensure_not_on_hold(HoldEntityType.INVENTORY, inventory_id)

        problem = inventory_state.consumability_problem(
            inventory.state,
            inventory.reserved_for_order_line_id,
            consuming_order_line_id,
        )
        if problem is not None:
            raise InventoryNotConsumableError(inventory_id, inventory.state, problem)

        if quantity > inventory.quantity:
            raise InsufficientInventoryQuantityError(inventory_id, inventory.quantity, quantity)
        return inventory

    def validate_consumption(
        self,
        inventory_id: UUID,
        quantity: Decimal,
        consuming_order_line_id: UUID | None = None,
    ) -> OperationResult[InventoryInfo]:
        """Read-only check; the result carries the inventory unit when it is consumable."""

        def work() -> InventoryInfo:
            if quantity <= ZERO:
                raise InvalidQuantityError("quantity", format_quantity(quantity))
            return self.require_consumable(inventory_id, quantity, consuming_order_line_id).to_dto()

        return self._execute("inventory_validate", work, inventory_id=str(inventory_id))

    def transition(self, inventory: InventoryModel, target: InventoryState, actor: str) -> None:
        """Move ``inventory`` to ``target`` or raise InvalidStateTransitionError."""
        current = InventoryState(inventory.state)
        if current == target:
            return
        if not inventory_state.can_transition(current, target):
            raise InvalidStateTransitionError("inventory", inventory.id, current, target)
        inventory.state = target.value
        inventory.updated_by = actor
        self.audit.log_status_change("Inventory", inventory.id, current, target, actor)

    def consume(self, inventory: InventoryModel, quantity: Decimal, actor: str) -> Decimal:
        """
        Decrement a locked, validated inventory unit.

        Returns the remaining quantity; the unit becomes CONSUMED at zero.
        """
        remaining = inventory.quantity - quantity
        if remaining < ZERO:
            raise InsufficientInventoryQuantityError(inventory.id, inventory.quantity, quantity)
        old_quantity = inventory.quantity
        inventory.quantity = remaining
        inventory.updated_by = actor
        self.audit.log_update("Inventory", inventory.id, "quantity", old_quantity, remaining, actor)
        if remaining == ZERO:
            self.transition(inventory, InventoryState.CONSUMED, actor)
        logger.info(
            "inventory_consumed",
            extra={
                "inventory_id": str(inventory.id),
                "quantity": str(quantity),
                "remaining": str(remaining),
            },
        )
        return remaining
