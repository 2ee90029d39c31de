"""
HoldService -- place and release holds on production entities.

Responsibility:
    Records ACTIVE holds on operations, processes, batches and inventory
    and answers "is this entity held?" for the services that must refuse
    work on held entities.

Architecture position:
    Kernel > Services -- imperative shell.
    ``ensure_not_on_hold`` is the primitive the confirmation engine,
    the lifecycle service and the allocation engine call.

Invariants enforced:
    - At most one ACTIVE hold per entity.
    - A RELEASED hold is never released again.
    - Holding AVAILABLE inventory moves it to ON_HOLD; releasing the last
      hold moves it back to AVAILABLE.

Failure modes:
    - VALIDATION_FAILURE for a blank reason or unknown entity type.
    - NOT_FOUND when the held entity or the hold does not exist.
    - ON_HOLD when the entity already carries an ACTIVE hold.
    - INVALID_STATE when releasing a RELEASED hold.
"""

from uuid import UUID

from sqlalchemy import select

from mes_kernel.domain.dtos import HoldInfo
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import HoldEntityType, HoldStatus, InventoryState
from mes_kernel.exceptions import (
    BatchNotFoundError,
    BlankReasonError,
    EntityOnHoldError,
    HoldAlreadyReleasedError,
    HoldNotFoundError,
    InventoryNotFoundError,
    OperationNotFoundError,
    ProcessNotFoundError,
    UnknownValueError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.batch import BatchModel
from mes_kernel.models.hold import HoldRecordModel
from mes_kernel.models.inventory import InventoryModel
from mes_kernel.models.process import OperationModel, ProcessModel
from mes_kernel.services.base import BaseService

logger = get_logger("services.hold")

_HELD_ENTITIES = {
    HoldEntityType.OPERATION: (OperationModel, OperationNotFoundError),
    HoldEntityType.PROCESS: (ProcessModel, ProcessNotFoundError),
    HoldEntityType.BATCH: (BatchModel, BatchNotFoundError),
    HoldEntityType.INVENTORY: (InventoryModel, InventoryNotFoundError),
}


def _entity_type(value) -> HoldEntityType:
    try:
        return HoldEntityType(value)
    except ValueError:
        raise UnknownValueError("entity_type", value, list(HoldEntityType)) from None


class HoldService(BaseService):
    """Holds on operations, processes, batches and inventory."""

    logger = logger

    # ------------------------------------------------------------------
    # Queries and primitives
    # ------------------------------------------------------------------

    def active_hold(self, entity_type: HoldEntityType | str, entity_id: UUID) -> HoldRecordModel | None:
        return self.session.scalars(
            select(HoldRecordModel)
            .where(
                HoldRecordModel.entity_type == _entity_type(entity_type).value,
                HoldRecordModel.entity_id == entity_id,
                HoldRecordModel.status == HoldStatus.ACTIVE.value,
            )
            .limit(1)
        ).first()

    def is_on_hold(self, entity_type: HoldEntityType | str, entity_id: UUID) -> bool:
        return self.active_hold(entity_type, entity_id) is not None

    def ensure_not_on_hold(self, entity_type: HoldEntityType | str, entity_id: UUID) -> None:
        """
        Raise EntityOnHoldError when an ACTIVE hold exists.

        Primitive: raises, never commits.
        """
        hold = self.active_hold(entity_type, entity_id)
        if hold is not None:
            raise EntityOnHoldError(
                _entity_type(entity_type).value.lower(), entity_id, hold.id, hold.reason
            )

    def list_active_holds(self, entity_type: HoldEntityType | str | None = None) -> list[HoldInfo]:
        stmt = select(HoldRecordModel).where(HoldRecordModel.status == HoldStatus.ACTIVE.value)
        if entity_type is not None:
            stmt = stmt.where(HoldRecordModel.entity_type == _entity_type(entity_type).value)
        return [hold.to_dto() for hold in self.session.scalars(stmt.order_by(HoldRecordModel.applied_at))]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def apply_hold(
        self,
        entity_type: HoldEntityType | str,
        entity_id: UUID,
        reason: str,
        actor: str | None = None,
    ) -> OperationResult[HoldInfo]:
        actor = self._actor(actor)

        def work() -> HoldInfo:
            kind = _entity_type(entity_type)
            if not reason or not reason.strip():
                raise BlankReasonError()

            model, not_found = _HELD_ENTITIES[kind]
            entity = self.session.get(model, entity_id, with_for_update=True)
            if entity is None:
                raise not_found(entity_id)
            self.ensure_not_on_hold(kind, entity_id)

            hold = HoldRecordModel(
                entity_type=kind.value,
                entity_id=entity_id,
                reason=reason.strip(),
                status=HoldStatus.ACTIVE.value,
                applied_by=actor,
                applied_at=self.clock.now(),
                created_by=actor,
            )
            self.session.add(hold)

            if kind == HoldEntityType.INVENTORY and entity.state == InventoryState.AVAILABLE:
                entity.state = InventoryState.ON_HOLD.value
                entity.updated_by = actor
                self.audit.log_status_change(
                    "Inventory", entity.id, InventoryState.AVAILABLE, InventoryState.ON_HOLD, actor
                )

            self.session.flush()
            self.audit.log_create("Hold", hold.id, f"Hold on {kind.value} {entity_id}: {hold.reason}", actor)
            logger.info(
                "hold_applied",
                extra={"hold_id": str(hold.id), "entity_type": kind.value, "entity_id": str(entity_id)},
            )
            return hold.to_dto()

        return self._execute("hold_apply", work, entity_id=str(entity_id))

    def release_hold(
        self,
        hold_id: UUID,
        release_notes: str | None = None,
        actor: str | None = None,
    ) -> OperationResult[HoldInfo]:
        actor = self._actor(actor)

        def work() -> HoldInfo:
            hold = self.session.get(HoldRecordModel, hold_id, with_for_update=True)
            if hold is None:
                raise HoldNotFoundError(hold_id)
            if hold.status == HoldStatus.RELEASED:
                raise HoldAlreadyReleasedError(hold_id)

            hold.status = HoldStatus.RELEASED.value
            hold.released_by = actor
            hold.released_at = self.clock.now()
            hold.release_notes = release_notes
            hold.updated_by = actor

            if hold.entity_type == HoldEntityType.INVENTORY:
                inventory = self.session.get(InventoryModel, hold.entity_id, with_for_update=True)
                if inventory is not None and inventory.state == InventoryState.ON_HOLD:
                    inventory.state = InventoryState.AVAILABLE.value
                    inventory.updated_by = actor
                    self.audit.log_status_change(
                        "Inventory", inventory.id, InventoryState.ON_HOLD, InventoryState.AVAILABLE, actor
                    )

            self.session.flush()
            self.audit.log_status_change("Hold", hold.id, HoldStatus.ACTIVE, HoldStatus.RELEASED, actor)
            logger.info(
                "hold_released",
                extra={"hold_id": str(hold.id), "entity_type": hold.entity_type},
            )
            return hold.to_dto()

        return self._execute("hold_release", work, hold_id=str(hold_id))
