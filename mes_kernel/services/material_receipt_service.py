"""
MaterialReceiptService -- goods receipt of raw material.

Creates the RECEIPT batch (numbered through the raw-material numbering
rules, supplier lot appended) and the RM inventory unit that holds it, in
one unit of work.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from mes_kernel.config import KernelConfig
from mes_kernel.domain.clock import Clock
from mes_kernel.domain.dtos import ReceiptResult
from mes_kernel.domain.quantities import ZERO, format_quantity, to_quantity
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import (
    BatchCreatedVia,
    BatchStatus,
    InventoryState,
    InventoryType,
)
from mes_kernel.exceptions import BlankReasonError, InvalidQuantityError
from mes_kernel.logging_config import get_logger
from mes_kernel.models.inventory import InventoryModel
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService
from mes_kernel.services.batch_lifecycle_service import BatchLifecycleService

logger = get_logger("services.material_receipt")


class MaterialReceiptService(BaseService):
    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        config: KernelConfig | None = None,
        lifecycle: BatchLifecycleService | None = None,
    ):
        self.config = config or KernelConfig.with_defaults()
        super().__init__(
            session,
            clock=clock,
            audit=audit,
            auto_commit=auto_commit,
            default_actor=self.config.default_actor,
        )
        self.lifecycle = lifecycle or BatchLifecycleService(
            session, clock=self.clock, audit=audit, auto_commit=False, config=self.config
        )

    def receive_material(
        self,
        material_id: str,
        quantity: Decimal,
        unit: str | None = None,
        *,
        material_name: str | None = None,
        supplier_batch_number: str | None = None,
        supplier_id: str | None = None,
        received_date: date | None = None,
        expiry_date: date | None = None,
        location: str | None = None,
        actor: str | None = None,
    ) -> OperationResult[ReceiptResult]:
        """
        Receive raw material into stock.

        The batch number follows the RM_RECEIPT configuration when one
        applies, else ``RM-{material}-{yyyyMMdd}-{seq:03}[-{lot}]`` where
        lot is the sanitised supplier batch number.
        """
        actor = self._actor(actor)

        def work() -> ReceiptResult:
            if not material_id or not material_id.strip():
                raise BlankReasonError("material_id")
            amount = to_quantity(quantity)
            if amount <= ZERO:
                raise InvalidQuantityError("quantity", format_quantity(amount))

            on_date = received_date or self.clock.today()
            uom = unit or self.config.default_unit
            number = self.lifecycle.numbers.generate_receipt_number(
                material_id, supplier_lot=supplier_batch_number, on_date=on_date
            )
            batch = self.lifecycle.create_batch(
                batch_number=number,
                material_id=material_id,
                material_name=material_name,
                quantity=amount,
                unit=uom,
                status=BatchStatus.AVAILABLE,
                created_via=BatchCreatedVia.RECEIPT,
                supplier_batch_number=supplier_batch_number,
                supplier_id=supplier_id,
                received_date=on_date,
                expiry_date=expiry_date,
                actor=actor,
            )
            inventory = InventoryModel(
                material_id=material_id,
                material_name=material_name,
                inventory_type=InventoryType.RM.value,
                state=InventoryState.AVAILABLE.value,
                quantity=amount,
                unit=uom,
                location=location,
                batch_id=batch.id,
                created_by=actor,
            )
            self.session.add(inventory)
            self.session.flush()
            self.audit.log_create(
                "Inventory", inventory.id, f"Received {format_quantity(amount)} {uom} of {material_id}", actor
            )
            logger.info(
                "material_received",
                extra={
                    "batch_id": str(batch.id),
                    "batch_number": number,
                    "material_id": material_id,
                    "quantity": str(amount),
                },
            )
            return ReceiptResult(batch=batch.to_dto(), inventory=inventory.to_dto())

        return self._execute("material_receive", work, material_id=material_id)
