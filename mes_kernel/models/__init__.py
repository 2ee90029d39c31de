"""ORM models for the production kernel."""

from mes_kernel.models.allocation import BatchOrderAllocationModel
from mes_kernel.models.audit_entry import AuditEntryModel
from mes_kernel.models.batch import (
    BatchModel,
    BatchQuantityAdjustmentModel,
    BatchRelationModel,
)
from mes_kernel.models.batch_numbering import (
    BatchNumberConfigModel,
    BatchNumberSequenceModel,
)
from mes_kernel.models.confirmation import ProductionConfirmationModel
from mes_kernel.models.hold import HoldRecordModel
from mes_kernel.models.inventory import InventoryModel
from mes_kernel.models.process import OperationModel, OrderLineModel, ProcessModel

__all__ = [
    "ProcessModel",
    "OrderLineModel",
    "OperationModel",
    "InventoryModel",
    "BatchModel",
    "BatchRelationModel",
    "BatchQuantityAdjustmentModel",
    "BatchOrderAllocationModel",
    "ProductionConfirmationModel",
    "HoldRecordModel",
    "AuditEntryModel",
    "BatchNumberConfigModel",
    "BatchNumberSequenceModel",
]
