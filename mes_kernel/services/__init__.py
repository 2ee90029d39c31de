"""Services for the production kernel (write side)."""

from mes_kernel.services.audit_service import (
    AuditService,
    AuditSink,
    LoggingAuditSink,
    SessionAuditSink,
)
from mes_kernel.services.batch_allocation_service import BatchAllocationService
from mes_kernel.services.batch_lifecycle_service import BatchLifecycleService
from mes_kernel.services.batch_number_service import BatchNumberService
from mes_kernel.services.hold_service import HoldService
from mes_kernel.services.inventory_state_validator import InventoryStateValidator
from mes_kernel.services.material_receipt_service import MaterialReceiptService
from mes_kernel.services.operation_service import OperationService
from mes_kernel.services.production_confirmation_service import ProductionConfirmationService
from mes_kernel.services.sequence_service import BatchSequenceService

__all__ = [
    "AuditService",
    "AuditSink",
    "BatchAllocationService",
    "BatchLifecycleService",
    "BatchNumberService",
    "BatchSequenceService",
    "HoldService",
    "InventoryStateValidator",
    "LoggingAuditSink",
    "MaterialReceiptService",
    "OperationService",
    "ProductionConfirmationService",
    "SessionAuditSink",
]
