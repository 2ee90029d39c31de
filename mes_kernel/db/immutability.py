"""
ORM-level immutability enforcement for production records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here inspect attribute history and
raise ImmutabilityViolationError, aborting the flush before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The services enforce the same rules as preconditions; the listeners catch
code paths that bypass the services.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                    | Rule
--------------------------|---------------------------------------------------
ProductionConfirmation    | Only CONFIRMED/PARTIALLY_CONFIRMED -> REJECTED,
                          | once, with the rejection fields.  Never deleted.
BatchRelation             | Append-only: never updated or deleted.
BatchQuantityAdjustment   | Append-only: never updated or deleted.
AuditEntry                | Append-only: never updated or deleted.
Batch                     | batch_number never changes once assigned.

===============================================================================
USAGE
===============================================================================

    from mes_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once, after models are imported

Tests that need to write a forbidden row call
``unregister_immutability_listeners()`` and register again afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from mes_kernel.exceptions import ImmutabilityViolationError
from mes_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Columns a rejection is allowed to touch on a confirmation row
_REJECTION_FIELDS = frozenset(
    {
        "status",
        "rejection_reason",
        "rejection_notes",
        "rejected_by",
        "rejected_at",
        "updated_at",
        "updated_by",
    }
)


def _blocked(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_columns(mapper, target) -> set[str]:
    changed = set()
    for attr in mapper.column_attrs:
        if get_history(target, attr.key).has_changes():
            changed.add(attr.key)
    return changed


# =============================================================================
# ProductionConfirmation
# =============================================================================


def _check_confirmation_immutability(mapper, connection, target):
    """
    Allow exactly one transition: CONFIRMED | PARTIALLY_CONFIRMED -> REJECTED.

    Everything a confirmation recorded (quantities, times, consumed
    materials, output batches) is frozen from the moment it is flushed.
    """
    from mes_kernel.domain.statuses import ConfirmationStatus
    from mes_kernel.models.confirmation import ProductionConfirmationModel

    if not isinstance(target, ProductionConfirmationModel):
        return

    frozen = _changed_columns(mapper, target) - _REJECTION_FIELDS
    if frozen:
        raise _blocked(
            "ProductionConfirmation",
            target,
            "UPDATE",
            f"Confirmation fields are immutable: {', '.join(sorted(frozen))}",
        )

    status_history = get_history(target, "status")
    if not status_history.has_changes():
        rejection_touched = any(
            get_history(target, name).has_changes()
            for name in ("rejection_reason", "rejection_notes", "rejected_by", "rejected_at")
        )
        if rejection_touched:
            raise _blocked(
                "ProductionConfirmation",
                target,
                "UPDATE",
                "Rejection details can only be written together with the rejection",
            )
        return

    old_status = status_history.deleted[0] if status_history.deleted else None
    new_status = status_history.added[0] if status_history.added else None
    if (
        ConfirmationStatus(new_status) != ConfirmationStatus.REJECTED
        or old_status is None
        or ConfirmationStatus(old_status) == ConfirmationStatus.REJECTED
    ):
        raise _blocked(
            "ProductionConfirmation",
            target,
            "UPDATE",
            f"Status can only move to REJECTED once (from {old_status} to {new_status})",
        )


def _check_confirmation_delete(mapper, connection, target):
    from mes_kernel.models.confirmation import ProductionConfirmationModel

    if not isinstance(target, ProductionConfirmationModel):
        return
    raise _blocked(
        "ProductionConfirmation",
        target,
        "DELETE",
        "Production confirmations cannot be deleted",
    )


# =============================================================================
# Append-only rows
# =============================================================================


def _check_batch_relation_update(mapper, connection, target):
    raise _blocked("BatchRelation", target, "UPDATE", "Batch relations are append-only")


def _check_batch_relation_delete(mapper, connection, target):
    raise _blocked("BatchRelation", target, "DELETE", "Batch relations cannot be deleted")


def _check_adjustment_update(mapper, connection, target):
    raise _blocked(
        "BatchQuantityAdjustment", target, "UPDATE", "Quantity adjustments are append-only"
    )


def _check_adjustment_delete(mapper, connection, target):
    raise _blocked(
        "BatchQuantityAdjustment", target, "DELETE", "Quantity adjustments cannot be deleted"
    )


def _check_audit_entry_update(mapper, connection, target):
    raise _blocked("AuditEntry", target, "UPDATE", "Audit entries are immutable")


def _check_audit_entry_delete(mapper, connection, target):
    raise _blocked("AuditEntry", target, "DELETE", "Audit entries cannot be deleted")


# =============================================================================
# Batch number
# =============================================================================


def _check_batch_number_immutability(mapper, connection, target):
    history = get_history(target, "batch_number")
    if history.deleted and history.added and history.deleted[0] != history.added[0]:
        raise _blocked(
            "Batch",
            target,
            "UPDATE",
            f"Batch number {history.deleted[0]} cannot be changed to {history.added[0]}",
        )


def _listeners():
    from mes_kernel.models.audit_entry import AuditEntryModel
    from mes_kernel.models.batch import (
        BatchModel,
        BatchQuantityAdjustmentModel,
        BatchRelationModel,
    )
    from mes_kernel.models.confirmation import ProductionConfirmationModel

    return [
        (ProductionConfirmationModel, "before_update", _check_confirmation_immutability),
        (ProductionConfirmationModel, "before_delete", _check_confirmation_delete),
        (BatchRelationModel, "before_update", _check_batch_relation_update),
        (BatchRelationModel, "before_delete", _check_batch_relation_delete),
        (BatchQuantityAdjustmentModel, "before_update", _check_adjustment_update),
        (BatchQuantityAdjustmentModel, "before_delete", _check_adjustment_delete),
        (AuditEntryModel, "before_update", _check_audit_entry_update),
        (AuditEntryModel, "before_delete", _check_audit_entry_delete),
        (BatchModel, "before_update", _check_batch_number_immutability),
    ]


def register_immutability_listeners():
    """
    Register all immutability event listeners.

    Idempotent: listeners already registered are left alone.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the immutability listeners.

    WARNING: tests only.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
