"""
Audit sink -- fire-and-forget record of creates, updates and status changes.

Responsibility:
    Defines the ``AuditSink`` protocol the services write to, a
    session-backed sink that appends ``AuditEntryModel`` rows to the current
    unit of work, and a logging-only sink.  ``AuditService`` wraps whichever
    sink is configured so that an audit failure is logged and never turns
    into a failed confirmation, split or allocation.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Audit writes never propagate exceptions to the calling operation.
    - Session-backed entries are written inside a SAVEPOINT: a failed audit
      insert rolls back only itself, and a rolled-back operation takes its
      audit entries with it.
"""

from enum import Enum
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.statuses import AuditAction
from mes_kernel.logging_config import get_logger
from mes_kernel.models.audit_entry import AuditEntryModel

logger = get_logger("services.audit")


def _audit_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@runtime_checkable
class AuditSink(Protocol):
    """Where audit facts go."""

    def log_create(self, entity_type: str, entity_id, summary: str, actor: str) -> None: ...

    def log_status_change(
        self, entity_type: str, entity_id, old_status, new_status, actor: str
    ) -> None: ...

    def log_update(
        self, entity_type: str, entity_id, field_name: str, old_value, new_value, actor: str
    ) -> None: ...


class LoggingAuditSink:
    """Sink that only emits structured log records."""

    def log_create(self, entity_type, entity_id, summary, actor):
        logger.info(
            "audit_create",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "summary": summary,
                "actor": actor,
            },
        )

    def log_status_change(self, entity_type, entity_id, old_status, new_status, actor):
        logger.info(
            "audit_status_change",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "old_status": _audit_text(old_status),
                "new_status": _audit_text(new_status),
                "actor": actor,
            },
        )

    def log_update(self, entity_type, entity_id, field_name, old_value, new_value, actor):
        logger.info(
            "audit_update",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "field_name": field_name,
                "old_value": _audit_text(old_value),
                "new_value": _audit_text(new_value),
                "actor": actor,
            },
        )


class SessionAuditSink:
    """Sink that appends AuditEntryModel rows to the caller's unit of work."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _write(self, entry: AuditEntryModel) -> None:
        # Pending work is flushed first so only the audit insert can fail below
        self.session.flush()
        try:
            with self.session.begin_nested():
                self.session.add(entry)
        except SQLAlchemyError:
            logger.error(
                "audit_write_failed",
                exc_info=True,
                extra={
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "action": entry.action,
                },
            )

    def _entry(self, entity_type, entity_id, action: AuditAction, actor, **fields):
        return AuditEntryModel(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor=actor,
            occurred_at=self._clock.now(),
            **fields,
        )

    def log_create(self, entity_type, entity_id, summary, actor):
        self._write(self._entry(entity_type, entity_id, AuditAction.CREATE, actor, summary=summary))

    def log_status_change(self, entity_type, entity_id, old_status, new_status, actor):
        self._write(
            self._entry(
                entity_type,
                entity_id,
                AuditAction.STATUS_CHANGE,
                actor,
                field_name="status",
                old_value=_audit_text(old_status),
                new_value=_audit_text(new_status),
            )
        )

    def log_update(self, entity_type, entity_id, field_name, old_value, new_value, actor):
        self._write(
            self._entry(
                entity_type,
                entity_id,
                AuditAction.UPDATE,
                actor,
                field_name=field_name,
                old_value=_audit_text(old_value),
                new_value=_audit_text(new_value),
            )
        )


class AuditService:
    """
    Audit facade used by every service.

    Contract:
        Forwards to the configured sink (a SessionAuditSink on the service's
        session when none is given).  Exceptions raised by the sink are
        logged as ``audit_write_failed`` and swallowed.
    """

    def __init__(
        self,
        sink: AuditSink | None = None,
        session: Session | None = None,
        clock: Clock | None = None,
    ):
        if sink is None:
            sink = SessionAuditSink(session, clock) if session is not None else LoggingAuditSink()
        self.sink = sink

    def _forward(self, method: str, entity_type: str, entity_id, *args) -> None:
        try:
            getattr(self.sink, method)(entity_type, entity_id, *args)
        except Exception:
            logger.error(
                "audit_write_failed",
                exc_info=True,
                extra={"entity_type": entity_type, "entity_id": str(entity_id), "sink_method": method},
            )

    def log_create(self, entity_type: str, entity_id, summary: str, actor: str) -> None:
        self._forward("log_create", entity_type, entity_id, summary, actor)

    def log_status_change(self, entity_type: str, entity_id, old_status, new_status, actor: str) -> None:
        if _audit_text(old_status) == _audit_text(new_status):
            return
        self._forward("log_status_change", entity_type, entity_id, old_status, new_status, actor)

    def log_update(self, entity_type: str, entity_id, field_name: str, old_value, new_value, actor: str) -> None:
        self._forward("log_update", entity_type, entity_id, field_name, old_value, new_value, actor)

    def history(self, entity_type: str, entity_id) -> list[AuditEntryModel]:
        """Audit entries for one entity, oldest first (session-backed sinks only)."""
        if not isinstance(self.sink, SessionAuditSink):
            return []
        return list(
            self.sink.session.scalars(
                select(AuditEntryModel)
                .where(
                    AuditEntryModel.entity_type == entity_type,
                    AuditEntryModel.entity_id == str(entity_id),
                )
                .order_by(AuditEntryModel.occurred_at)
            )
        )
