"""
Tests for the audit facade and its sinks.
"""

from uuid import uuid4

from mes_kernel.domain.statuses import BatchStatus
from mes_kernel.services.audit_service import AuditService, LoggingAuditSink, SessionAuditSink


class _ExplodingSink:
    def log_create(self, *args):
        raise RuntimeError("sink offline")

    log_status_change = log_update = log_create


def test_session_sink_records_entries(session, deterministic_clock):
    audit = AuditService(session=session, clock=deterministic_clock)
    entity_id = uuid4()
    audit.log_create("Batch", entity_id, "created", "tester")
    audit.log_update("Batch", entity_id, "quantity", 10, 8, "tester")
    session.commit()

    entries = audit.history("Batch", entity_id)
    assert {e.action for e in entries} == {"CREATE", "UPDATE"}
    update = next(e for e in entries if e.action == "UPDATE")
    assert (update.field_name, update.old_value, update.new_value) == ("quantity", "10", "8")
    assert update.occurred_at is not None


def test_same_status_is_not_recorded(session):
    audit = AuditService(session=session)
    entity_id = uuid4()
    audit.log_status_change("Batch", entity_id, BatchStatus.AVAILABLE, "AVAILABLE", "tester")
    assert audit.history("Batch", entity_id) == []


def test_status_change_renders_enum_values(session):
    audit = AuditService(session=session)
    entity_id = uuid4()
    audit.log_status_change("Batch", entity_id, BatchStatus.AVAILABLE, BatchStatus.BLOCKED, "qa")

    (entry,) = audit.history("Batch", entity_id)
    assert (entry.old_value, entry.new_value, entry.actor) == ("AVAILABLE", "BLOCKED", "qa")


def test_sink_failure_is_logged_not_raised(captured_logs):
    audit = AuditService(sink=_ExplodingSink())
    audit.log_create("Batch", uuid4(), "created", "tester")

    record = next(r for r in captured_logs() if r["message"] == "audit_write_failed")
    assert record["level"] == "ERROR"
    assert record["sink_method"] == "log_create"


def test_logging_sink_used_without_session(captured_logs):
    audit = AuditService()
    assert isinstance(audit.sink, LoggingAuditSink)
    audit.log_update("Batch", uuid4(), "quantity", 1, 2, "tester")

    record = next(r for r in captured_logs() if r["message"] == "audit_update")
    assert record["new_value"] == "2"
    assert audit.history("Batch", uuid4()) == []


def test_default_sink_with_session(session):
    assert isinstance(AuditService(session=session).sink, SessionAuditSink)
