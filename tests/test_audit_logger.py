"""
Tests for the audit logger.
"""

import json
import threading
from datetime import datetime, timezone

import pytest

from jit_access.audit import AuditLogger
from jit_access.models import AuditRecord, ReconcileAction


def make_record(record_id, resource="projects/baz", action=ReconcileAction.GRANT, timestamp=None, **kwargs):
    return AuditRecord(
        id=record_id,
        timestamp=timestamp or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
        action=action,
        resource=resource,
        success=kwargs.pop("success", True),
        **kwargs,
    )


@pytest.fixture
def audit_logger(tmp_path):
    return AuditLogger(tmp_path / "audit")


def test_log_event_writes_daily_jsonl(audit_logger, tmp_path):
    record = make_record("r1", roles=["roles/viewer"], members=["user:u1@example.com"])

    assert audit_logger.log_event(record) == "r1"

    log_file = tmp_path / "audit" / "audit_2024-05-01.jsonl"
    lines = log_file.read_text().splitlines()
    assert len(lines) == 1
    data = json.loads(lines[0])
    assert data["action"] == "grant"
    assert data["roles"] == ["roles/viewer"]


def test_get_events_newest_first(audit_logger):
    audit_logger.log_event(make_record("r1", timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc)))
    audit_logger.log_event(make_record("r2", timestamp=datetime(2024, 5, 1, 1, tzinfo=timezone.utc)))
    audit_logger.log_event(make_record("r3", timestamp=datetime(2024, 5, 2, tzinfo=timezone.utc)))

    assert [r.id for r in audit_logger.get_events()] == ["r3", "r2", "r1"]
    assert [r.id for r in audit_logger.get_events(limit=2)] == ["r3", "r2"]


def test_get_events_filters(audit_logger):
    audit_logger.log_event(make_record("r1", resource="projects/a"))
    audit_logger.log_event(make_record("r2", resource="projects/b", action=ReconcileAction.REVOKE))
    audit_logger.log_event(make_record("r3", resource="projects/a", action=ReconcileAction.REVOKE,
                                       timestamp=datetime(2024, 6, 1, tzinfo=timezone.utc)))

    assert [r.id for r in audit_logger.get_events(resource="projects/a")] == ["r3", "r1"]
    assert [r.id for r in audit_logger.get_events(action=ReconcileAction.REVOKE)] == ["r3", "r2"]
    assert [r.id for r in audit_logger.get_events(
        start_date=datetime(2024, 5, 15, tzinfo=timezone.utc))] == ["r3"]
    assert [r.id for r in audit_logger.get_events(
        end_date=datetime(2024, 5, 15, tzinfo=timezone.utc))] == ["r2", "r1"]


def test_unparseable_lines_skipped(audit_logger, tmp_path):
    audit_logger.log_event(make_record("r1"))
    with open(tmp_path / "audit" / "audit_2024-05-01.jsonl", "a") as f:
        f.write("not json\n")

    assert [r.id for r in audit_logger.get_events()] == ["r1"]


def test_concurrent_writes(audit_logger):
    threads = [
        threading.Thread(target=audit_logger.log_event, args=(make_record(f"r{i}"),))
        for i in range(20)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(audit_logger.get_events()) == 20
