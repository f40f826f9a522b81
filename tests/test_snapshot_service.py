"""
Tests: report snapshot capture, checksum, integrity verification and
source-data change detection.
"""

from datetime import datetime, timedelta

import pytest

import app.services.report_workflow as wf
from app.core.exceptions import NotFoundError, SnapshotIntegrityError, ValidationError
from app.models import db
from app.models.execution import ExecutionRecord, PlanningRecord
from app.services import snapshot_service
from app.services.ledger.codes import build_activity_code


def _submitted(report, users):
    return wf.submit(report.id, users["accountant"].id, ["accountant"])


def test_capture_snapshot_shape(draft_report):
    snap = snapshot_service.capture_snapshot(draft_report, version="1.0")

    assert set(snap) == {
        "version", "capturedAt", "statementCode", "statement", "sourceData", "aggregations", "checksum",
    }
    assert snap["checksum"] == ""
    assert snap["statementCode"] == "ASSETS_LIAB"
    assert snap["statement"]["totals"]["C"] == 75000
    assert snap["statement"]["totals"]["F"] == 75000
    meta = snap["statement"]["metadata"]
    assert meta["cashAtBank"] == 83000
    assert meta["totalUnpaid"] == 8000
    assert meta["isBalanced"] is True
    assert len(snap["sourceData"]["executionEntries"]) == 1
    assert snap["sourceData"]["planningEntries"] == []
    assert snap["aggregations"]["totalExecution"] == 25000


def test_capture_includes_planning_totals(draft_report):
    lab = build_activity_code("HIV", "hospital", "B", 1, "B-01")
    db.session.add(PlanningRecord(
        project_id=1, facility_id=1, reporting_period_id=1,
        form_data={"activities": [{"code": lab, "q1": 10000, "q2": "5,000", "q3": None}]},
    ))
    db.session.commit()

    agg = snapshot_service.capture_snapshot(draft_report)["aggregations"]
    assert agg["totalPlanning"] == 15000
    assert agg["variance"] == -10000


def test_checksum_ignores_checksum_field_and_key_order():
    snap = {"b": [1, 2.5, None], "a": {"y": "é", "x": True}, "checksum": ""}
    reordered = {"checksum": "deadbeef", "a": {"x": True, "y": "é"}, "b": [1, 2.5, None]}
    digest = snapshot_service.compute_checksum(snap)
    assert len(digest) == 64
    assert snapshot_service.compute_checksum(reordered) == digest


def test_checksum_changes_with_any_value():
    snap = {"aggregations": {"totalExecution": 100.0}, "checksum": ""}
    changed = {"aggregations": {"totalExecution": 100.01}, "checksum": ""}
    assert snapshot_service.compute_checksum(snap) != snapshot_service.compute_checksum(changed)


def test_seal_snapshot_does_not_mutate_input():
    snap = {"version": "1.0", "checksum": ""}
    sealed = snapshot_service.seal_snapshot(snap)
    assert snap["checksum"] == ""
    assert sealed["checksum"] == snapshot_service.compute_checksum(snap)


def test_verify_checksum_after_submit(draft_report, users):
    report = _submitted(draft_report, users)
    result = snapshot_service.verify_checksum(report.id)
    assert result["valid"] is True
    assert result["expected"] == result["actual"] == report.snapshot_checksum


def test_verify_checksum_detects_tampering(draft_report, users):
    report = _submitted(draft_report, users)
    data = dict(report.report_data)
    data["statement"] = {**data["statement"], "totals": {**data["statement"]["totals"], "C": 1}}
    report.report_data = data
    db.session.commit()

    with pytest.raises(SnapshotIntegrityError) as exc:
        snapshot_service.verify_checksum(report.id)
    assert exc.value.expected == report.snapshot_checksum
    assert exc.value.actual != exc.value.expected
    assert snapshot_service.check_report_integrity(report)["valid"] is False


def test_verify_checksum_requires_snapshot(draft_report):
    with pytest.raises(ValidationError):
        snapshot_service.verify_checksum(draft_report.id)


def test_verify_checksum_unknown_report(seeded):
    with pytest.raises(NotFoundError):
        snapshot_service.verify_checksum(999)


def test_source_changes_after_snapshot(draft_report, users):
    report = _submitted(draft_report, users)
    assert snapshot_service.detect_source_data_changes(report.id) == []

    captured = datetime.fromisoformat(report.report_data["capturedAt"])
    record = ExecutionRecord.query.one()
    record.updated_at = captured + timedelta(minutes=5)
    db.session.commit()

    changes = snapshot_service.detect_source_data_changes(report.id)
    assert [(c["entity"], c["id"]) for c in changes] == [("execution", record.id)]


def test_source_changes_without_snapshot(draft_report):
    assert snapshot_service.detect_source_data_changes(draft_report.id) == []
