"""
Report snapshots — capture, checksum, integrity verification and
source-change detection.

A snapshot is a plain JSON document:

    {
      "version": "1.0",
      "capturedAt": "<iso>",
      "statementCode": "ASSETS_LIAB",
      "statement": {"lines": [...], "totals": {...}, "metadata": {...}},
      "sourceData": {"planningEntries": [...], "executionEntries": [...]},
      "aggregations": {"totalPlanning", "totalExecution", "variance"},
      "checksum": ""
    }

The checksum is SHA-256 over the canonical JSON (sorted keys, compact
separators) with ``checksum`` blanked, so it survives a round-trip through
the database JSON column.
"""

import hashlib
import json
import logging
import math
from datetime import datetime, timezone

from app.core.exceptions import NotFoundError, SnapshotIntegrityError, ValidationError
from app.models import db
from app.models.execution import ExecutionRecord, PlanningRecord
from app.models.financial_report import FinancialReport
from app.services import execution_service
from app.services.ledger.codes import QUARTERS, to_amount

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops tzinfo; stored values are UTC
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    value = _aware(value)
    return value.isoformat() if value else None


def _source_records(model, report: FinancialReport) -> list:
    return (
        model.query
        .filter_by(
            project_id=report.project_id,
            facility_id=report.facility_id,
            reporting_period_id=report.reporting_period_id,
        )
        .order_by(model.id)
        .all()
    )


def _source_entry(record) -> dict:
    return {
        "id": record.id,
        "formData": record.form_data or {},
        "updatedAt": _iso(record.updated_at),
    }


def _planned_total(records) -> float:
    values = []
    for record in records:
        for row in record.activities:
            for q in QUARTERS:
                values.append(to_amount((row or {}).get(q)) or 0.0)
    return math.fsum(values)


def _statement(execution: list) -> dict:
    """Statement lines/totals from the ledger engine over the execution record."""
    if not execution:
        return {"lines": [], "totals": {}, "metadata": {}}
    calc = execution_service.record_statement(execution[0])
    totals = {
        section: values["cumulativeBalance"]
        for section, values in calc["sectionTotals"].items()
    }
    metadata = {
        "currentQuarter": calc["currentQuarter"],
        "openingBalance": calc["openingBalance"],
        "cashAtBank": calc["cashAtBank"],
        "payables": calc["payables"],
        "totalPaid": calc["totalPaid"],
        "totalUnpaid": calc["totalUnpaid"],
        "isBalanced": calc["isBalanced"],
        "difference": calc["difference"],
    }
    return {"lines": calc["rows"], "totals": totals, "metadata": metadata}


def capture_snapshot(report: FinancialReport, version: str = "1.0") -> dict:
    """Capture all planning/execution data feeding *report* (checksum blank)."""
    planning = _source_records(PlanningRecord, report)
    execution = _source_records(ExecutionRecord, report)
    statement = _statement(execution)

    total_planning = _planned_total(planning)
    total_execution = statement["totals"].get("B") or 0.0
    return {
        "version": version,
        "capturedAt": datetime.now(timezone.utc).isoformat(),
        "statementCode": report.statement_code,
        "statement": statement,
        "sourceData": {
            "planningEntries": [_source_entry(r) for r in planning],
            "executionEntries": [_source_entry(r) for r in execution],
        },
        "aggregations": {
            "totalPlanning": total_planning,
            "totalExecution": total_execution,
            "variance": total_planning - total_execution,
        },
        "checksum": "",
    }


def compute_checksum(snapshot: dict) -> str:
    """SHA-256 hex digest of the canonical snapshot with ``checksum`` blanked."""
    payload = dict(snapshot or {})
    payload["checksum"] = ""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def seal_snapshot(snapshot: dict) -> dict:
    """Return a copy of *snapshot* with its checksum filled in."""
    sealed = dict(snapshot)
    sealed["checksum"] = compute_checksum(snapshot)
    return sealed


def check_report_integrity(report: FinancialReport) -> dict:
    """Compare the stored snapshot against its stored checksum.

    Returns ``{"reportId", "valid", "expected", "actual"}``; a report that
    was never snapshotted is reported invalid.
    """
    if not report.report_data or not report.snapshot_checksum:
        return {"reportId": report.id, "valid": False, "expected": report.snapshot_checksum, "actual": None}
    actual = compute_checksum(report.report_data)
    return {
        "reportId": report.id,
        "valid": actual == report.snapshot_checksum,
        "expected": report.snapshot_checksum,
        "actual": actual,
    }


def ensure_integrity(report: FinancialReport) -> None:
    """Raise SnapshotIntegrityError unless the stored snapshot verifies."""
    result = check_report_integrity(report)
    if not result["valid"]:
        logger.error(
            "Snapshot checksum mismatch",
            extra={"report_id": report.id},
        )
        raise SnapshotIntegrityError(report.id, result["expected"], result["actual"] or "")


def verify_checksum(report_id: int) -> dict:
    """Recompute the stored snapshot's checksum.

    Raises:
        NotFoundError: unknown report.
        ValidationError: the report has not been submitted yet.
        SnapshotIntegrityError: the snapshot no longer matches.
    """
    report = db.session.get(FinancialReport, report_id)
    if report is None:
        raise NotFoundError(resource="FinancialReport", resource_id=report_id)
    if not report.report_data:
        raise ValidationError(
            "Report has no snapshot to verify", details={"reportId": "not submitted"},
        )
    ensure_integrity(report)
    return check_report_integrity(report)


def detect_source_data_changes(report_id: int) -> list[dict]:
    """Planning/execution records modified after the snapshot was captured."""
    report = db.session.get(FinancialReport, report_id)
    if report is None:
        raise NotFoundError(resource="FinancialReport", resource_id=report_id)
    snapshot = report.report_data or {}
    captured_raw = snapshot.get("capturedAt")
    if not captured_raw:
        return []
    captured = _aware(datetime.fromisoformat(captured_raw))

    changes = []
    source = snapshot.get("sourceData") or {}
    for key, model, entity in (
        ("planningEntries", PlanningRecord, "planning"),
        ("executionEntries", ExecutionRecord, "execution"),
    ):
        ids = [e["id"] for e in source.get(key) or [] if e.get("id") is not None]
        if not ids:
            continue
        for record in model.query.filter(model.id.in_(ids)).order_by(model.id):
            updated = _aware(record.updated_at)
            if updated and updated > captured:
                changes.append({"entity": entity, "id": record.id, "updatedAt": _iso(updated)})

    if changes:
        logger.info(
            "Source data changed after snapshot",
            extra={"report_id": report_id},
        )
    return changes
