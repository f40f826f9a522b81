"""
Financial report workflow: accountant → DAF → DG approval chain.

Manages report status transitions with:
  - Guard checks in a fixed order: mandatory comment, actor role, status
  - Snapshot capture + SHA-256 checksum + immutable version row on submit
  - Period lock on submit, released again on any rejection
  - Checksum verification before each approval
  - Best-effort PDF on final approval, rendered after the commit
  - Append-only workflow log
  - Notifications after the transaction commits

5 actions:
  submit, daf_approve, daf_reject, dg_approve, dg_reject

Each transition is one database transaction.  ``row_version`` on the report
is the optimistic lock: of two concurrent transitions on the same report
only the first commit wins, the loser gets a ConflictError and nothing of
its work is persisted.

Usage:
    from app.services.report_workflow import transition_report

    report = transition_report(
        report_id=7, action="daf_reject", actor_id=3, roles={"daf"},
        comment="Cash at bank does not match the bank statement",
    )
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ReportTransitionError,
    ValidationError,
)
from app.models import db
from app.models.auth import ROLE_ACCOUNTANT, ROLE_DAF, ROLE_DG
from app.models.financial_report import (
    STATUS_APPROVED_BY_DAF,
    STATUS_DRAFT,
    STATUS_FULLY_APPROVED,
    STATUS_PENDING_DAF,
    STATUS_REJECTED_BY_DAF,
    STATUS_REJECTED_BY_DG,
    FinancialReport,
    FinancialReportVersion,
    FinancialReportWorkflowLog,
)
from app.services import execution_service, notification, pdf_service, snapshot_service
from app.services.hierarchy_service import normalize_scope
from app.services.period_lock import lock_period, unlock_period

logger = logging.getLogger(__name__)

SUBMIT = "submit"
DAF_APPROVE = "daf_approve"
DAF_REJECT = "daf_reject"
DG_APPROVE = "dg_approve"
DG_REJECT = "dg_reject"

# Report transition rules
REPORT_TRANSITIONS = {
    SUBMIT: {
        "from": [STATUS_DRAFT, STATUS_REJECTED_BY_DAF, STATUS_REJECTED_BY_DG],
        "to": STATUS_PENDING_DAF,
        "role": ROLE_ACCOUNTANT,
        "log": "submitted",
        "comment_required": False,
    },
    DAF_APPROVE: {
        "from": [STATUS_PENDING_DAF],
        "to": STATUS_APPROVED_BY_DAF,
        "role": ROLE_DAF,
        "log": "daf_approved",
        "comment_required": False,
    },
    DAF_REJECT: {
        "from": [STATUS_PENDING_DAF],
        "to": STATUS_REJECTED_BY_DAF,
        "role": ROLE_DAF,
        "log": "daf_rejected",
        "comment_required": True,
    },
    DG_APPROVE: {
        "from": [STATUS_APPROVED_BY_DAF],
        "to": STATUS_FULLY_APPROVED,
        "role": ROLE_DG,
        "log": "dg_approved",
        "comment_required": False,
    },
    DG_REJECT: {
        "from": [STATUS_APPROVED_BY_DAF],
        "to": STATUS_REJECTED_BY_DG,
        "role": ROLE_DG,
        "log": "dg_rejected",
        "comment_required": True,
    },
}

# URL spelling (daf-approve) → action key
ACTION_ALIASES = {key.replace("_", "-"): key for key in REPORT_TRANSITIONS}


def normalize_action(action: str) -> str:
    key = ACTION_ALIASES.get(action, action)
    if key not in REPORT_TRANSITIONS:
        raise ValidationError(f"Unknown action: {action}", details={"action": "unknown"})
    return key


# ── Guards ───────────────────────────────────────────────────────────────


def validate_report_transition(report: FinancialReport, action: str) -> dict:
    """Validate whether an action is valid for the report's current status."""
    rule = REPORT_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": report.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if report.status not in rule["from"]:
        return {"valid": False, "from": report.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{report.status}'"}

    return {"valid": True, "from": report.status, "to": rule["to"], "reason": None}


def _normalize_roles(roles) -> set[str]:
    if isinstance(roles, str):
        roles = [roles]
    return {str(r).strip().lower() for r in roles or ()}


def check_transition(report: FinancialReport, action: str, roles, comment=None, require_comment=True) -> None:
    """Raise the first guard violation for *action*.

    Order: mandatory comment (ValidationError), role (PermissionDenied),
    status (ReportTransitionError).  Nothing is mutated.
    """
    rule = REPORT_TRANSITIONS.get(action)
    if rule is None:
        raise ValidationError(f"Unknown action: {action}", details={"action": "unknown"})

    if require_comment and rule["comment_required"] and not (comment or "").strip():
        raise ValidationError(
            "A comment is required to reject a report",
            details={"comment": "required for rejection"},
        )

    actor_roles = _normalize_roles(roles)
    if rule["role"] not in actor_roles:
        raise PermissionDenied(action, rule["role"], actor_roles)

    check = validate_report_transition(report, action)
    if not check["valid"]:
        raise ReportTransitionError(report.id, action, report.status, check["reason"])


def _can(report: FinancialReport, action: str, roles) -> dict:
    try:
        check_transition(report, action, roles, require_comment=False)
    except (PermissionDenied, ReportTransitionError) as exc:
        return {"allowed": False, "reason": str(exc)}
    return {"allowed": True, "reason": None}


def can_submit(report, roles) -> dict:
    return _can(report, SUBMIT, roles)


def can_daf_approve(report, roles) -> dict:
    return _can(report, DAF_APPROVE, roles)


def can_daf_reject(report, roles) -> dict:
    return _can(report, DAF_REJECT, roles)


def can_dg_approve(report, roles) -> dict:
    return _can(report, DG_APPROVE, roles)


def can_dg_reject(report, roles) -> dict:
    return _can(report, DG_REJECT, roles)


def get_available_actions(report: FinancialReport, roles) -> list[str]:
    return [action for action in REPORT_TRANSITIONS if _can(report, action, roles)["allowed"]]


# ── Queries ──────────────────────────────────────────────────────────────


def get_report(report_id: int) -> FinancialReport:
    report = db.session.get(FinancialReport, report_id)
    if report is None:
        raise NotFoundError(resource="FinancialReport", resource_id=report_id)
    return report


def get_workflow_logs(report_id: int) -> list[FinancialReportWorkflowLog]:
    get_report(report_id)
    return (
        FinancialReportWorkflowLog.query
        .filter_by(report_id=report_id)
        .order_by(FinancialReportWorkflowLog.timestamp, FinancialReportWorkflowLog.id)
        .all()
    )


def list_versions(report_id: int) -> list[FinancialReportVersion]:
    get_report(report_id)
    return (
        FinancialReportVersion.query
        .filter_by(report_id=report_id)
        .order_by(FinancialReportVersion.id)
        .all()
    )


def next_version(report: FinancialReport) -> str:
    """"1.0" for the first submission, then 1.1, 1.2, ... per resubmission."""
    latest = (
        FinancialReportVersion.query
        .filter_by(report_id=report.id)
        .order_by(FinancialReportVersion.id.desc())
        .first()
    )
    if latest is None:
        return "1.0"
    major, _, minor = latest.version.partition(".")
    return f"{int(major)}.{int(minor or 0) + 1}"


# ── Commands ─────────────────────────────────────────────────────────────


def create_report(data: dict, user_id: int | None = None) -> FinancialReport:
    """Create a draft report for a (project, facility, period) tuple.

    Raises:
        ValidationError: missing ids or unknown scope.
        ConflictError: a report already covers the tuple and statement.
    """
    errors = {}
    fields = {}
    for key, attr in (
        ("projectId", "project_id"),
        ("facilityId", "facility_id"),
        ("reportingPeriodId", "reporting_period_id"),
    ):
        try:
            value = int(data.get(key))
        except (TypeError, ValueError):
            value = 0
        if value <= 0:
            errors[key] = "is required and must be a positive integer"
        fields[attr] = value
    try:
        project_type, facility_type = normalize_scope(
            data.get("projectType") or "HIV", data.get("facilityType") or "hospital",
        )
    except ValidationError as exc:
        errors.update(exc.details)
        project_type = facility_type = None
    if errors:
        raise ValidationError("Invalid report data", details=errors)

    statement_code = (data.get("statementCode") or "ASSETS_LIAB").strip().upper()
    existing = FinancialReport.query.filter_by(statement_code=statement_code, **fields).first()
    if existing:
        raise ConflictError(
            "FinancialReport", "projectId/facilityId/reportingPeriodId",
            f"{fields['project_id']}/{fields['facility_id']}/{fields['reporting_period_id']}",
        )

    title = (data.get("title") or "").strip() or (
        f"{project_type} execution report · facility {fields['facility_id']} · "
        f"period {fields['reporting_period_id']}"
    )
    report = FinancialReport(
        title=title,
        project_type=project_type,
        facility_type=facility_type,
        statement_code=statement_code,
        status=STATUS_DRAFT,
        locked=False,
        created_by=user_id,
        updated_by=user_id,
        **fields,
    )
    db.session.add(report)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Financial report created",
        extra={"report_id": report.id, "facility_id": report.facility_id, "user_id": user_id},
    )
    return report


def _ensure_submittable(report: FinancialReport) -> None:
    record = execution_service.find_existing(
        report.project_id, report.facility_id, report.reporting_period_id,
    )
    if record is None:
        raise ValidationError(
            "No execution data recorded for this reporting period",
            details={"executionRecord": "required before submission"},
        )
    calc = execution_service.record_statement(record)
    if not calc["canSubmitExecution"]:
        details = {"difference": calc["difference"]}
        for err in calc["validationErrors"]:
            details[err["field"]] = err["message"]
        raise ValidationError("Execution data does not balance", details=details)


def _apply_submit(report: FinancialReport, actor_id, comment, now) -> None:
    _ensure_submittable(report)
    version = next_version(report)
    snapshot = snapshot_service.seal_snapshot(
        snapshot_service.capture_snapshot(report, version=version),
    )

    report.report_data = snapshot
    report.snapshot_checksum = snapshot["checksum"]
    report.snapshot_timestamp = now
    report.version = version
    report.locked = True
    report.submitted_by = actor_id
    report.submitted_at = now
    report.daf_id = report.daf_approved_at = report.daf_comment = None
    report.dg_id = report.dg_approved_at = report.dg_comment = None
    report.final_pdf_url = None

    db.session.add(FinancialReportVersion(
        report_id=report.id,
        version=version,
        snapshot_data=snapshot,
        snapshot_checksum=snapshot["checksum"],
        change_reason=comment or ("Initial submission" if version == "1.0" else "Resubmission"),
        created_by=actor_id,
    ))
    lock_period(
        report.reporting_period_id, report.project_id, report.facility_id,
        user_id=actor_id, reason=f"Report {report.id} v{version} submitted",
    )


def _apply_reject(report: FinancialReport, actor_id, comment, now, stage: str) -> None:
    report.locked = False
    if stage == "daf":
        report.daf_id = actor_id
        report.daf_comment = comment
    else:
        report.dg_id = actor_id
        report.dg_comment = comment
    unlock_period(
        report.reporting_period_id, report.project_id, report.facility_id,
        user_id=actor_id, reason=f"Report {report.id} rejected by {stage.upper()}",
    )


def _apply_dg_approve(report: FinancialReport, actor_id, comment, now) -> None:
    snapshot_service.ensure_integrity(report)
    report.dg_id = actor_id
    report.dg_approved_at = now
    report.dg_comment = comment
    report.locked = True


def _archive_final_pdf(report: FinancialReport) -> None:
    """Render the approved report and record its path; never raises.

    Runs only after the approval committed, so a lost race or failed commit
    leaves no PDF behind.
    """
    try:
        report.final_pdf_url = pdf_service.generate_report_pdf(report)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(
            "PDF generation failed; approval stands",
            extra={"report_id": report.id, "version": report.version},
        )


def transition_report(report_id: int, action: str, actor_id: int | None, roles, comment: str | None = None) -> FinancialReport:
    """Run one workflow action against a report.

    Raises:
        NotFoundError: unknown report.
        ValidationError: missing rejection comment, or unbalanced / missing
            execution data on submit.
        PermissionDenied: actor lacks the stage role.
        ReportTransitionError: action not allowed from the current status.
        SnapshotIntegrityError: stored snapshot fails its checksum on approval.
        ConflictError: lost a concurrent-update race.
    """
    action = normalize_action(action)
    comment = (comment or "").strip() or None
    report = get_report(report_id)
    check_transition(report, action, roles, comment)

    rule = REPORT_TRANSITIONS[action]
    from_status = report.status
    now = datetime.now(timezone.utc)

    try:
        if action == SUBMIT:
            _apply_submit(report, actor_id, comment, now)
        elif action == DAF_APPROVE:
            snapshot_service.ensure_integrity(report)
            report.daf_id = actor_id
            report.daf_approved_at = now
            report.daf_comment = comment
        elif action == DAF_REJECT:
            _apply_reject(report, actor_id, comment, now, "daf")
        elif action == DG_APPROVE:
            _apply_dg_approve(report, actor_id, comment, now)
        elif action == DG_REJECT:
            _apply_reject(report, actor_id, comment, now, "dg")

        report.status = rule["to"]
        report.updated_by = actor_id
        db.session.add(FinancialReportWorkflowLog(
            report_id=report.id,
            action=rule["log"],
            actor_id=actor_id,
            comment=comment,
            timestamp=now,
        ))
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        logger.warning(
            "Report transition lost a concurrent update",
            extra={"report_id": report_id, "action": action, "actor_id": actor_id},
        )
        raise ConflictError(
            "FinancialReport", "row_version", str(report_id),
            message=f"Report {report_id} was modified concurrently; reload and retry",
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Report transition applied",
        extra={
            "report_id": report.id,
            "action": action,
            "actor_id": actor_id,
            "from_status": from_status,
            "to_status": report.status,
            "version": report.version,
        },
    )
    if action == DG_APPROVE:
        _archive_final_pdf(report)
    _notify(report, action)
    return report


def _notify(report: FinancialReport, action: str) -> None:
    if action == SUBMIT:
        notification.notify_daf_users(report)
    elif action == DAF_APPROVE:
        notification.notify_dg_users(report)
    elif action == DAF_REJECT:
        notification.notify_report_creator(
            report, f"Report #{report.id} rejected by DAF", report.daf_comment or "", severity="warning",
        )
    elif action == DG_REJECT:
        notification.notify_report_creator(
            report, f"Report #{report.id} rejected by DG", report.dg_comment or "", severity="warning",
        )
    elif action == DG_APPROVE:
        notification.notify_report_creator(
            report, f"Report #{report.id} fully approved", f"{report.title} (version {report.version})",
            severity="success",
        )


# Thin named wrappers for callers that prefer one function per action.


def submit(report_id, actor_id, roles, comment=None):
    return transition_report(report_id, SUBMIT, actor_id, roles, comment)


def daf_approve(report_id, actor_id, roles, comment=None):
    return transition_report(report_id, DAF_APPROVE, actor_id, roles, comment)


def daf_reject(report_id, actor_id, roles, comment=None):
    return transition_report(report_id, DAF_REJECT, actor_id, roles, comment)


def dg_approve(report_id, actor_id, roles, comment=None):
    return transition_report(report_id, DG_APPROVE, actor_id, roles, comment)


def dg_reject(report_id, actor_id, roles, comment=None):
    return transition_report(report_id, DG_REJECT, actor_id, roles, comment)
