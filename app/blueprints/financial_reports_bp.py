"""Financial report workflow blueprint.

Endpoint groups:
  Reports            GET/POST /api/v1/financial-reports
                     GET      /api/v1/financial-reports/<id>
  Audit              GET      /api/v1/financial-reports/<id>/workflow-logs
                     GET      /api/v1/financial-reports/<id>/versions
  Integrity          GET      /api/v1/financial-reports/<id>/verify-checksum
                     GET      /api/v1/financial-reports/<id>/source-changes
  Workflow actions   POST     /api/v1/financial-reports/<action>          body {reportId, comment?}
                     POST     /api/v1/financial-reports/<id>/<action>     body {comment?}
                     action ∈ submit | daf-approve | daf-reject | dg-approve | dg-reject

Every route requires a bearer JWT.  Role and state guards for the workflow
actions live in the service layer, which also owns all commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import HTTPException

import app.services.report_workflow as wf
from app.blueprints import paginate_query
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ReportTransitionError,
    SnapshotIntegrityError,
    ValidationError,
)
from app.middleware.jwt_auth import require_auth
from app.middleware.permission_required import require_role
from app.models.financial_report import REPORT_STATUSES, FinancialReport
from app.services import snapshot_service
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

financial_reports_bp = Blueprint("financial_reports", __name__, url_prefix="/api/v1/financial-reports")


# ── Error handlers ────────────────────────────────────────────────────────────


@financial_reports_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@financial_reports_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@financial_reports_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    return api_error(
        E.FORBIDDEN, str(error),
        details={"action": error.action, "required_role": error.required_role},
    )


@financial_reports_bp.errorhandler(ReportTransitionError)
def _handle_transition(error: ReportTransitionError):
    return api_error(
        E.CONFLICT_STATE, str(error),
        details={"action": error.action, "current_status": error.current_status},
    )


@financial_reports_bp.errorhandler(SnapshotIntegrityError)
def _handle_integrity(error: SnapshotIntegrityError):
    return api_error(
        E.SNAPSHOT_INTEGRITY, str(error),
        details={"expected": error.expected, "actual": error.actual},
    )


@financial_reports_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    code = E.CONFLICT_STALE if error.field == "row_version" else E.CONFLICT_DUPLICATE
    return api_error(code, str(error))


@financial_reports_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in financial_reports_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _roles():
    return getattr(g, "jwt_roles", None) or []


def _report_payload(report: FinancialReport, include_snapshot: bool = False) -> dict:
    d = report.to_dict(include_snapshot=include_snapshot)
    d["available_actions"] = wf.get_available_actions(report, _roles())
    return d


# ═════════════════════════════════════════════════════════════════════════
# Reports
# ═════════════════════════════════════════════════════════════════════════


@financial_reports_bp.route("", methods=["GET"])
@require_auth
def list_reports():
    """List reports, newest first.

    Query params: status, facilityId, projectId, reportingPeriodId, limit, offset
    """
    q = FinancialReport.query
    status = request.args.get("status")
    if status:
        if status not in REPORT_STATUSES:
            return api_error(E.VALIDATION_INVALID, f"Unknown status: {status}")
        q = q.filter_by(status=status)
    for param, column in (
        ("facilityId", FinancialReport.facility_id),
        ("projectId", FinancialReport.project_id),
        ("reportingPeriodId", FinancialReport.reporting_period_id),
    ):
        value = request.args.get(param, type=int)
        if value:
            q = q.filter(column == value)

    items, total = paginate_query(q.order_by(FinancialReport.id.desc()))
    return jsonify({"items": [r.to_dict() for r in items], "total": total}), 200


@financial_reports_bp.route("", methods=["POST"])
@require_auth
@require_role("accountant", "admin")
def create_report():
    """Create a draft report.

    Body: {projectId, facilityId, reportingPeriodId, projectType?, facilityType?,
           statementCode?, title?}
    """
    data = request.get_json(silent=True) or {}
    report = wf.create_report(data, user_id=g.jwt_user_id)
    return jsonify(_report_payload(report)), 201


@financial_reports_bp.route("/<int:report_id>", methods=["GET"])
@require_auth
def get_report(report_id):
    include = request.args.get("includeSnapshot", "").lower() in ("1", "true", "yes")
    report = wf.get_report(report_id)
    return jsonify(_report_payload(report, include_snapshot=include)), 200


@financial_reports_bp.route("/<int:report_id>/workflow-logs", methods=["GET"])
@require_auth
def workflow_logs(report_id):
    logs = wf.get_workflow_logs(report_id)
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)}), 200


@financial_reports_bp.route("/<int:report_id>/versions", methods=["GET"])
@require_auth
def versions(report_id):
    items = wf.list_versions(report_id)
    return jsonify({"items": [v.to_dict() for v in items], "total": len(items)}), 200


@financial_reports_bp.route("/<int:report_id>/verify-checksum", methods=["GET"])
@require_auth
def verify_checksum(report_id):
    """200 with ``{"valid": true}`` or 409 ERR_SNAPSHOT_INTEGRITY."""
    return jsonify(snapshot_service.verify_checksum(report_id)), 200


@financial_reports_bp.route("/<int:report_id>/source-changes", methods=["GET"])
@require_auth
def source_changes(report_id):
    changes = snapshot_service.detect_source_data_changes(report_id)
    return jsonify({"reportId": report_id, "hasChanges": bool(changes), "changes": changes}), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow actions
# ═════════════════════════════════════════════════════════════════════════


def _run_action(report_id, action: str):
    data = request.get_json(silent=True) or {}
    report = wf.transition_report(
        report_id, action, g.jwt_user_id, _roles(), comment=data.get("comment"),
    )
    return jsonify({
        "success": True,
        "message": f"Report {report.id} is now {report.status}",
        "report": _report_payload(report),
    }), 200


@financial_reports_bp.route("/<string:action>", methods=["POST"])
@require_auth
def action_by_body(action):
    """Body: {reportId, comment?}"""
    if action not in wf.ACTION_ALIASES and action not in wf.REPORT_TRANSITIONS:
        return api_error(E.NOT_FOUND, f"Unknown action: {action}")
    data = request.get_json(silent=True) or {}
    try:
        report_id = int(data.get("reportId"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_REQUIRED, "reportId is required", details={"reportId": "required"})
    return _run_action(report_id, action)


@financial_reports_bp.route("/<int:report_id>/<string:action>", methods=["POST"])
@require_auth
def action_by_path(report_id, action):
    if action not in wf.ACTION_ALIASES and action not in wf.REPORT_TRANSITIONS:
        return api_error(E.NOT_FOUND, f"Unknown action: {action}")
    return _run_action(report_id, action)
