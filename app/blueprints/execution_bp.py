"""Execution data-entry blueprint.

REST API behind the quarterly execution form.

Endpoint groups:
  Reference data     GET  /api/v1/execution/hierarchy?projectType=&facilityType=
                     GET  /api/v1/execution/mapping/validate?projectType=&facilityType=
  Records            GET  /api/v1/execution/existing?projectId=&facilityId=&reportingPeriodId=
                     POST /api/v1/execution
                     GET  /api/v1/execution/<id>
                     PUT  /api/v1/execution/<id>
  Recompute          POST /api/v1/execution/calculate
                     GET  /api/v1/execution/<id>/calculate?mode=view
  Drafts             POST /api/v1/execution/drafts/key
                     GET/PUT/DELETE /api/v1/execution/drafts/<key>

Writes require an accountant (or admin) JWT.  Service layer owns all
business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

import app.services.execution_service as es
from app.core.exceptions import ConflictError, NotFoundError, PeriodLockedError, ValidationError
from app.middleware.jwt_auth import require_auth
from app.middleware.permission_required import require_role
from app.services.hierarchy_service import get_hierarchy, normalize_scope
from app.services.ledger.codes import QUARTERS
from app.services.ledger.drafts import DraftAutoSaver, build_draft_key, get_draft_repository
from app.services.ledger.edit_lock import is_visible
from app.services.ledger.entries import Ledger
from app.services.ledger.payables import validate_mapping
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

execution_bp = Blueprint("execution", __name__, url_prefix="/api/v1/execution")


# ── Error handlers ────────────────────────────────────────────────────────────


@execution_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@execution_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@execution_bp.errorhandler(PeriodLockedError)
def _handle_period_locked(error: PeriodLockedError):
    return api_error(
        E.PERIOD_LOCKED, str(error),
        details={
            "reportingPeriodId": error.reporting_period_id,
            "projectId": error.project_id,
            "facilityId": error.facility_id,
        },
    )


@execution_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@execution_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in execution_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _scope_args():
    return normalize_scope(request.args.get("projectType"), request.args.get("facilityType"))


def _saver() -> DraftAutoSaver:
    return DraftAutoSaver(get_draft_repository(current_app))


# ═════════════════════════════════════════════════════════════════════════
# Reference data
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/hierarchy", methods=["GET"])
@require_auth
def hierarchy():
    project_type, facility_type = _scope_args()
    categories = get_hierarchy(project_type, facility_type)
    return jsonify({
        "projectType": project_type,
        "facilityType": facility_type,
        "categories": [c.to_dict() for c in categories],
    }), 200


@execution_bp.route("/mapping/validate", methods=["GET"])
@require_auth
def mapping_validate():
    project_type, facility_type = _scope_args()
    return jsonify(validate_mapping(get_hierarchy(project_type, facility_type))), 200


# ═════════════════════════════════════════════════════════════════════════
# Records
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/existing", methods=["GET"])
@require_auth
def find_existing():
    ids = {}
    for param in ("projectId", "facilityId", "reportingPeriodId"):
        value = request.args.get(param, type=int)
        if not value:
            return api_error(E.VALIDATION_REQUIRED, f"{param} is required", details={param: "required"})
        ids[param] = value
    record = es.find_existing(ids["projectId"], ids["facilityId"], ids["reportingPeriodId"])
    return jsonify({"exists": record is not None, "record": record.to_dict() if record else None}), 200


@execution_bp.route("", methods=["POST"])
@require_auth
@require_role("accountant", "admin")
def create_execution():
    """Body: {projectId, facilityId, reportingPeriodId, projectType, facilityType,
    currentQuarter?, openingBalance?, formData: {activities: [...]}}"""
    data = request.get_json(silent=True) or {}
    record = es.create_execution(data, user_id=g.jwt_user_id)
    return jsonify({"record": record.to_dict(), "calculation": es.calculate_record(record.id, mode="edit")}), 201


@execution_bp.route("/<int:record_id>", methods=["GET"])
@require_auth
def get_execution(record_id):
    record = es.get_execution(record_id)
    hierarchy_ = get_hierarchy(record.project_type, record.facility_type)
    ledger = es.load_record_ledger(record, hierarchy_)
    visible = {q: is_visible(q, record.current_quarter, ledger) for q in QUARTERS}
    return jsonify({"record": record.to_dict(), "visibleQuarters": visible}), 200


@execution_bp.route("/<int:record_id>", methods=["PUT"])
@require_auth
@require_role("accountant", "admin")
def update_execution(record_id):
    data = request.get_json(silent=True) or {}
    record = es.update_execution(record_id, data, user_id=g.jwt_user_id)
    return jsonify({"record": record.to_dict(), "calculation": es.calculate_record(record.id, mode="edit")}), 200


# ═════════════════════════════════════════════════════════════════════════
# Recompute
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/calculate", methods=["POST"])
@require_auth
def calculate():
    """Stateless recompute; nothing is persisted.

    Body: {projectType, facilityType, activities, currentQuarter?, openingBalance?, mode?}
    """
    data = request.get_json(silent=True) or {}
    project_type, facility_type = normalize_scope(data.get("projectType"), data.get("facilityType"))
    activities = data.get("activities")
    if activities is None and isinstance(data.get("formData"), dict):
        activities = data["formData"].get("activities")
    result = es.calculate_execution(
        project_type,
        facility_type,
        activities or [],
        current_quarter=data.get("currentQuarter") or "q1",
        opening_balance=data.get("openingBalance"),
        mode=data.get("mode") or "edit",
    )
    return jsonify(result), 200


@execution_bp.route("/<int:record_id>/calculate", methods=["GET"])
@require_auth
def calculate_record(record_id):
    mode = request.args.get("mode", es.VIEW_MODE)
    return jsonify(es.calculate_record(record_id, mode=mode)), 200


# ═════════════════════════════════════════════════════════════════════════
# Drafts
# ═════════════════════════════════════════════════════════════════════════


@execution_bp.route("/drafts/key", methods=["POST"])
@require_auth
def draft_key():
    """Body: {facilityId, reportingPeriod, program, facilityType, facilityName, mode}"""
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("facilityId", "reportingPeriod", "program") if not data.get(k)]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED, "Draft key parts missing",
            details={k: "required" for k in missing},
        )
    key = build_draft_key(
        data["facilityId"], data["reportingPeriod"], data["program"],
        data.get("facilityType"), data.get("facilityName"), data.get("mode") or "create",
    )
    return jsonify({"key": key}), 200


@execution_bp.route("/drafts/<path:key>", methods=["GET"])
@require_auth
def get_draft(key):
    saver = _saver()
    draft = saver.load(key)
    if draft is None:
        return api_error(E.NOT_FOUND, "Draft not found")
    ledger, expanded = saver.restore(key)
    return jsonify({
        "key": key,
        "formValues": ledger.to_form_values(),
        "currentQuarter": ledger.current_quarter,
        "expandedRows": expanded,
        "timestamps": draft.get("timestamps") or {},
    }), 200


@execution_bp.route("/drafts/<path:key>", methods=["PUT"])
@require_auth
@require_role("accountant", "admin")
def save_draft(key):
    """Body: {formValues | activities, currentQuarter?, expandedRows?, lastModified?}

    409 ERR_CONFLICT_STALE when a newer draft is already stored.
    """
    data = request.get_json(silent=True) or {}
    rows = data.get("formValues")
    if rows is None:
        rows = data.get("activities") or []
    if not isinstance(rows, (list, dict)):
        return api_error(E.VALIDATION_INVALID, "formValues must be an object or list")
    try:
        ledger = Ledger.from_form_activities(rows, data.get("currentQuarter") or "q1")
    except ValueError:
        return api_error(
            E.VALIDATION_INVALID, "Invalid currentQuarter", details={"currentQuarter": "must be q1-q4"},
        )

    saved = _saver().save(
        key, ledger, expanded_rows=data.get("expandedRows") or (), modified_at=data.get("lastModified"),
    )
    if not saved:
        return api_error(E.CONFLICT_STALE, "A newer draft is already saved", details={"key": key})
    return jsonify({"key": key, "saved": True}), 200


@execution_bp.route("/drafts/<path:key>", methods=["DELETE"])
@require_auth
@require_role("accountant", "admin")
def delete_draft(key):
    _saver().discard(key)
    return "", 204
