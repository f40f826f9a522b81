"""
Execution record service.

Business logic for the quarterly execution data a facility accountant enters:
payload validation, period-lock enforcement, ledger recompute (with cash at
bank and payables written back into sections D and E) and persistence.

Transaction policy: create/update commit once; any failure rolls back.
"""

import logging
from dataclasses import replace

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PeriodLockedError,
    ValidationError,
)
from app.models import db
from app.models.execution import ExecutionRecord
from app.services.hierarchy_service import get_hierarchy, normalize_scope
from app.services.ledger.calculation import LedgerCalculation, calculate
from app.services.ledger.codes import QUARTERS, normalize_quarter, to_amount
from app.services.ledger.edit_lock import is_editable
from app.services.ledger.entries import Ledger, QuarterEntry
from app.services.ledger.equation import DEFAULT_TOLERANCE
from app.services.ledger.hierarchy import activities_by_code, leaf_activities
from app.services.ledger.payment_info import PAYMENT_STATUSES
from app.services.ledger.scheduler import DEFAULT_DELAY_MS
from app.services.ledger.session import LedgerSession
from app.services.period_lock import is_period_locked

logger = logging.getLogger(__name__)

VIEW_MODE = "view"
MODES = frozenset({"create", "edit", VIEW_MODE})

_ID_FIELDS = (
    ("projectId", "project_id"),
    ("facilityId", "facility_id"),
    ("reportingPeriodId", "reporting_period_id"),
)


# ── Payload validation ───────────────────────────────────────────────────


def _positive_int(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _check_payment_statuses(activities, errors: dict) -> None:
    rows = activities.items() if isinstance(activities, dict) else (
        ((row or {}).get("code"), row) for row in activities
    )
    for code, row in rows:
        status = (row or {}).get("paymentStatus")
        if status is None:
            continue
        values = status.values() if isinstance(status, dict) else [status]
        for value in values:
            if str(value).strip().lower() not in PAYMENT_STATUSES:
                errors[f"{code}.paymentStatus"] = (
                    f"Must be one of: {', '.join(sorted(PAYMENT_STATUSES))}"
                )


def validate_execution_payload(data: dict, partial: bool = False) -> dict:
    """Normalise a create/update body; raises ValidationError keyed by field.

    Returns a dict with snake_case keys for whatever was supplied.
    """
    errors = {}
    fields = {}

    if not partial:
        for key, attr in _ID_FIELDS:
            value = _positive_int(data.get(key))
            if value is None:
                errors[key] = "is required and must be a positive integer"
            else:
                fields[attr] = value
        try:
            fields["project_type"], fields["facility_type"] = normalize_scope(
                data.get("projectType"), data.get("facilityType"),
            )
        except ValidationError as exc:
            errors.update(exc.details)

    if "currentQuarter" in data or not partial:
        try:
            fields["current_quarter"] = normalize_quarter(data.get("currentQuarter") or "q1")
        except ValueError:
            errors["currentQuarter"] = "must be one of q1, q2, q3, q4"

    activities = data.get("activities")
    if activities is None and isinstance(data.get("formData"), dict):
        activities = data["formData"].get("activities")
    if activities is not None:
        if not isinstance(activities, (list, dict)):
            errors["activities"] = "must be a list of activity rows"
        else:
            _check_payment_statuses(activities, errors)
            fields["activities"] = activities
    elif not partial:
        fields["activities"] = []

    if errors:
        raise ValidationError("Invalid execution data", details=errors)
    return fields


# ── Ledger helpers ───────────────────────────────────────────────────────


def build_ledger(hierarchy, activities, current_quarter: str = "q1") -> Ledger:
    """Ledger with one entry per leaf activity, filled from *activities*.

    Raises:
        ValidationError: rows reference codes outside the hierarchy.
    """
    known = activities_by_code(hierarchy)
    loaded = Ledger.from_form_activities(activities or [], current_quarter)
    unknown = {
        code: "Unknown activity code" for code in loaded
        if code not in known
    }
    not_editable = {
        code: "Computed and total rows cannot hold values" for code in loaded
        if code in known and not known[code].is_leaf
        and any(v is not None for v in loaded[code].values())
    }
    if unknown or not_editable:
        raise ValidationError("Invalid activity rows", details={**unknown, **not_editable})
    return Ledger.initialize(hierarchy, current_quarter, existing=dict(loaded.items()))


def load_record_ledger(record: ExecutionRecord, hierarchy) -> Ledger:
    """Stored form data → Ledger, migrating legacy payment fields."""
    known = activities_by_code(hierarchy)
    loaded = Ledger.from_form_activities(record.activities, record.current_quarter or "q1")
    existing = {code: entry for code, entry in loaded.items() if code in known}
    return Ledger.initialize(hierarchy, record.current_quarter or "q1", existing=existing)


def merge_locked_quarters(stored: Ledger, incoming: Ledger, hierarchy) -> Ledger:
    """Carry read-only quarters over from *stored* into *incoming*.

    Quarters the edit-lock policy closes for the incoming current quarter
    keep their stored values and payments.  An omitted value keeps the stored
    one; a value or payment that differs from it is rejected.

    Raises:
        ValidationError: keyed ``"{code}.{quarter}"`` per changed locked cell.
    """
    quarter = incoming.current_quarter
    errors = {}
    entries = {}
    for activity in leaf_activities(hierarchy):
        code = activity.code
        old = stored.get(code) or QuarterEntry()
        new = incoming.get(code) or QuarterEntry()
        locked = [q for q in QUARTERS if not is_editable(activity, q, quarter)]
        values = {}
        for q in locked:
            sent = new.value(q)
            if sent is not None and sent != old.value(q):
                errors[f"{code}.{q}"] = "Quarter is locked for editing"
            elif q in new.payment.statuses and new.payment.for_quarter(q) != old.payment.for_quarter(q):
                errors[f"{code}.{q}"] = "Payment for a locked quarter cannot change"
            values[q] = old.value(q)
        payment = new.payment.with_quarters_from(old.payment, locked)
        entries[code] = replace(new, payment=payment, **values)
    if errors:
        raise ValidationError("Locked quarters cannot be edited", details=errors)
    return Ledger(entries, quarter)


def _tolerance() -> float:
    return current_app.config.get("BALANCE_TOLERANCE", DEFAULT_TOLERANCE)


def _calculate(ledger, hierarchy, opening_balance=None, mode="edit") -> LedgerCalculation:
    if mode not in MODES:
        raise ValidationError("Invalid mode", details={"mode": f"must be one of {', '.join(sorted(MODES))}"})
    if opening_balance is not None:
        opening_balance = to_amount(opening_balance) or 0.0
    return calculate(
        ledger,
        hierarchy,
        opening_balance=opening_balance,
        tolerance=_tolerance(),
        auto_balances=mode != VIEW_MODE,
    )


def _reject_payment_errors(calc: LedgerCalculation) -> None:
    if calc.balance.payment_errors:
        raise ValidationError("Invalid payment data", details=dict(calc.balance.payment_errors))


# ── Queries ──────────────────────────────────────────────────────────────


def find_existing(project_id, facility_id, reporting_period_id) -> ExecutionRecord | None:
    return ExecutionRecord.query.filter_by(
        project_id=project_id,
        facility_id=facility_id,
        reporting_period_id=reporting_period_id,
    ).first()


def get_execution(record_id: int) -> ExecutionRecord:
    record = db.session.get(ExecutionRecord, record_id)
    if record is None:
        raise NotFoundError(resource="ExecutionRecord", resource_id=record_id)
    return record


def _ensure_unlocked(reporting_period_id, project_id, facility_id) -> None:
    if is_period_locked(reporting_period_id, project_id, facility_id):
        raise PeriodLockedError(reporting_period_id, project_id, facility_id)


# ── Commands ─────────────────────────────────────────────────────────────


def create_execution(data: dict, user_id: int | None = None) -> ExecutionRecord:
    """Create the execution record for a (project, facility, period) tuple.

    Raises:
        ValidationError: malformed payload or invalid payment data.
        PeriodLockedError: the period is locked for approval.
        ConflictError: a record already exists for the tuple.
    """
    fields = validate_execution_payload(data)
    _ensure_unlocked(fields["reporting_period_id"], fields["project_id"], fields["facility_id"])

    if find_existing(fields["project_id"], fields["facility_id"], fields["reporting_period_id"]):
        raise ConflictError(
            "ExecutionRecord",
            "projectId/facilityId/reportingPeriodId",
            f"{fields['project_id']}/{fields['facility_id']}/{fields['reporting_period_id']}",
        )

    hierarchy = get_hierarchy(fields["project_type"], fields["facility_type"])
    ledger = build_ledger(hierarchy, fields["activities"], fields["current_quarter"])
    calc = _calculate(ledger, hierarchy, data.get("openingBalance"), mode="create")
    _reject_payment_errors(calc)

    record = ExecutionRecord(
        project_id=fields["project_id"],
        facility_id=fields["facility_id"],
        reporting_period_id=fields["reporting_period_id"],
        project_type=fields["project_type"],
        facility_type=fields["facility_type"],
        current_quarter=calc.ledger.current_quarter,
        form_data={"activities": calc.ledger.to_form_activities()},
        created_by=user_id,
        updated_by=user_id,
    )
    db.session.add(record)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "ExecutionRecord", "projectId/facilityId/reportingPeriodId",
            f"{fields['project_id']}/{fields['facility_id']}/{fields['reporting_period_id']}",
        ) from exc

    logger.info(
        "Execution record created",
        extra={
            "execution_id": record.id,
            "facility_id": record.facility_id,
            "project_id": record.project_id,
            "reporting_period_id": record.reporting_period_id,
            "user_id": user_id,
        },
    )
    return record


def update_execution(record_id: int, data: dict, user_id: int | None = None) -> ExecutionRecord:
    """Replace activity values and/or move the current quarter.

    Raises:
        NotFoundError, ValidationError, PeriodLockedError.
    """
    record = get_execution(record_id)
    fields = validate_execution_payload(data, partial=True)
    _ensure_unlocked(record.reporting_period_id, record.project_id, record.facility_id)

    hierarchy = get_hierarchy(record.project_type, record.facility_type)
    quarter = fields.get("current_quarter", record.current_quarter)
    if "activities" in fields:
        incoming = build_ledger(hierarchy, fields["activities"], quarter)
        ledger = merge_locked_quarters(load_record_ledger(record, hierarchy), incoming, hierarchy)
    else:
        ledger = load_record_ledger(record, hierarchy).with_current_quarter(quarter)

    calc = _calculate(ledger, hierarchy, data.get("openingBalance"), mode="edit")
    _reject_payment_errors(calc)

    record.current_quarter = calc.ledger.current_quarter
    record.form_data = {"activities": calc.ledger.to_form_activities()}
    record.updated_by = user_id
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Execution record updated",
        extra={"execution_id": record.id, "facility_id": record.facility_id, "user_id": user_id},
    )
    return record


def calculate_execution(
    project_type: str,
    facility_type: str,
    activities,
    current_quarter: str = "q1",
    opening_balance=None,
    mode: str = "edit",
) -> dict:
    """Stateless recompute for the data-entry UI (nothing is persisted).

    Invalid stored partial payments are reported in ``validationErrors`` and
    block ``canSubmitExecution`` rather than raising.
    """
    hierarchy = get_hierarchy(project_type, facility_type)
    try:
        quarter = normalize_quarter(current_quarter or "q1")
    except ValueError as exc:
        raise ValidationError(
            "Invalid quarter", details={"currentQuarter": "must be one of q1, q2, q3, q4"},
        ) from exc
    ledger = build_ledger(hierarchy, activities, quarter)
    return _calculate(ledger, hierarchy, opening_balance, mode).to_dict()


def calculate_record(record_id: int, mode: str = VIEW_MODE) -> dict:
    record = get_execution(record_id)
    hierarchy = get_hierarchy(record.project_type, record.facility_type)
    return _calculate(load_record_ledger(record, hierarchy), hierarchy, mode=mode).to_dict()


def record_statement(record: ExecutionRecord) -> dict:
    """Balances for *record* as stored (view mode), used by report snapshots."""
    hierarchy = get_hierarchy(record.project_type, record.facility_type)
    return _calculate(load_record_ledger(record, hierarchy), hierarchy, mode=VIEW_MODE).to_dict()


def open_session(record_id: int, timer_factory=None, on_result=None) -> LedgerSession:
    """Interactive edit session over a stored record.

    Recomputes are debounced by ``RECOMPUTE_DEBOUNCE_MS``; the caller owns the
    session and must ``close()`` it.
    """
    record = get_execution(record_id)
    hierarchy = get_hierarchy(record.project_type, record.facility_type)
    kwargs = {"timer_factory": timer_factory} if timer_factory is not None else {}
    return LedgerSession(
        hierarchy,
        load_record_ledger(record, hierarchy),
        tolerance=_tolerance(),
        delay_ms=current_app.config.get("RECOMPUTE_DEBOUNCE_MS", DEFAULT_DELAY_MS),
        on_result=on_result,
        **kwargs,
    )
