"""
Quarter edit-lock policy.

Rules, first match wins:
    1. computed and total rows are never editable
    2. "Accumulated Surplus/Deficit" is editable only in Q1 (opening balance)
    3. quarters other than the record's current quarter are locked
    4. a locked quarter stays visible when any activity holds a non-zero
       value for it, otherwise it is hidden
    5. the current quarter is editable

``check_edit`` enforces rules 1-3 on user edits; internal write-backs
(cash at bank, payables) go straight through ``Ledger.apply``.
"""

from __future__ import annotations

from typing import Mapping

from app.core.exceptions import ValidationError
from app.services.ledger.codes import is_accumulated_surplus, normalize_quarter
from app.services.ledger.entries import Ledger, PaymentEdit, ValueEdit
from app.services.ledger.hierarchy import Activity

EDITABLE = "editable"
LOCKED = "locked"
HIDDEN = "hidden"

OPENING_BALANCE_QUARTER = "q1"


def is_editable(activity: Activity, quarter: str, current_quarter: str) -> bool:
    if not activity.is_leaf:
        return False
    quarter = normalize_quarter(quarter)
    if is_accumulated_surplus(activity.name):
        return quarter == OPENING_BALANCE_QUARTER
    return quarter == normalize_quarter(current_quarter)


def is_visible(quarter: str, current_quarter: str, ledger) -> bool:
    """Quarter columns are shown for the current quarter and any quarter with data."""
    quarter = normalize_quarter(quarter)
    if quarter == normalize_quarter(current_quarter):
        return True
    return ledger.has_values_in(quarter)


def cell_state(activity: Activity, quarter: str, current_quarter: str, ledger) -> str:
    if is_editable(activity, quarter, current_quarter):
        return EDITABLE
    if is_visible(quarter, current_quarter, ledger):
        return LOCKED
    return HIDDEN


def ensure_editable(code: str, activity: Activity | None, quarter: str, current_quarter: str) -> None:
    """Raise a ValidationError keyed ``"{code}.{quarter}"`` for a locked cell."""
    quarter = normalize_quarter(quarter)
    key = f"{code}.{quarter}"
    if activity is None:
        raise ValidationError("Unknown activity code", details={key: "Unknown activity code"})
    if not activity.is_leaf:
        raise ValidationError(
            "Computed and total rows cannot be edited",
            details={key: "Computed and total rows cannot hold values"},
        )
    if not is_editable(activity, quarter, current_quarter):
        raise ValidationError(
            f"Quarter {quarter.upper()} is locked for editing",
            details={key: "Quarter is locked for editing"},
        )


def check_edit(activities: Mapping[str, Activity], ledger: Ledger, edit) -> None:
    """Validate a user edit against the lock policy before it is applied.

    Value edits are checked for their own quarter, payment edits for the
    ledger's current quarter.  Comments are free text on any row.
    """
    if isinstance(edit, ValueEdit):
        quarter = edit.quarter
    elif isinstance(edit, PaymentEdit):
        quarter = ledger.current_quarter
    else:
        return
    ensure_editable(edit.code, activities.get(edit.code), quarter, ledger.current_quarter)
