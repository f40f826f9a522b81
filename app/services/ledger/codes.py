"""
Activity-code parsing and section semantics.

Codes follow ``{PROJECT}_EXEC_{FACILITY}_{SECTION}[_{SUBCATEGORY}]_{ORDER}``:

    HIV_EXEC_HOSPITAL_A_2
    HIV_EXEC_HEALTH_CENTER_B_B-04_1

Flow sections (A, B, C) aggregate by summing quarters.  Stock sections
(D, E, F) carry point-in-time balances and aggregate by taking the latest
reported quarter.  Section G mixes both: opening/accumulated balances are
stock, the period surplus/deficit is flow.
"""

from __future__ import annotations

import math
import re

SECTIONS = ("A", "B", "C", "D", "E", "F", "G")
QUARTERS = ("q1", "q2", "q3", "q4")

FLOW_SECTIONS = frozenset({"A", "B", "C", "G"})
STOCK_SECTIONS = frozenset({"D", "E", "F"})

SECTION_NAMES = {
    "A": "Receipts",
    "B": "Expenditures",
    "C": "Surplus / Deficit",
    "D": "Financial Assets",
    "E": "Financial Liabilities",
    "F": "Net Financial Assets",
    "G": "Closing Balance",
}

# Formula → derived section that carries its values
FORMULA_SECTIONS = {"A-B": "C", "D-E": "F"}

_CODE_RE = re.compile(
    r"^(?P<project>[A-Z]+)_EXEC_(?P<facility>[A-Z_]+?)_(?P<section>[A-G])"
    r"(?:_(?P<sub>[A-G]-\d+))?_(?P<order>\d+)$"
)

_G_STOCK_KEYWORDS = ("prior", "opening")


class InvalidActivityCode(ValueError):
    """Raised when a string does not follow the execution activity-code format."""


def parse_activity_code(code: str) -> dict:
    """Split an activity code into its components.

    Returns:
        {"project", "facility_type", "section", "sub_category", "order"}

    Raises:
        InvalidActivityCode: if the code is not in the execution format.
    """
    m = _CODE_RE.match(code or "")
    if not m:
        raise InvalidActivityCode(f"Not an execution activity code: {code!r}")
    return {
        "project": m.group("project"),
        "facility_type": m.group("facility").lower(),
        "section": m.group("section"),
        "sub_category": m.group("sub"),
        "order": int(m.group("order")),
    }


def section_of(code: str) -> str | None:
    """Section letter of *code*, or None when the code is not parseable."""
    try:
        return parse_activity_code(code)["section"]
    except InvalidActivityCode:
        return None


def build_activity_code(
    project: str, facility_type: str, section: str, order: int, sub_category: str | None = None,
) -> str:
    facility = facility_type.upper()
    if sub_category:
        return f"{project}_EXEC_{facility}_{section}_{sub_category}_{order}"
    return f"{project}_EXEC_{facility}_{section}_{order}"


def normalize_formula(formula: str | None) -> str | None:
    if not formula:
        return None
    return formula.replace(" ", "").upper()


def is_stock_section(section: str) -> bool:
    return section in STOCK_SECTIONS


def is_stock_item(section: str, name: str = "") -> bool:
    """Whether a leaf row in *section* aggregates as a stock balance.

    Section G rows are classified by title: accumulated surplus/deficit and
    prior-year or opening balances are stock; everything else is flow.
    """
    if section in STOCK_SECTIONS:
        return True
    if section != "G":
        return False
    if is_accumulated_surplus(name):
        return True
    lowered = (name or "").lower()
    return any(k in lowered for k in _G_STOCK_KEYWORDS)


def is_accumulated_surplus(name: str) -> bool:
    lowered = (name or "").lower()
    return "accumulated" in lowered and "surplus" in lowered and "deficit" in lowered


def to_amount(value) -> float | None:
    """Coerce raw form input to an amount.

    Empty input (None, "") means "not reported" and stays None.  Anything
    that cannot be read as a finite number is normalised to 0.0 so the
    ledger always renders.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if value == "":
            return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


def normalize_quarter(quarter) -> str:
    """Accept "Q1", "q1" or 1 and return the canonical "q1" key."""
    if isinstance(quarter, int) and 1 <= quarter <= 4:
        return f"q{quarter}"
    key = str(quarter or "").strip().lower()
    if key in QUARTERS:
        return key
    raise ValueError(f"Unknown quarter: {quarter!r}")


def quarter_index(quarter: str) -> int:
    return QUARTERS.index(normalize_quarter(quarter))


