"""
Expense → payable mapping.

Every expenditure leaf (section B) accrues its unpaid balance into one
liability row (section E).  The mapping is a fixed, auditable table of
(subcategory, keywords in expense title) → fragments of the payable title,
matched case-insensitively.  First matching rule wins.

Rules with ``payable=None`` mark expenses that are always settled in full
(transfers to other reporting entities): they never accrue a payable.
Expenses matching no rule also map to None but are reported as unmapped so
data-integrity problems are visible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from app.services.ledger.hierarchy import Activity, Category, iter_activities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayableRule:
    sub_category: str
    keywords: tuple[str, ...]
    payable: tuple[str, ...] | None

    def matches(self, activity: Activity) -> bool:
        if (activity.sub_category_code or "").upper() != self.sub_category:
            return False
        name = activity.name.lower()
        return all(k in name for k in self.keywords)


PAYABLE_RULES: tuple[PayableRule, ...] = (
    PayableRule("B-01", (), ("salaries",)),
    PayableRule("B-02", ("supervision",), ("supervision",)),
    PayableRule("B-02", ("meeting",), ("meetings",)),
    PayableRule("B-03", ("sample", "transport"), ("sample transport",)),
    PayableRule("B-03", ("home", "visit"), ("home visits",)),
    PayableRule("B-03", ("travel", "survey"), ("travel survellance", "travel surveillance")),
    PayableRule("B-04", ("infrastructure",), ("infrastructure",)),
    PayableRule("B-04", ("office", "supplies"), ("supplies",)),
    PayableRule("B-04", ("transport", "reporting"), ("transport reporting",)),
    PayableRule("B-04", ("bank", "charges"), ("bank charges",)),
    PayableRule("B-05", (), None),
)

EXPENSE_SECTION = "B"
PAYABLE_SECTION = "E"


def match_rule(activity: Activity, rules: Iterable[PayableRule] = PAYABLE_RULES) -> PayableRule | None:
    for rule in rules:
        if rule.matches(activity):
            return rule
    return None


def is_always_paid(activity: Activity, rules: Iterable[PayableRule] = PAYABLE_RULES) -> bool:
    rule = match_rule(activity, rules)
    return rule is not None and rule.payable is None


def _payable_leaves(hierarchy: Iterable[Category]) -> list[Activity]:
    return [a for a in iter_activities(hierarchy) if a.section == PAYABLE_SECTION and a.is_leaf]


def _expense_leaves(hierarchy: Iterable[Category]) -> list[Activity]:
    return [a for a in iter_activities(hierarchy) if a.section == EXPENSE_SECTION and a.is_leaf]


def _find_payable(fragments: tuple[str, ...], payables: list[Activity]) -> Activity | None:
    for payable in payables:
        name = payable.name.lower()
        if any(f in name for f in fragments):
            return payable
    return None


def build_mapping(
    hierarchy: Iterable[Category], rules: Iterable[PayableRule] = PAYABLE_RULES,
) -> dict[str, str | None]:
    """Map every expenditure leaf code to its payable code (or None)."""
    hierarchy = tuple(hierarchy)
    rules = tuple(rules)
    payables = _payable_leaves(hierarchy)
    mapping: dict[str, str | None] = {}

    for expense in _expense_leaves(hierarchy):
        rule = match_rule(expense, rules)
        if rule is None:
            logger.warning(
                "Expense %s (%s) matches no payable rule; unpaid amounts will not accrue",
                expense.code, expense.name,
            )
            mapping[expense.code] = None
            continue
        if rule.payable is None:
            mapping[expense.code] = None
            continue
        target = _find_payable(rule.payable, payables)
        if target is None:
            logger.warning(
                "Expense %s (%s) maps to a payable containing %s but none exists",
                expense.code, expense.name, " / ".join(rule.payable),
            )
        mapping[expense.code] = target.code if target else None

    return mapping


def validate_mapping(
    hierarchy: Iterable[Category], rules: Iterable[PayableRule] = PAYABLE_RULES,
) -> dict:
    """Audit the mapping for a hierarchy.

    Returns:
        {"isValid": bool,
         "unmappedExpenses": [{"code", "name", "subCategoryCode"}],
         "warnings": [str]}
    """
    hierarchy = tuple(hierarchy)
    rules = tuple(rules)
    payables = _payable_leaves(hierarchy)
    unmapped = []
    warnings = []

    for expense in _expense_leaves(hierarchy):
        rule = match_rule(expense, rules)
        if rule is None:
            unmapped.append({
                "code": expense.code,
                "name": expense.name,
                "subCategoryCode": expense.sub_category_code,
            })
            warnings.append(f"No payable rule for expense '{expense.name}' ({expense.code})")
        elif rule.payable is not None and _find_payable(rule.payable, payables) is None:
            unmapped.append({
                "code": expense.code,
                "name": expense.name,
                "subCategoryCode": expense.sub_category_code,
            })
            warnings.append(
                f"Payable '{rule.payable[0]}' for expense '{expense.name}' ({expense.code}) "
                "is missing from the hierarchy"
            )

    return {"isValid": not unmapped, "unmappedExpenses": unmapped, "warnings": warnings}
