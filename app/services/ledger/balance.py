"""
Balance calculator and quarter-ledger row computation.

Aggregation rules:
    flow leaf     cumulative = q1 + q2 + q3 + q4 (unreported quarters count as 0)
    stock leaf    cumulative = value of the latest reported quarter, None if none
    summary row   per quarter: sum of children; cumulative: sum of children's
                  cumulative balances (stock leaves propagate unchanged)

Derived sections:
    C = A - B     per quarter, cumulative summed
    F = D - E     per quarter first, cumulative = latest reported difference
    G             leaves plus the "Surplus/Deficit of the Period" row, which
                  mirrors C; the header is re-summed after the mirror.

Cash and payables for the current quarter:
    cashAtBank = openingBalance - totalPaid
    payables   = unpaid expense amounts summed by mapped payable code
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from app.services.ledger.codes import (
    FORMULA_SECTIONS,
    QUARTERS,
    SECTIONS,
    is_stock_item,
)
from app.services.ledger.edit_lock import is_editable as _cell_is_editable
from app.services.ledger.entries import Ledger, QuarterEntry
from app.services.ledger.hierarchy import Activity, Category
from app.services.ledger.payables import build_mapping
from app.services.ledger.payments import summarize_payments


@dataclass(frozen=True)
class SectionTotals:
    q1: float | None = None
    q2: float | None = None
    q3: float | None = None
    q4: float | None = None
    cumulative_balance: float | None = None

    def values(self) -> tuple[float | None, ...]:
        return (self.q1, self.q2, self.q3, self.q4)

    def to_dict(self) -> dict:
        return {
            "q1": self.q1,
            "q2": self.q2,
            "q3": self.q3,
            "q4": self.q4,
            "cumulativeBalance": self.cumulative_balance,
        }


EMPTY_TOTALS = SectionTotals()


@dataclass(frozen=True)
class RowView:
    code: str
    name: str
    section: str
    kind: str  # category | subcategory | activity | total | computed
    totals: SectionTotals
    is_editable: bool = False
    is_calculated: bool = False

    @property
    def cumulative_balance(self) -> float | None:
        return self.totals.cumulative_balance

    def value(self, quarter: str) -> float | None:
        return getattr(self.totals, quarter)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "section": self.section,
            "kind": self.kind,
            **self.totals.to_dict(),
            "isEditable": self.is_editable,
            "isCalculated": self.is_calculated,
        }


@dataclass
class BalanceResult:
    section_totals: dict[str, SectionTotals]
    rows: list[RowView] = field(default_factory=list)
    opening_balance: float = 0.0
    cash_at_bank: float = 0.0
    payables: dict[str, float] = field(default_factory=dict)
    total_expenses: float = 0.0
    total_paid: float = 0.0
    total_unpaid: float = 0.0
    payment_errors: dict[str, str] = field(default_factory=dict)

    @property
    def cash_warning(self) -> str | None:
        if self.cash_at_bank < 0:
            return "Cash at bank is negative: payments exceed the opening balance"
        return None

    def to_dict(self) -> dict:
        return {
            "sectionTotals": {k: v.to_dict() for k, v in self.section_totals.items()},
            "rows": [r.to_dict() for r in self.rows],
            "openingBalance": self.opening_balance,
            "cashAtBank": self.cash_at_bank,
            "payables": dict(self.payables),
            "totalExpenses": self.total_expenses,
            "totalPaid": self.total_paid,
            "totalUnpaid": self.total_unpaid,
            "paymentErrors": dict(self.payment_errors),
            "cashWarning": self.cash_warning,
        }


# ── Aggregation primitives ───────────────────────────────────────────────────


def flow_cumulative(values: Sequence[float | None]) -> float:
    return math.fsum(v for v in values if v is not None)


def stock_cumulative(values: Sequence[float | None]) -> float | None:
    """Value of the highest-indexed quarter that was reported (0 counts)."""
    for v in reversed(values):
        if v is not None:
            return v
    return None


def leaf_totals(activity: Activity, entry: QuarterEntry | None) -> SectionTotals:
    values = (entry or QuarterEntry()).values()
    if is_stock_item(activity.section, activity.name):
        cumulative = stock_cumulative(values)
    else:
        cumulative = flow_cumulative(values)
    return SectionTotals(*values, cumulative_balance=cumulative)


def sum_totals(children: Iterable[SectionTotals]) -> SectionTotals:
    """Summary row over *children*: per-quarter sums, cumulative of cumulatives."""
    children = list(children)
    quarters = []
    for i in range(len(QUARTERS)):
        reported = [c.values()[i] for c in children if c.values()[i] is not None]
        quarters.append(math.fsum(reported) if reported else None)
    cumulatives = [c.cumulative_balance for c in children if c.cumulative_balance is not None]
    cumulative = math.fsum(cumulatives) if cumulatives else None
    return SectionTotals(*quarters, cumulative_balance=cumulative)


def _flow_summary(children: Iterable[SectionTotals]) -> SectionTotals:
    totals = sum_totals(children)
    if totals.cumulative_balance is None:
        return SectionTotals(*totals.values(), cumulative_balance=0.0)
    return totals


def difference(left: SectionTotals, right: SectionTotals, stock: bool) -> SectionTotals:
    """Per-quarter ``left - right``; a quarter neither side reported stays None."""
    quarters = []
    for lv, rv in zip(left.values(), right.values()):
        if lv is None and rv is None:
            quarters.append(None)
        else:
            quarters.append((lv or 0.0) - (rv or 0.0))
    cumulative = stock_cumulative(quarters) if stock else flow_cumulative(quarters)
    return SectionTotals(*quarters, cumulative_balance=cumulative)


# ── Row computation ──────────────────────────────────────────────────────────


def compute_row(
    activity: Activity,
    entry: QuarterEntry | None,
    computed_values: Mapping[str, SectionTotals] | None = None,
    current_quarter: str | None = None,
) -> RowView:
    """Row view for a single activity.

    Computed activities with a known formula take their values from the
    derived section in *computed_values* (keyed by section letter), never
    from *entry*.
    """
    formula = activity.formula
    if activity.is_computed and formula in FORMULA_SECTIONS:
        totals = (computed_values or {}).get(FORMULA_SECTIONS[formula], EMPTY_TOTALS)
        return RowView(
            code=activity.code, name=activity.name, section=activity.section,
            kind="computed", totals=totals, is_editable=False, is_calculated=True,
        )

    if activity.is_total_row or activity.is_computed:
        totals = (computed_values or {}).get(activity.section, EMPTY_TOTALS)
        return RowView(
            code=activity.code, name=activity.name, section=activity.section,
            kind="total", totals=totals, is_editable=False, is_calculated=True,
        )

    editable = True
    if current_quarter:
        editable = _cell_is_editable(activity, current_quarter, current_quarter)
    return RowView(
        code=activity.code, name=activity.name, section=activity.section,
        kind="activity", totals=leaf_totals(activity, entry),
        is_editable=editable, is_calculated=False,
    )


def _sorted(items):
    return sorted(items, key=lambda x: x.display_order)


def _section_totals(category: Category | None, ledger: Ledger) -> tuple[SectionTotals, dict]:
    """Totals for a raw section plus its subcategory summaries."""
    if category is None:
        return EMPTY_TOTALS, {}
    sub_totals = {}
    children = []
    for sub in category.sub_categories:
        leaves = [leaf_totals(a, ledger.get(a.code)) for a in sub.activities if a.is_leaf]
        sub_totals[sub.code] = sum_totals(leaves)
        children.append(sub_totals[sub.code])
    children.extend(leaf_totals(a, ledger.get(a.code)) for a in category.activities if a.is_leaf)
    return sum_totals(children), sub_totals


def compute_section_totals(ledger: Ledger, hierarchy: Iterable[Category]) -> tuple[dict, dict]:
    """Section totals A..G and subcategory summaries, in dependency order."""
    categories = {c.code: c for c in hierarchy}
    totals: dict[str, SectionTotals] = {}
    sub_totals: dict[str, SectionTotals] = {}

    for section in ("A", "B", "D", "E"):
        section_total, subs = _section_totals(categories.get(section), ledger)
        if section in ("A", "B"):
            section_total = _flow_summary([section_total])
        totals[section] = section_total
        sub_totals.update(subs)

    totals["C"] = difference(totals["A"], totals["B"], stock=False)
    totals["F"] = difference(totals["D"], totals["E"], stock=True)

    # G: mirror computed rows first, then re-sum the header
    g_children = []
    g_category = categories.get("G")
    if g_category is not None:
        for activity in g_category.iter_activities():
            if activity.is_leaf:
                g_children.append(leaf_totals(activity, ledger.get(activity.code)))
            elif activity.is_computed and activity.formula in FORMULA_SECTIONS and not activity.is_total_row:
                g_children.append(totals[FORMULA_SECTIONS[activity.formula]])
    totals["G"] = _flow_summary(g_children)

    return {s: totals.get(s, EMPTY_TOTALS) for s in SECTIONS}, sub_totals


def build_rows(
    ledger: Ledger,
    hierarchy: Iterable[Category],
    section_totals: Mapping[str, SectionTotals],
    sub_totals: Mapping[str, SectionTotals],
    current_quarter: str | None = None,
) -> list[RowView]:
    rows = []
    for category in _sorted(hierarchy):
        rows.append(RowView(
            code=category.code, name=category.name, section=category.code, kind="category",
            totals=section_totals.get(category.code, EMPTY_TOTALS), is_calculated=True,
        ))
        for sub in _sorted(category.sub_categories):
            rows.append(RowView(
                code=sub.code, name=sub.name, section=category.code, kind="subcategory",
                totals=sub_totals.get(sub.code, EMPTY_TOTALS), is_calculated=True,
            ))
            for activity in _sorted(sub.activities):
                rows.append(compute_row(activity, ledger.get(activity.code), section_totals, current_quarter))
        for activity in _sorted(category.activities):
            rows.append(compute_row(activity, ledger.get(activity.code), section_totals, current_quarter))
    return rows


def recompute(
    ledger: Ledger,
    hierarchy: Iterable[Category],
    opening_balance: float = 0.0,
    current_quarter: str | None = None,
    mapping: Mapping[str, str | None] | None = None,
) -> BalanceResult:
    """Full recompute pass over *ledger*.  Pure: same input, same output."""
    hierarchy = tuple(hierarchy)
    quarter = current_quarter or ledger.current_quarter
    if mapping is None:
        mapping = build_mapping(hierarchy)

    section_totals, sub_totals = compute_section_totals(ledger, hierarchy)
    payments = summarize_payments(ledger, hierarchy, quarter, mapping)
    opening = float(opening_balance or 0.0)

    return BalanceResult(
        section_totals=section_totals,
        rows=build_rows(ledger, hierarchy, section_totals, sub_totals, quarter),
        opening_balance=opening,
        cash_at_bank=opening - payments.total_paid,
        payables=payments.payables,
        total_expenses=payments.total_expenses,
        total_paid=payments.total_paid,
        total_unpaid=payments.total_unpaid,
        payment_errors=payments.errors,
    )
