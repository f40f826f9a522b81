"""
One full ledger calculation: balances, payables, equation check and the
submit gate, in the shape the data-entry UI renders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from app.services.ledger.balance import BalanceResult, recompute
from app.services.ledger.entries import Ledger, ValueEdit
from app.services.ledger.equation import DEFAULT_TOLERANCE, EquationResult, validate
from app.services.ledger.hierarchy import Activity, Category, leaf_activities
from app.services.ledger.payables import build_mapping, validate_mapping


@dataclass
class LedgerCalculation:
    ledger: Ledger
    balance: BalanceResult
    equation: EquationResult
    mapping_warnings: list[str] = field(default_factory=list)

    @property
    def can_submit(self) -> bool:
        return self.equation.is_valid and not self.balance.payment_errors

    def to_dict(self) -> dict:
        d = self.balance.to_dict()
        d.update(self.equation.to_dict())
        d["validationErrors"] = list(self.equation.errors) + [
            {"field": key, "code": "INVALID_PAYMENT", "message": message}
            for key, message in sorted(self.balance.payment_errors.items())
        ]
        d["mappingWarnings"] = list(self.mapping_warnings)
        d["canSubmitExecution"] = self.can_submit
        d["currentQuarter"] = self.ledger.current_quarter
        d["formValues"] = self.ledger.to_form_values()
        return d


def opening_balance_activity(hierarchy: Iterable[Category]) -> Activity | None:
    """The receipts row funding the quarter (transfers from the central unit)."""
    for activity in leaf_activities(hierarchy, "A"):
        if "transfer" in activity.name.lower():
            return activity
    return None


def cash_at_bank_activity(hierarchy: Iterable[Category]) -> Activity | None:
    for activity in leaf_activities(hierarchy, "D"):
        if "cash at bank" in activity.name.lower():
            return activity
    return None


def default_opening_balance(ledger: Ledger, hierarchy: Iterable[Category]) -> float:
    activity = opening_balance_activity(hierarchy)
    if activity is None or activity.code not in ledger:
        return 0.0
    return ledger[activity.code].amount(ledger.current_quarter)


def apply_computed_balances(ledger: Ledger, hierarchy: Iterable[Category], result: BalanceResult, mapping) -> Ledger:
    """Write cash at bank (D) and mapped payables (E) into the current quarter."""
    hierarchy = tuple(hierarchy)
    quarter = ledger.current_quarter
    edits = []

    cash = cash_at_bank_activity(hierarchy)
    if cash is not None:
        current = ledger.get(cash.code)
        if current is None or current.value(quarter) != result.cash_at_bank:
            edits.append(ValueEdit(cash.code, quarter, result.cash_at_bank))

    targets = {code for code in mapping.values() if code}
    for payable in leaf_activities(hierarchy, "E"):
        if payable.code not in targets:
            continue
        amount = result.payables.get(payable.code, 0.0)
        current = ledger.get(payable.code)
        if current is None or current.value(quarter) != amount:
            edits.append(ValueEdit(payable.code, quarter, amount))

    return ledger.apply_all(edits)


def calculate(
    ledger: Ledger,
    hierarchy: Iterable[Category],
    opening_balance: float | None = None,
    tolerance: float = DEFAULT_TOLERANCE,
    auto_balances: bool = True,
) -> LedgerCalculation:
    """Recompute everything for *ledger*.

    With *auto_balances* (create/edit modes) the computed cash at bank and
    payables are written back into sections D and E before the final pass;
    view mode leaves stored values untouched.
    """
    hierarchy = tuple(hierarchy)
    mapping = build_mapping(hierarchy)
    if opening_balance is None:
        opening_balance = default_opening_balance(ledger, hierarchy)

    result = recompute(ledger, hierarchy, opening_balance, mapping=mapping)
    if auto_balances:
        updated = apply_computed_balances(ledger, hierarchy, result, mapping)
        if updated != ledger:
            ledger = updated
            result = recompute(ledger, hierarchy, opening_balance, mapping=mapping)

    return LedgerCalculation(
        ledger=ledger,
        balance=result,
        equation=validate(result.section_totals, tolerance),
        mapping_warnings=validate_mapping(hierarchy)["warnings"],
    )
