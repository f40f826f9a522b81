"""
Expense payment tracker.

Tracks how much of each current-quarter expenditure has been paid and
derives the payable buckets that absorb the unpaid remainder.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from app.services.ledger.entries import Ledger, PaymentEdit, QuarterEntry
from app.services.ledger.hierarchy import Category, iter_activities
from app.services.ledger.payables import EXPENSE_SECTION, build_mapping, is_always_paid
from app.services.ledger.payment_info import effective_paid, payment_error


def update_payment(ledger: Ledger, code: str, status: str, amount_paid=0) -> Ledger:
    """Record a payment for *code* in the ledger's current quarter.

    ``paid`` forces amount_paid to the quarter amount, ``unpaid`` to 0;
    ``partial`` requires 0 < amount_paid < amount.

    Raises:
        ValidationError: invalid status or partial amount out of range.
    """
    return ledger.apply(PaymentEdit(code=code, status=status, amount_paid=amount_paid))


@dataclass
class PaymentSummary:
    total_expenses: float = 0.0
    total_paid: float = 0.0
    total_unpaid: float = 0.0
    payables: dict[str, float] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def summarize_payments(
    ledger: Ledger,
    hierarchy: Iterable[Category],
    quarter: str | None = None,
    mapping: Mapping[str, str | None] | None = None,
) -> PaymentSummary:
    """Totals over expenditure leaves for *quarter* (default: current).

    Expenses whose mapping rule marks them always-paid count as fully paid
    whatever status is stored.
    """
    hierarchy = tuple(hierarchy)
    quarter = quarter or ledger.current_quarter
    if mapping is None:
        mapping = build_mapping(hierarchy)

    amounts = []
    paid_amounts = []
    summary = PaymentSummary()

    for activity in iter_activities(hierarchy):
        if activity.section != EXPENSE_SECTION or not activity.is_leaf:
            continue
        entry = ledger.get(activity.code) or QuarterEntry()
        amount = entry.amount(quarter)
        if is_always_paid(activity):
            paid = amount
        else:
            paid = effective_paid(entry.payment, quarter, amount)
            error = payment_error(entry.payment, quarter, amount)
            if error:
                summary.errors[f"{activity.code}.amountPaid"] = error

        amounts.append(amount)
        paid_amounts.append(paid)

        unpaid = amount - paid
        target = mapping.get(activity.code)
        if unpaid > 0 and target:
            summary.payables[target] = summary.payables.get(target, 0.0) + unpaid

    summary.total_expenses = math.fsum(amounts)
    summary.total_paid = math.fsum(paid_amounts)
    summary.total_unpaid = summary.total_expenses - summary.total_paid
    return summary
