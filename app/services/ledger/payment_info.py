"""
Payment information attached to expenditure entries.

Two stored shapes exist in execution form data:

    flat         {"paymentStatus": "partial", "amountPaid": 5000}
    per-quarter  {"paymentStatus": {"q1": "paid", "q2": "partial"},
                  "amountPaid":    {"q1": 1200,   "q2": 300}}

``migrate_payment_info`` parses either shape.  Given the record's current
quarter it converts a flat row into a ``PerQuarterPayment`` keyed on that
quarter, so a loaded Ledger only holds per-quarter payments and a later
quarter never inherits an earlier quarter's status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Union

from app.core.exceptions import ValidationError
from app.services.ledger.codes import QUARTERS, normalize_quarter, to_amount

PAID = "paid"
UNPAID = "unpaid"
PARTIAL = "partial"

PAYMENT_STATUSES = frozenset({PAID, UNPAID, PARTIAL})


@dataclass(frozen=True)
class FlatPayment:
    """Legacy single status/amount, recorded against one (implicit) quarter."""

    status: str = UNPAID
    amount_paid: float = 0.0

    def for_quarter(self, quarter: str) -> tuple[str, float]:
        return self.status, self.amount_paid

    def with_quarter(self, quarter: str, status: str, amount_paid: float) -> "PerQuarterPayment":
        return self.to_per_quarter(quarter).with_quarter(quarter, status, amount_paid)

    def to_per_quarter(self, quarter: str) -> "PerQuarterPayment":
        q = normalize_quarter(quarter)
        return PerQuarterPayment(MappingProxyType({q: self.status}), MappingProxyType({q: self.amount_paid}))

    def to_fields(self) -> dict:
        return {"paymentStatus": self.status, "amountPaid": self.amount_paid}


@dataclass(frozen=True)
class PerQuarterPayment:
    """Independent status/amount per quarter; missing quarters are unpaid."""

    statuses: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    amounts: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def for_quarter(self, quarter: str) -> tuple[str, float]:
        q = normalize_quarter(quarter)
        return self.statuses.get(q, UNPAID), float(self.amounts.get(q, 0.0))

    def with_quarter(self, quarter: str, status: str, amount_paid: float) -> "PerQuarterPayment":
        q = normalize_quarter(quarter)
        statuses = dict(self.statuses)
        amounts = dict(self.amounts)
        statuses[q] = status
        amounts[q] = amount_paid
        return PerQuarterPayment(MappingProxyType(statuses), MappingProxyType(amounts))

    def with_quarters_from(self, other: "PerQuarterPayment", quarters) -> "PerQuarterPayment":
        """Copy with the entries for *quarters* taken from *other*."""
        quarters = set(quarters)
        statuses = {q: s for q, s in self.statuses.items() if q not in quarters}
        amounts = {q: a for q, a in self.amounts.items() if q not in quarters}
        statuses.update((q, s) for q, s in other.statuses.items() if q in quarters)
        amounts.update((q, a) for q, a in other.amounts.items() if q in quarters)
        return PerQuarterPayment(MappingProxyType(statuses), MappingProxyType(amounts))

    def to_fields(self) -> dict:
        return {"paymentStatus": dict(self.statuses), "amountPaid": dict(self.amounts)}

    def __eq__(self, other):
        if not isinstance(other, PerQuarterPayment):
            return NotImplemented
        return dict(self.statuses) == dict(other.statuses) and dict(self.amounts) == dict(other.amounts)

    def __hash__(self):
        return hash((tuple(sorted(self.statuses.items())), tuple(sorted(self.amounts.items()))))


PaymentInfo = Union[FlatPayment, PerQuarterPayment]


def _coerce_status(value) -> str:
    status = str(value or UNPAID).strip().lower()
    return status if status in PAYMENT_STATUSES else UNPAID


def migrate_payment_info(raw: Mapping | None, quarter: str | None = None) -> PaymentInfo:
    """Build a PaymentInfo from a stored form-data row (either shape).

    With *quarter*, the result is always a ``PerQuarterPayment``: flat
    fields are attributed to *quarter*, and a row without payment fields
    yields an empty one.
    """
    raw = raw or {}
    status = raw.get("paymentStatus")
    paid = raw.get("amountPaid")

    if isinstance(status, Mapping) or isinstance(paid, Mapping):
        status_map = status if isinstance(status, Mapping) else {}
        paid_map = paid if isinstance(paid, Mapping) else {}
        statuses = {}
        amounts = {}
        for q in QUARTERS:
            if q in status_map:
                statuses[q] = _coerce_status(status_map[q])
            if q in paid_map:
                amounts[q] = to_amount(paid_map[q]) or 0.0
        return PerQuarterPayment(MappingProxyType(statuses), MappingProxyType(amounts))

    flat = FlatPayment(status=_coerce_status(status), amount_paid=to_amount(paid) or 0.0)
    if quarter is None:
        return flat
    if status is None and paid is None:
        return PerQuarterPayment()
    return flat.to_per_quarter(quarter)


def resolve_payment(status: str, amount_paid, amount: float, field_name: str = "amountPaid") -> float:
    """Validate a payment against the quarter amount and return the paid amount.

    - paid:    amount_paid becomes the full amount
    - unpaid:  amount_paid becomes 0
    - partial: 0 < amount_paid < amount, otherwise ValidationError

    Raises:
        ValidationError: unknown status, or partial payment out of range.
            ``details`` is keyed by *field_name*.
    """
    if status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status '{status}'",
            details={"paymentStatus": f"Must be one of: {', '.join(sorted(PAYMENT_STATUSES))}"},
        )
    amount = amount or 0.0
    if status == PAID:
        return amount
    if status == UNPAID:
        return 0.0

    paid = to_amount(amount_paid)
    if paid is None or paid <= 0:
        raise ValidationError(
            "Partial payment requires an amount paid greater than zero",
            details={field_name: "Amount paid must be greater than 0 for a partial payment"},
        )
    if paid >= amount:
        raise ValidationError(
            "Partial payment must be less than the expense amount",
            details={field_name: f"Amount paid must be less than {amount:g} for a partial payment"},
        )
    return paid


def effective_paid(info: PaymentInfo, quarter: str, amount: float) -> float:
    """Paid amount counted for *quarter*, derived from the stored status."""
    if amount <= 0:
        return 0.0
    status, paid = info.for_quarter(quarter)
    if status == PAID:
        return amount
    if status == PARTIAL:
        return paid
    return 0.0


def payment_error(info: PaymentInfo, quarter: str, amount: float) -> str | None:
    """Describe why a stored payment is invalid for *quarter*, or None.

    A partial payment recorded before the quarter amount was edited can
    fall outside (0, amount); it is reported, never clamped.
    """
    status, paid = info.for_quarter(quarter)
    if status != PARTIAL or amount <= 0:
        return None
    if paid <= 0:
        return "Amount paid must be greater than 0 for a partial payment"
    if paid >= amount:
        return f"Amount paid must be less than {amount:g} for a partial payment"
    return None
