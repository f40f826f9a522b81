"""
Quarter ledger entries and the immutable Ledger.

A Ledger maps activity code → QuarterEntry for one execution record.
Edits never mutate a Ledger: ``Ledger.apply(edit)`` returns a new one, so
any reader (recompute pass, draft save) holds a consistent snapshot.

Quarter values are ``None`` until reported; an explicit 0 is a reported
value.  Flow aggregation treats None as 0, stock aggregation skips it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Union

from app.core.exceptions import ValidationError
from app.services.ledger.codes import QUARTERS, normalize_quarter, to_amount
from app.services.ledger.hierarchy import Activity, Category, iter_activities
from app.services.ledger.payment_info import (
    PAID,
    PaymentInfo,
    PerQuarterPayment,
    migrate_payment_info,
    resolve_payment,
)


@dataclass(frozen=True)
class QuarterEntry:
    q1: float | None = None
    q2: float | None = None
    q3: float | None = None
    q4: float | None = None
    comment: str = ""
    payment: PaymentInfo = field(default_factory=PerQuarterPayment)

    def value(self, quarter: str) -> float | None:
        return getattr(self, normalize_quarter(quarter))

    def amount(self, quarter: str) -> float:
        return self.value(quarter) or 0.0

    def values(self) -> tuple[float | None, ...]:
        return tuple(getattr(self, q) for q in QUARTERS)

    @classmethod
    def from_form(cls, raw: Mapping | None, quarter: str = "q1") -> "QuarterEntry":
        """Build from a form row; flat payment fields belong to *quarter*."""
        raw = raw or {}
        return cls(
            q1=to_amount(raw.get("q1")),
            q2=to_amount(raw.get("q2")),
            q3=to_amount(raw.get("q3")),
            q4=to_amount(raw.get("q4")),
            comment=str(raw.get("comment") or ""),
            payment=migrate_payment_info(raw, quarter),
        )

    def to_form(self) -> dict:
        d = {q: getattr(self, q) for q in QUARTERS}
        d["comment"] = self.comment
        d.update(self.payment.to_fields())
        return d


# ── Edits ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ValueEdit:
    code: str
    quarter: str
    value: object


@dataclass(frozen=True)
class CommentEdit:
    code: str
    comment: str


@dataclass(frozen=True)
class PaymentEdit:
    code: str
    status: str
    amount_paid: object = 0


Edit = Union[ValueEdit, CommentEdit, PaymentEdit]


class Ledger:
    """Immutable activity-code → QuarterEntry map plus the active quarter."""

    __slots__ = ("_entries", "current_quarter")

    def __init__(self, entries: Mapping[str, QuarterEntry] | None = None, current_quarter: str = "q1"):
        self._entries = MappingProxyType(dict(entries or {}))
        self.current_quarter = normalize_quarter(current_quarter)

    # ── Construction ─────────────────────────────────────────────────────

    @classmethod
    def initialize(
        cls,
        hierarchy: Iterable[Category],
        current_quarter: str = "q1",
        existing: Mapping[str, QuarterEntry] | None = None,
    ) -> "Ledger":
        """One entry per leaf activity, carrying over *existing* values."""
        existing = existing or {}
        entries = {}
        for activity in iter_activities(hierarchy):
            if not activity.is_leaf:
                continue
            entries[activity.code] = existing.get(activity.code, QuarterEntry())
        return cls(entries, current_quarter)

    @classmethod
    def from_form_activities(cls, activities, current_quarter: str = "q1") -> "Ledger":
        """Load ``formData.activities`` (list of rows, or code-keyed dict)."""
        if isinstance(activities, Mapping):
            rows = [{"code": code, **(row or {})} for code, row in activities.items()]
        else:
            rows = list(activities or [])
        entries = {}
        for row in rows:
            code = (row or {}).get("code")
            if not code:
                continue
            entries[code] = QuarterEntry.from_form(row, current_quarter)
        return cls(entries, current_quarter)

    def to_form_activities(self) -> list[dict]:
        return [{"code": code, **entry.to_form()} for code, entry in sorted(self._entries.items())]

    def to_form_values(self) -> dict:
        return {code: entry.to_form() for code, entry in sorted(self._entries.items())}

    # ── Access ───────────────────────────────────────────────────────────

    def get(self, code: str) -> QuarterEntry | None:
        return self._entries.get(code)

    def __getitem__(self, code: str) -> QuarterEntry:
        return self._entries[code]

    def __contains__(self, code) -> bool:
        return code in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def items(self):
        return self._entries.items()

    def __eq__(self, other):
        if not isinstance(other, Ledger):
            return NotImplemented
        return self.current_quarter == other.current_quarter and dict(self._entries) == dict(other._entries)

    def __repr__(self):
        return f"<Ledger {len(self._entries)} entries current={self.current_quarter}>"

    def has_values_in(self, quarter: str) -> bool:
        """Whether any activity holds a non-zero value for *quarter*."""
        q = normalize_quarter(quarter)
        return any((getattr(e, q) or 0) != 0 for e in self._entries.values())

    # ── Transitions ──────────────────────────────────────────────────────

    def with_current_quarter(self, quarter: str) -> "Ledger":
        return Ledger(self._entries, quarter)

    def with_entry(self, code: str, entry: QuarterEntry) -> "Ledger":
        entries = dict(self._entries)
        entries[code] = entry
        return Ledger(entries, self.current_quarter)

    def apply(self, edit: Edit) -> "Ledger":
        """Return a new Ledger with *edit* applied.

        Value edits never fail: malformed numbers are normalised to 0.
        Payment edits are validated against the current-quarter amount and
        raise ValidationError rather than storing an invalid state.
        """
        entry = self._entries.get(edit.code) or QuarterEntry()

        if isinstance(edit, ValueEdit):
            q = normalize_quarter(edit.quarter)
            entry = replace(entry, **{q: to_amount(edit.value)})
            status, _ = entry.payment.for_quarter(q)
            if status == PAID and q == self.current_quarter:
                entry = replace(entry, payment=entry.payment.with_quarter(q, PAID, entry.amount(q)))
            return self.with_entry(edit.code, entry)

        if isinstance(edit, CommentEdit):
            return self.with_entry(edit.code, replace(entry, comment=str(edit.comment or "")))

        if isinstance(edit, PaymentEdit):
            q = self.current_quarter
            status = str(edit.status or "").strip().lower()
            paid = resolve_payment(
                status, edit.amount_paid, entry.amount(q), field_name=f"{edit.code}.amountPaid",
            )
            return self.with_entry(
                edit.code, replace(entry, payment=entry.payment.with_quarter(q, status, paid)),
            )

        raise ValidationError(f"Unsupported edit: {type(edit).__name__}")

    def apply_all(self, edits: Iterable[Edit]) -> "Ledger":
        ledger = self
        for edit in edits:
            ledger = ledger.apply(edit)
        return ledger


def activity_entry(ledger: Ledger, activity: Activity) -> QuarterEntry:
    return ledger.get(activity.code) or QuarterEntry()
