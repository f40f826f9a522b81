"""
Caller-owned ledger session.

Edits are applied synchronously as pure ``Ledger.apply`` transitions; the
expensive recompute is debounced through a DebouncedScheduler so a burst of
keystrokes costs one pass.  The latest edit is never lost: the trailing
call always recomputes against the newest ledger.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from app.services.ledger.calculation import LedgerCalculation, calculate
from app.services.ledger.edit_lock import check_edit
from app.services.ledger.entries import Edit, Ledger, PaymentEdit
from app.services.ledger.equation import DEFAULT_TOLERANCE
from app.services.ledger.hierarchy import Category, activities_by_code
from app.services.ledger.scheduler import DEFAULT_DELAY_MS, DebouncedScheduler

logger = logging.getLogger(__name__)


class LedgerSession:
    def __init__(
        self,
        hierarchy: Iterable[Category],
        ledger: Ledger,
        opening_balance: float | None = None,
        tolerance: float = DEFAULT_TOLERANCE,
        auto_balances: bool = True,
        delay_ms: int = DEFAULT_DELAY_MS,
        timer_factory=threading.Timer,
        on_result: Callable[[LedgerCalculation], None] | None = None,
    ):
        self._hierarchy = tuple(hierarchy)
        self._activities = activities_by_code(self._hierarchy)
        self._ledger = ledger
        self._opening_balance = opening_balance
        self._tolerance = tolerance
        self._auto_balances = auto_balances
        self._on_result = on_result
        self._lock = threading.Lock()
        self._dirty = False
        self._result: LedgerCalculation | None = None
        self._scheduler = DebouncedScheduler(self._recompute, delay_ms, timer_factory)

    @property
    def ledger(self) -> Ledger:
        with self._lock:
            return self._ledger

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    @property
    def result(self) -> LedgerCalculation | None:
        with self._lock:
            return self._result

    def edit(self, edit: Edit) -> Ledger:
        """Apply *edit* now and schedule a recompute.

        Raises:
            ValidationError: the cell is locked (total row, or a quarter other
                than the current one) or the payment is invalid; the ledger is
                unchanged.
        """
        with self._lock:
            check_edit(self._activities, self._ledger, edit)
            self._ledger = self._ledger.apply(edit)
            self._dirty = True
            ledger = self._ledger
        self._scheduler.schedule()
        return ledger

    def update_payment(self, code: str, status: str, amount_paid=0) -> Ledger:
        return self.edit(PaymentEdit(code=code, status=status, amount_paid=amount_paid))

    def flush(self) -> LedgerCalculation | None:
        """Run a pending recompute immediately (e.g. before save/submit)."""
        self._scheduler.flush()
        return self.result

    def recompute_now(self) -> LedgerCalculation:
        self._scheduler.cancel()
        return self._recompute()

    def close(self) -> None:
        self._scheduler.cancel()

    def _recompute(self) -> LedgerCalculation:
        with self._lock:
            ledger = self._ledger
        calc = calculate(
            ledger,
            self._hierarchy,
            opening_balance=self._opening_balance,
            tolerance=self._tolerance,
            auto_balances=self._auto_balances,
        )
        with self._lock:
            # Only publish if no edit landed while computing
            if self._ledger is ledger:
                self._ledger = calc.ledger
                self._dirty = False
            self._result = calc
        logger.debug(
            "Ledger recomputed",
            extra={"balanced": calc.equation.is_valid, "difference": calc.equation.difference},
        )
        if self._on_result is not None:
            self._on_result(calc)
        return calc
