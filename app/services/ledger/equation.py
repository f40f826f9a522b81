"""
Accounting equation validator.

Net Financial Assets (F) must equal the Closing Balance (G) within a
tolerance.  Failures are reported as structured, field-keyed errors so the
UI and tests can branch on ``code`` rather than parse messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

DEFAULT_TOLERANCE = 0.01

ERR_EQUATION_MISMATCH = "ACCOUNTING_EQUATION_MISMATCH"


@dataclass
class EquationResult:
    is_valid: bool
    difference: float
    net_financial_assets: float
    closing_balance: float
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "isBalanced": self.is_valid,
            "difference": self.difference,
            "netFinancialAssets": self.net_financial_assets,
            "closingBalance": self.closing_balance,
            "validationErrors": list(self.errors),
        }


def validate(section_totals: Mapping, tolerance: float = DEFAULT_TOLERANCE) -> EquationResult:
    """Check ``|F.cumulative - G.cumulative| < tolerance``.

    ``difference`` is signed: F minus G.  Absent cumulative balances count
    as zero.
    """
    f_totals = section_totals.get("F")
    g_totals = section_totals.get("G")
    f_value = (f_totals.cumulative_balance if f_totals else None) or 0.0
    g_value = (g_totals.cumulative_balance if g_totals else None) or 0.0
    diff = f_value - g_value
    is_valid = abs(diff) < tolerance

    errors = []
    if not is_valid:
        errors.append({
            "field": "F",
            "code": ERR_EQUATION_MISMATCH,
            "message": "Net Financial Assets (F) must equal Closing Balance (G)",
            "expected": g_value,
            "actual": f_value,
            "difference": diff,
        })
    return EquationResult(
        is_valid=is_valid,
        difference=diff,
        net_financial_assets=f_value,
        closing_balance=g_value,
        errors=errors,
    )
