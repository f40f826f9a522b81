"""
Tests: ledger engine — codes, section aggregation, payments, payables,
accounting equation and the quarter edit-lock policy.

Pure computation: everything runs on the in-memory ``hierarchy`` fixture,
no database rows are needed.
"""

import logging
import pytest

from app.core.exceptions import ValidationError
from app.services.ledger.balance import SectionTotals, compute_row, leaf_totals, recompute
from app.services.ledger.calculation import calculate
from app.services.ledger.codes import (
    InvalidActivityCode,
    build_activity_code,
    is_stock_item,
    parse_activity_code,
    to_amount,
)
from app.services.ledger.edit_lock import (
    EDITABLE,
    HIDDEN,
    LOCKED,
    cell_state,
    check_edit,
    is_editable,
    is_visible,
)
from app.services.ledger.entries import CommentEdit, Ledger, PaymentEdit, QuarterEntry, ValueEdit
from app.services.ledger.equation import ERR_EQUATION_MISMATCH, validate
from app.services.ledger.hierarchy import Activity, Category, SubCategory, activities_by_code
from app.services.ledger.payables import build_mapping, validate_mapping
from app.services.ledger.payment_info import FlatPayment, PerQuarterPayment, migrate_payment_info
from app.services.ledger.payments import summarize_payments, update_payment


def _c(section, order, sub=None):
    return build_activity_code("HIV", "hospital", section, order, sub)


OTHER_INCOME = _c("A", 1)
TRANSFERS_IN = _c("A", 2)
RECEIPTS_TOTAL = _c("A", 3)
LAB_TECH = _c("B", 1, "B-01")
SUPERVISION = _c("B", 1, "B-02")
OFFICE_SUPPLIES = _c("B", 2, "B-04")
TRANSFER_RBC = _c("B", 1, "B-05")
CASH_AT_BANK = _c("D", 1)
PETTY_CASH = _c("D", 2)
PAYABLE_SALARIES = _c("E", 1)
PAYABLE_SUPERVISION = _c("E", 2)
PAYABLE_SUPPLIES = _c("E", 8)
NET_ASSETS = _c("F", 1)
ACCUMULATED = _c("G", 1)
PRIOR_YEAR = _c("G", 2)
PERIOD_SURPLUS = _c("G", 3)


def _scenario_ledger(hierarchy, partial=True):
    """Opening 100000; expenses 12000 paid, 8000 partial (5000), 5000 unpaid."""
    edits = [
        ValueEdit(TRANSFERS_IN, "q1", 100000),
        ValueEdit(LAB_TECH, "q1", 12000),
        ValueEdit(OFFICE_SUPPLIES, "q1", 8000),
        ValueEdit(SUPERVISION, "q1", 5000),
    ]
    if partial:
        edits += [
            PaymentEdit(LAB_TECH, "paid"),
            PaymentEdit(OFFICE_SUPPLIES, "partial", 5000),
        ]
    return Ledger.initialize(hierarchy, "q1").apply_all(edits)


# ── Codes ────────────────────────────────────────────────────────────────


def test_parse_activity_code_with_subcategory():
    parts = parse_activity_code("HIV_EXEC_HEALTH_CENTER_B_B-04_1")
    assert parts == {
        "project": "HIV",
        "facility_type": "health_center",
        "section": "B",
        "sub_category": "B-04",
        "order": 1,
    }


def test_parse_activity_code_rejects_other_formats():
    with pytest.raises(InvalidActivityCode):
        parse_activity_code("HIV_PLAN_HOSPITAL_A_1")


@pytest.mark.parametrize("raw, expected", [
    (None, None),
    ("", None),
    ("1,200.50", 1200.5),
    ("abc", 0.0),
    (float("nan"), 0.0),
    (float("inf"), 0.0),
    (0, 0.0),
])
def test_to_amount_normalises_malformed_input(raw, expected):
    assert to_amount(raw) == expected


def test_section_g_stock_classification_by_title():
    assert is_stock_item("G", "Accumulated Surplus/Deficit")
    assert is_stock_item("G", "Prior Year Adjustment")
    assert not is_stock_item("G", "Surplus/Deficit of the Period")
    assert is_stock_item("D", "Cash at bank")
    assert not is_stock_item("B", "Nurse")


# ── Section aggregation ──────────────────────────────────────────────────


def test_flow_section_cumulative_is_sum_of_quarters(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q4").apply_all([
        ValueEdit(OTHER_INCOME, "q1", 10.1),
        ValueEdit(OTHER_INCOME, "q2", 20.2),
        ValueEdit(OTHER_INCOME, "q3", 30.3),
        ValueEdit(TRANSFERS_IN, "q4", 0.4),
    ])
    totals = recompute(ledger, hierarchy).section_totals["A"]
    assert totals.cumulative_balance == pytest.approx(61.0)
    assert totals.q4 == 0.4


def test_stock_leaf_takes_latest_reported_quarter_including_zero():
    activity = Activity(code=PETTY_CASH, name="Petty cash", section="D")
    totals = leaf_totals(activity, QuarterEntry(q1=50.0, q2=None, q3=0.0))
    assert totals.cumulative_balance == 0.0


def test_stock_leaf_without_reports_has_no_balance():
    activity = Activity(code=PETTY_CASH, name="Petty cash", section="D")
    assert leaf_totals(activity, QuarterEntry()).cumulative_balance is None


def test_net_financial_assets_uses_latest_quarter_of_the_difference(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q2").apply_all([
        ValueEdit(CASH_AT_BANK, "q1", 100),
        ValueEdit(CASH_AT_BANK, "q2", 80),
        ValueEdit(PAYABLE_SALARIES, "q1", 30),
    ])
    f = recompute(ledger, hierarchy).section_totals["F"]
    assert (f.q1, f.q2, f.q3) == (70.0, 80.0, None)
    assert f.cumulative_balance == 80.0


def test_period_surplus_row_mirrors_section_c(hierarchy):
    result = recompute(_scenario_ledger(hierarchy), hierarchy, opening_balance=100000)
    rows = {r.code: r for r in result.rows}
    c = result.section_totals["C"]
    assert rows[PERIOD_SURPLUS].totals == c
    assert rows[PERIOD_SURPLUS].is_calculated
    assert c.cumulative_balance == 75000.0
    # G header is re-summed after the mirror substitution
    assert result.section_totals["G"].cumulative_balance == 75000.0


def test_computed_row_ignores_stored_entry(hierarchy):
    f_row = activities_by_code(hierarchy)[NET_ASSETS]
    derived = SectionTotals(q1=5.0, cumulative_balance=5.0)
    row = compute_row(f_row, QuarterEntry(q1=999.0), {"F": derived})
    assert row.kind == "computed"
    assert row.value("q1") == 5.0
    assert not row.is_editable


def test_recompute_is_idempotent(hierarchy):
    ledger = _scenario_ledger(hierarchy)
    first = recompute(ledger, hierarchy, opening_balance=100000)
    second = recompute(ledger, hierarchy, opening_balance=100000)
    assert first.section_totals == second.section_totals
    assert first.payables == second.payables
    assert first.cash_at_bank == second.cash_at_bank


# ── Payments & payables ──────────────────────────────────────────────────


def test_mixed_payment_scenario(hierarchy):
    result = recompute(_scenario_ledger(hierarchy), hierarchy, opening_balance=100000)
    assert result.total_paid == 17000
    assert result.total_unpaid == 8000
    assert result.cash_at_bank == 83000
    assert result.payables == {PAYABLE_SUPERVISION: 5000, PAYABLE_SUPPLIES: 3000}
    assert sum(result.payables.values()) == 8000


def test_all_unpaid_scenario(hierarchy):
    result = recompute(_scenario_ledger(hierarchy, partial=False), hierarchy, opening_balance=100000)
    assert result.cash_at_bank == 100000
    assert result.total_unpaid == 25000
    assert result.payables[PAYABLE_SALARIES] == 12000


def test_overspend_gives_negative_cash_with_warning(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q1").apply_all([
        ValueEdit(LAB_TECH, "q1", 12000),
        PaymentEdit(LAB_TECH, "paid"),
    ])
    result = recompute(ledger, hierarchy, opening_balance=10000)
    assert result.cash_at_bank == -2000
    assert result.cash_warning


def test_paid_status_forces_full_amount_and_follows_value_edits(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q1").apply_all([
        ValueEdit(LAB_TECH, "q1", 1000),
        PaymentEdit(LAB_TECH, "paid", 1),
    ])
    assert ledger[LAB_TECH].payment.for_quarter("q1") == ("paid", 1000.0)
    ledger = ledger.apply(ValueEdit(LAB_TECH, "q1", 1500))
    assert ledger[LAB_TECH].payment.for_quarter("q1") == ("paid", 1500.0)


@pytest.mark.parametrize("amount_paid", [0, 8000, 9000])
def test_partial_payment_out_of_range_is_rejected(hierarchy, amount_paid):
    ledger = Ledger.initialize(hierarchy, "q1").apply(ValueEdit(OFFICE_SUPPLIES, "q1", 8000))
    with pytest.raises(ValidationError) as exc:
        update_payment(ledger, OFFICE_SUPPLIES, "partial", amount_paid)
    assert f"{OFFICE_SUPPLIES}.amountPaid" in exc.value.details


def test_unknown_payment_status_is_rejected(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q1")
    with pytest.raises(ValidationError):
        update_payment(ledger, LAB_TECH, "settled")


def test_stale_partial_payment_is_reported_not_clamped(hierarchy):
    ledger = _scenario_ledger(hierarchy).apply(ValueEdit(OFFICE_SUPPLIES, "q1", 4000))
    summary = summarize_payments(ledger, hierarchy)
    assert f"{OFFICE_SUPPLIES}.amountPaid" in summary.errors
    calc = calculate(ledger, hierarchy)
    assert not calc.can_submit
    codes = [e["code"] for e in calc.to_dict()["validationErrors"]]
    assert "INVALID_PAYMENT" in codes


def test_transfers_to_other_entities_are_always_paid(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q1").apply(ValueEdit(TRANSFER_RBC, "q1", 4000))
    summary = summarize_payments(ledger, hierarchy)
    assert summary.total_paid == 4000
    assert summary.payables == {}


def test_legacy_per_quarter_payment_fields_are_migrated():
    info = migrate_payment_info({
        "paymentStatus": {"q1": "paid", "q2": "PARTIAL"},
        "amountPaid": {"q1": 1200, "q2": "300"},
    })
    assert isinstance(info, PerQuarterPayment)
    assert info.for_quarter("q2") == ("partial", 300.0)
    assert info.for_quarter("q3") == ("unpaid", 0.0)

    flat = migrate_payment_info({"paymentStatus": "bogus", "amountPaid": None})
    assert flat == FlatPayment()


def test_flat_payment_is_keyed_on_the_loading_quarter():
    info = migrate_payment_info({"paymentStatus": "partial", "amountPaid": 5000}, "q1")
    assert isinstance(info, PerQuarterPayment)
    assert info.for_quarter("q1") == ("partial", 5000.0)
    assert info.for_quarter("q2") == ("unpaid", 0.0)
    assert migrate_payment_info({"q1": 10}, "q1") == PerQuarterPayment()


def test_payment_in_next_quarter_keeps_earlier_partial(hierarchy):
    stored = [
        {"code": OFFICE_SUPPLIES, "q1": 8000, "paymentStatus": "partial", "amountPaid": 5000},
    ]
    ledger = Ledger.from_form_activities(stored, "q1").with_current_quarter("q2")
    ledger = ledger.apply_all([
        ValueEdit(OFFICE_SUPPLIES, "q2", 3000),
        PaymentEdit(OFFICE_SUPPLIES, "paid"),
    ])

    payment = ledger[OFFICE_SUPPLIES].payment
    assert payment.for_quarter("q1") == ("partial", 5000.0)
    assert payment.for_quarter("q2") == ("paid", 3000.0)
    assert ledger[OFFICE_SUPPLIES].to_form()["paymentStatus"] == {"q1": "partial", "q2": "paid"}


def test_build_mapping_targets(hierarchy):
    mapping = build_mapping(hierarchy)
    assert mapping[LAB_TECH] == PAYABLE_SALARIES
    assert mapping[OFFICE_SUPPLIES] == PAYABLE_SUPPLIES
    assert mapping[TRANSFER_RBC] is None


def test_standard_template_mapping_is_complete(hierarchy):
    report = validate_mapping(hierarchy)
    assert report["isValid"] is True
    assert report["unmappedExpenses"] == []


def test_unmapped_expense_is_flagged(caplog):
    fuel = Activity(code=_c("B", 9, "B-04"), name="Generator fuel", section="B", sub_category_code="B-04")
    payable = Activity(code=_c("E", 1), name="payable 1: salaries", section="E")
    hierarchy = (
        Category(code="B", name="B", sub_categories=(SubCategory(code="B-04", name="Overheads", activities=(fuel,)),)),
        Category(code="E", name="E", activities=(payable,)),
    )
    with caplog.at_level(logging.WARNING):
        mapping = build_mapping(hierarchy)
    assert mapping[fuel.code] is None
    assert "matches no payable rule" in caplog.text

    report = validate_mapping(hierarchy)
    assert report["isValid"] is False
    assert report["unmappedExpenses"][0]["code"] == fuel.code


# ── Accounting equation ──────────────────────────────────────────────────


def test_balanced_scenario_passes_equation(hierarchy):
    calc = calculate(_scenario_ledger(hierarchy), hierarchy)
    assert calc.balance.cash_at_bank == 83000
    assert calc.ledger[CASH_AT_BANK].q1 == 83000
    assert calc.ledger[PAYABLE_SUPPLIES].q1 == 3000
    assert calc.equation.is_valid
    assert abs(calc.equation.difference) < 0.01
    assert calc.can_submit


def test_perturbed_leaf_fails_equation_with_signed_difference(hierarchy):
    ledger = _scenario_ledger(hierarchy).apply(ValueEdit(PRIOR_YEAR, "q1", 10))
    calc = calculate(ledger, hierarchy)
    assert not calc.equation.is_valid
    assert calc.equation.difference == pytest.approx(-10.0)
    error = calc.equation.errors[0]
    assert error["field"] == "F"
    assert error["code"] == ERR_EQUATION_MISMATCH
    assert not calc.can_submit


def test_validate_respects_tolerance(hierarchy):
    totals = recompute(Ledger.initialize(hierarchy), hierarchy).section_totals
    assert validate(totals, tolerance=0.01).is_valid


def test_view_mode_keeps_stored_balances(hierarchy):
    ledger = _scenario_ledger(hierarchy)
    calc = calculate(ledger, hierarchy, auto_balances=False)
    assert calc.ledger is ledger
    assert calc.ledger[CASH_AT_BANK].q1 is None


# ── Edit lock ────────────────────────────────────────────────────────────


def test_total_rows_are_never_editable(hierarchy):
    total = activities_by_code(hierarchy)[RECEIPTS_TOTAL]
    assert not is_editable(total, "q1", "q1")


def test_accumulated_surplus_is_editable_only_in_q1(hierarchy):
    accumulated = activities_by_code(hierarchy)[ACCUMULATED]
    assert is_editable(accumulated, "q1", "q3")
    assert not is_editable(accumulated, "q3", "q3")


def test_only_current_quarter_is_editable(hierarchy):
    nurse = activities_by_code(hierarchy)[LAB_TECH]
    assert is_editable(nurse, "q2", "q2")
    assert not is_editable(nurse, "q1", "q2")


def test_locked_quarters_are_visible_only_with_data(hierarchy):
    nurse = activities_by_code(hierarchy)[LAB_TECH]
    ledger = Ledger.initialize(hierarchy, "q2").apply(ValueEdit(LAB_TECH, "q1", 500))
    assert is_visible("q1", "q2", ledger)
    assert not is_visible("q4", "q2", ledger)
    assert cell_state(nurse, "q2", "q2", ledger) == EDITABLE
    assert cell_state(nurse, "q1", "q2", ledger) == LOCKED
    assert cell_state(nurse, "q4", "q2", ledger) == HIDDEN


def test_check_edit_keys_errors_by_cell(hierarchy):
    activities = activities_by_code(hierarchy)
    ledger = Ledger.initialize(hierarchy, "q3")

    with pytest.raises(ValidationError) as exc:
        check_edit(activities, ledger, ValueEdit(LAB_TECH, "Q2", 1))
    assert exc.value.details == {f"{LAB_TECH}.q2": "Quarter is locked for editing"}

    with pytest.raises(ValidationError) as exc:
        check_edit(activities, ledger, PaymentEdit(NET_ASSETS, "paid"))
    assert exc.value.details == {f"{NET_ASSETS}.q3": "Computed and total rows cannot hold values"}

    with pytest.raises(ValidationError) as exc:
        check_edit(activities, ledger, ValueEdit("HIV_EXEC_HOSPITAL_Z_9", "q3", 1))
    assert "Unknown activity code" in exc.value.details.values()

    check_edit(activities, ledger, ValueEdit(LAB_TECH, "q3", 1))
    check_edit(activities, ledger, ValueEdit(ACCUMULATED, "q1", 1))
    check_edit(activities, ledger, CommentEdit(NET_ASSETS, "see bank statement"))

def test_comment_edit_returns_new_ledger(hierarchy):
    ledger = Ledger.initialize(hierarchy, "q1")
    edited = ledger.apply(CommentEdit(LAB_TECH, "checked against payroll"))
    assert ledger[LAB_TECH].comment == ""
    assert edited[LAB_TECH].comment == "checked against payroll"
