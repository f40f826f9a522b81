"""
Tests: execution record service — create/update with recomputed balances,
payload validation, duplicate and period-lock conflicts, stateless
calculation.
"""

import pytest

import app.services.execution_service as es
from app.core.exceptions import ConflictError, PeriodLockedError, ValidationError
from app.models import db
from app.models.execution import ExecutionRecord
from app.services.ledger.codes import build_activity_code
from app.services.ledger.entries import ValueEdit
from app.services.period_lock import lock_period, unlock_period


def _c(section, order, sub=None):
    return build_activity_code("HIV", "hospital", section, order, sub)


OFFICE_SUPPLIES = _c("B", 2, "B-04")
ACCUMULATED = _c("G", 1)


def _row(record, code):
    return next(r for r in record.activities if r["code"] == code)


def test_create_persists_computed_balances(seeded, users, execution_payload):
    record = es.create_execution(execution_payload(), user_id=users["accountant"].id)

    assert record.id is not None
    assert record.created_by == users["accountant"].id
    assert _row(record, _c("D", 1))["q1"] == 83000
    assert _row(record, _c("E", 2))["q1"] == 5000
    assert _row(record, _c("E", 8))["q1"] == 3000
    assert _row(record, _c("E", 1))["q1"] == 0
    assert _row(record, OFFICE_SUPPLIES)["paymentStatus"] == {"q1": "partial"}
    assert _row(record, OFFICE_SUPPLIES)["amountPaid"] == {"q1": 5000}


def test_stored_record_balances_in_view_mode(seeded, users, execution_payload):
    record = es.create_execution(execution_payload(), user_id=users["accountant"].id)
    calc = es.calculate_record(record.id, mode="view")
    assert calc["isBalanced"] is True
    assert calc["canSubmitExecution"] is True
    assert calc["sectionTotals"]["F"]["cumulativeBalance"] == 75000
    assert calc["sectionTotals"]["G"]["cumulativeBalance"] == 75000


def test_duplicate_tuple_conflicts(seeded, execution_payload):
    es.create_execution(execution_payload())
    with pytest.raises(ConflictError):
        es.create_execution(execution_payload())
    assert ExecutionRecord.query.count() == 1


def test_missing_ids_are_reported_per_field(seeded):
    with pytest.raises(ValidationError) as exc:
        es.create_execution({"projectType": "HIV", "facilityType": "hospital"})
    assert set(exc.value.details) >= {"projectId", "facilityId", "reportingPeriodId"}


def test_unknown_scope_is_rejected(seeded, execution_payload):
    with pytest.raises(ValidationError) as exc:
        es.create_execution(execution_payload(projectType="XYZ"))
    assert "projectType" in exc.value.details


def test_unknown_activity_code_is_rejected(seeded, execution_payload):
    with pytest.raises(ValidationError) as exc:
        es.create_execution(execution_payload(activities=[{"code": "HIV_EXEC_HOSPITAL_Z_1", "q1": 1}]))
    assert "HIV_EXEC_HOSPITAL_Z_1" in exc.value.details


def test_values_on_computed_rows_are_rejected(seeded, execution_payload):
    with pytest.raises(ValidationError) as exc:
        es.create_execution(execution_payload(activities=[{"code": _c("F", 1), "q1": 10}]))
    assert _c("F", 1) in exc.value.details


def test_invalid_payment_status_is_rejected(seeded, execution_payload):
    rows = [{"code": OFFICE_SUPPLIES, "q1": 100, "paymentStatus": "settled"}]
    with pytest.raises(ValidationError) as exc:
        es.create_execution(execution_payload(activities=rows))
    assert f"{OFFICE_SUPPLIES}.paymentStatus" in exc.value.details


def test_partial_payment_out_of_range_is_rejected(seeded, execution_payload):
    rows = [{"code": OFFICE_SUPPLIES, "q1": 8000, "paymentStatus": "partial", "amountPaid": 9000}]
    with pytest.raises(ValidationError) as exc:
        es.create_execution(execution_payload(activities=rows))
    assert f"{OFFICE_SUPPLIES}.amountPaid" in exc.value.details
    assert ExecutionRecord.query.count() == 0


def test_locked_period_blocks_create_and_update(seeded, execution_payload):
    record = es.create_execution(execution_payload())
    record_id = record.id
    lock_period(1, 1, 1, reason="report submitted")
    db.session.commit()

    with pytest.raises(PeriodLockedError):
        es.update_execution(record_id, {"currentQuarter": "q2"})
    with pytest.raises(PeriodLockedError):
        es.create_execution(execution_payload())

    unlock_period(1, 1, 1)
    db.session.commit()
    assert es.update_execution(record_id, {"currentQuarter": "q2"}).current_quarter == "q2"


def test_update_replaces_activities_and_recomputes(seeded, users, execution_payload):
    record = es.create_execution(execution_payload())
    rows = execution_payload()["formData"]["activities"] + [{"code": ACCUMULATED, "q1": 1000}]

    updated = es.update_execution(record.id, {"formData": {"activities": rows}}, user_id=users["accountant"].id)
    assert updated.updated_by == users["accountant"].id
    assert _row(updated, ACCUMULATED)["q1"] == 1000

    calc = es.calculate_record(updated.id, mode="view")
    assert calc["isBalanced"] is False
    assert calc["difference"] == pytest.approx(-1000)


def test_update_rejects_changes_to_locked_quarters(seeded, execution_payload):
    record = es.create_execution(execution_payload())
    lab_tech = _c("B", 1, "B-01")

    with pytest.raises(ValidationError) as exc:
        es.update_execution(record.id, {
            "currentQuarter": "q2",
            "formData": {"activities": [{"code": lab_tech, "q1": 1}]},
        })
    assert exc.value.details == {f"{lab_tech}.q1": "Quarter is locked for editing"}

    db.session.expire_all()
    stored = db.session.get(ExecutionRecord, record.id)
    assert stored.current_quarter == "q1"
    assert _row(stored, lab_tech)["q1"] == 12000


def test_update_keeps_locked_quarters_of_omitted_rows(seeded, execution_payload):
    record = es.create_execution(execution_payload())
    updated = es.update_execution(record.id, {
        "currentQuarter": "q2",
        "formData": {"activities": [{"code": _c("B", 1, "B-02"), "q2": 700}]},
    })
    assert updated.current_quarter == "q2"
    assert _row(updated, _c("A", 2))["q1"] == 100000
    assert _row(updated, _c("B", 1, "B-02"))["q1"] == 5000
    assert _row(updated, _c("B", 1, "B-02"))["q2"] == 700


def test_update_allows_opening_balance_outside_q1(seeded, execution_payload):
    record = es.create_execution(execution_payload())
    updated = es.update_execution(record.id, {
        "currentQuarter": "q2",
        "formData": {"activities": [{"code": ACCUMULATED, "q1": 1000}]},
    })
    assert _row(updated, ACCUMULATED)["q1"] == 1000


def test_q1_partial_payment_survives_quarter_change(seeded, execution_payload):
    record = es.create_execution(execution_payload())
    updated = es.update_execution(record.id, {
        "currentQuarter": "q2",
        "formData": {"activities": [
            {"code": OFFICE_SUPPLIES, "q2": 3000, "paymentStatus": "paid", "amountPaid": 3000},
        ]},
    })

    row = _row(updated, OFFICE_SUPPLIES)
    assert row["q1"] == 8000
    assert row["paymentStatus"] == {"q1": "partial", "q2": "paid"}
    assert row["amountPaid"] == {"q1": 5000, "q2": 3000}

    ledger = es.load_record_ledger(updated, seeded)
    payment = ledger.get(OFFICE_SUPPLIES).payment
    assert payment.for_quarter("q1") == ("partial", 5000.0)
    assert payment.for_quarter("q2") == ("paid", 3000.0)


def test_update_rejects_payment_change_in_locked_quarter(seeded, execution_payload):
    record = es.create_execution(execution_payload())
    with pytest.raises(ValidationError) as exc:
        es.update_execution(record.id, {
            "currentQuarter": "q2",
            "formData": {"activities": [{
                "code": OFFICE_SUPPLIES,
                "paymentStatus": {"q1": "paid"},
                "amountPaid": {"q1": 8000},
            }]},
        })
    assert f"{OFFICE_SUPPLIES}.q1" in exc.value.details


def test_find_existing(seeded, execution_payload):
    assert es.find_existing(1, 1, 1) is None
    record = es.create_execution(execution_payload())
    assert es.find_existing(1, 1, 1).id == record.id


def test_calculate_execution_is_stateless(seeded, execution_payload):
    result = es.calculate_execution(
        "HIV", "hospital", execution_payload()["formData"]["activities"], current_quarter="q1",
    )
    assert result["cashAtBank"] == 83000
    assert result["payables"] == {_c("E", 2): 5000, _c("E", 8): 3000}
    assert result["canSubmitExecution"] is True
    assert ExecutionRecord.query.count() == 0


def test_calculate_execution_with_explicit_opening_balance(seeded, execution_payload):
    result = es.calculate_execution(
        "HIV", "hospital", execution_payload()["formData"]["activities"], opening_balance="10,000",
    )
    assert result["cashAtBank"] == -7000
    assert result["cashWarning"]


def test_calculate_execution_rejects_bad_quarter_and_mode(seeded):
    with pytest.raises(ValidationError):
        es.calculate_execution("HIV", "hospital", [], current_quarter="q5")
    with pytest.raises(ValidationError):
        es.calculate_execution("HIV", "hospital", [], mode="preview")


def test_open_session_uses_configured_debounce(app, seeded, execution_payload, monkeypatch):
    started = []

    class _Timer:
        def __init__(self, interval, function, args=None, kwargs=None):
            self.interval = interval
            self.daemon = False
            started.append(self)

        def start(self):
            pass

        def cancel(self):
            pass

    monkeypatch.setitem(app.config, "RECOMPUTE_DEBOUNCE_MS", 50)
    record = es.create_execution(execution_payload())
    session = es.open_session(record.id, timer_factory=_Timer)

    session.edit(ValueEdit(code=OFFICE_SUPPLIES, quarter="q1", value=8000))
    assert started[-1].interval == pytest.approx(0.05)
    assert session.flush().balance.cash_at_bank == 83000
    session.close()
