"""
Tests: execution data-entry API — hierarchy, records, recompute, drafts,
auth and request guards.
"""

from app.models import db
from app.services.ledger.codes import build_activity_code
from app.services.period_lock import lock_period

BASE = "/api/v1/execution"


def _c(section, order, sub=None):
    return build_activity_code("HIV", "hospital", section, order, sub)


# ── Auth & guards ────────────────────────────────────────────────────────


def test_requires_bearer_token(client, seeded):
    res = client.get(f"{BASE}/hierarchy")
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_UNAUTHORIZED"


def test_invalid_token_is_unauthorized(client, seeded):
    res = client.get(f"{BASE}/hierarchy", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


def test_writes_require_accountant(client, seeded, users, auth_headers, execution_payload):
    res = client.post(BASE, json=execution_payload(), headers=auth_headers(users["daf"]))
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


def test_non_json_body_is_rejected(client, seeded, users, auth_headers):
    res = client.post(
        BASE, data="projectId=1", headers={**auth_headers(users["accountant"]), "Content-Type": "text/plain"},
    )
    assert res.status_code == 415


def test_health_endpoints_skip_auth(client, seeded):
    assert client.get("/api/v1/health").get_json()["status"] == "ok"
    assert client.get("/api/v1/health/ready").status_code == 200
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["redis"]["status"] == "skipped"


# ── Reference data ───────────────────────────────────────────────────────


def test_hierarchy(client, seeded, users, auth_headers):
    res = client.get(
        f"{BASE}/hierarchy?projectType=hiv&facilityType=hospital", headers=auth_headers(users["daf"]),
    )
    assert res.status_code == 200
    body = res.get_json()
    assert body["projectType"] == "HIV"
    assert [c["code"] for c in body["categories"]] == list("ABCDEFG")


def test_hierarchy_unknown_scope(client, seeded, users, auth_headers):
    res = client.get(f"{BASE}/hierarchy?projectType=FLU&facilityType=hospital", headers=auth_headers(users["daf"]))
    assert res.status_code == 422
    assert "projectType" in res.get_json()["details"]


def test_mapping_validate(client, seeded, users, auth_headers):
    res = client.get(
        f"{BASE}/mapping/validate?projectType=HIV&facilityType=hospital", headers=auth_headers(users["daf"]),
    )
    assert res.get_json()["isValid"] is True


# ── Records ──────────────────────────────────────────────────────────────


def test_create_and_read_record(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    res = client.post(BASE, json=execution_payload(), headers=headers)
    assert res.status_code == 201
    body = res.get_json()
    assert body["calculation"]["cashAtBank"] == 83000
    assert body["calculation"]["isBalanced"] is True
    record_id = body["record"]["id"]

    res = client.get(f"{BASE}/{record_id}", headers=headers)
    assert res.status_code == 200
    assert res.get_json()["visibleQuarters"] == {"q1": True, "q2": False, "q3": False, "q4": False}

    res = client.get(f"{BASE}/{record_id}/calculate?mode=view", headers=headers)
    assert res.get_json()["canSubmitExecution"] is True


def test_create_invalid_payload(client, seeded, users, auth_headers):
    res = client.post(BASE, json={"projectType": "HIV"}, headers=auth_headers(users["accountant"]))
    assert res.status_code == 422
    body = res.get_json()
    assert body["code"] == "ERR_VALIDATION_RULE"
    assert "projectId" in body["details"]


def test_create_duplicate(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    client.post(BASE, json=execution_payload(), headers=headers)
    res = client.post(BASE, json=execution_payload(), headers=headers)
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"


def test_existing_lookup(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    res = client.get(f"{BASE}/existing?projectId=1&facilityId=1", headers=headers)
    assert res.status_code == 400

    res = client.get(f"{BASE}/existing?projectId=1&facilityId=1&reportingPeriodId=1", headers=headers)
    assert res.get_json() == {"exists": False, "record": None}

    client.post(BASE, json=execution_payload(), headers=headers)
    res = client.get(f"{BASE}/existing?projectId=1&facilityId=1&reportingPeriodId=1", headers=headers)
    assert res.get_json()["exists"] is True


def test_update_locked_period(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    record_id = client.post(BASE, json=execution_payload(), headers=headers).get_json()["record"]["id"]
    lock_period(1, 1, 1)
    db.session.commit()

    res = client.put(f"{BASE}/{record_id}", json={"currentQuarter": "q2"}, headers=headers)
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_PERIOD_LOCKED"
    assert body["details"]["reportingPeriodId"] == 1


def test_update_moves_quarter(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    record_id = client.post(BASE, json=execution_payload(), headers=headers).get_json()["record"]["id"]
    res = client.put(f"{BASE}/{record_id}", json={"currentQuarter": "Q2"}, headers=headers)
    assert res.status_code == 200
    assert res.get_json()["record"]["current_quarter"] == "q2"


def test_update_locked_quarter_is_unprocessable(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    record_id = client.post(BASE, json=execution_payload(), headers=headers).get_json()["record"]["id"]
    res = client.put(f"{BASE}/{record_id}", json={
        "currentQuarter": "q2",
        "formData": {"activities": [{"code": _c("A", 2), "q1": 1}]},
    }, headers=headers)
    assert res.status_code == 422
    body = res.get_json()
    assert body["code"] == "ERR_VALIDATION_RULE"
    assert body["details"] == {f"{_c('A', 2)}.q1": "Quarter is locked for editing"}


def test_unknown_record(client, seeded, users, auth_headers):
    res = client.get(f"{BASE}/404", headers=auth_headers(users["accountant"]))
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_stateless_calculate(client, seeded, users, auth_headers, execution_payload):
    body = {
        "projectType": "HIV",
        "facilityType": "hospital",
        "activities": execution_payload()["formData"]["activities"],
        "currentQuarter": "q1",
    }
    res = client.post(f"{BASE}/calculate", json=body, headers=auth_headers(users["daf"]))
    assert res.status_code == 200
    result = res.get_json()
    assert result["totalPaid"] == 17000
    assert result["totalUnpaid"] == 8000
    assert result["payables"] == {_c("E", 2): 5000, _c("E", 8): 3000}
    assert result["formValues"][_c("D", 1)]["q1"] == 83000


# ── Drafts ───────────────────────────────────────────────────────────────


def test_draft_lifecycle(client, seeded, users, auth_headers, execution_payload):
    headers = auth_headers(users["accountant"])
    res = client.post(f"{BASE}/drafts/key", json={
        "facilityId": 1, "reportingPeriod": "2024-Q1", "program": "HIV",
        "facilityType": "hospital", "facilityName": "Kibagabaga", "mode": "create",
    }, headers=headers)
    key = res.get_json()["key"]
    assert key == "1_2024-Q1_HIV_hospital_Kibagabaga_create"

    rows = execution_payload()["formData"]["activities"]
    res = client.put(f"{BASE}/drafts/{key}", json={
        "activities": rows,
        "currentQuarter": "q1",
        "expandedRows": ["B", "B-04"],
        "lastModified": "2024-03-01T12:00:00Z",
    }, headers=headers)
    assert res.status_code == 200
    assert res.get_json() == {"key": key, "saved": True}

    res = client.get(f"{BASE}/drafts/{key}", headers=headers)
    body = res.get_json()
    assert body["formValues"][_c("B", 2, "B-04")]["amountPaid"] == {"q1": 5000}
    assert body["expandedRows"] == ["B", "B-04"]

    res = client.put(f"{BASE}/drafts/{key}", json={
        "activities": [], "lastModified": "2024-03-01T11:59:00Z",
    }, headers=headers)
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_STALE"

    assert client.delete(f"{BASE}/drafts/{key}", headers=headers).status_code == 204
    assert client.get(f"{BASE}/drafts/{key}", headers=headers).status_code == 404


def test_draft_delete_requires_accountant(client, seeded, users, auth_headers, execution_payload):
    key = "1_2024-Q1_HIV_hospital_Kibagabaga_edit"
    rows = execution_payload()["formData"]["activities"]
    res = client.put(f"{BASE}/drafts/{key}", json={"activities": rows}, headers=auth_headers(users["accountant"]))
    assert res.status_code == 200

    res = client.delete(f"{BASE}/drafts/{key}", headers=auth_headers(users["daf"]))
    assert res.status_code == 403
    assert client.get(f"{BASE}/drafts/{key}", headers=auth_headers(users["daf"])).status_code == 200


def test_draft_key_requires_parts(client, users, auth_headers):
    res = client.post(f"{BASE}/drafts/key", json={"facilityId": 1}, headers=auth_headers(users["accountant"]))
    assert res.status_code == 400
    assert set(res.get_json()["details"]) == {"reportingPeriod", "program"}


def test_draft_rejects_bad_quarter(client, users, auth_headers):
    res = client.put(
        f"{BASE}/drafts/k", json={"activities": [], "currentQuarter": "q9"}, headers=auth_headers(users["accountant"]),
    )
    assert res.status_code == 400


def test_ready_requires_seeded_template(client):
    res = client.get("/api/v1/health/ready")
    assert res.status_code == 503
    assert res.get_json()["status"] == "not_ready"
