"""
Shared pytest fixtures for the Budget Execution Ledger test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - hierarchy: HIV/hospital execution template built in memory (no DB)
    - seeded: HIV/hospital template seeded into the DB
    - users: accountant / daf / dg users
    - auth_headers: bearer-token header factory
    - execution_payload: balanced execution create body
    - draft_report: balanced execution + draft report
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import ROLE_ACCOUNTANT, ROLE_DAF, ROLE_DG, User
from app.services.hierarchy_service import (
    EXECUTION_ACTIVITIES,
    EXECUTION_CATEGORIES,
    EXECUTION_SUB_CATEGORIES,
)
from app.services.ledger.codes import build_activity_code
from app.services.ledger.hierarchy import Activity, Category, SubCategory


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        app.extensions.pop("draft_repository", None)
        yield
        app.extensions.pop("draft_repository", None)
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Hierarchy fixtures ───────────────────────────────────────────────────


def build_hierarchy(project="HIV", facility="hospital"):
    """Execution template as value objects, straight from the seed tables."""
    def _activity(section, sub, name, order, is_total, activity_type, formula):
        return Activity(
            code=build_activity_code(project, facility, section, order, sub),
            name=name,
            section=section,
            sub_category_code=sub,
            display_order=order,
            is_total_row=is_total,
            is_computed=activity_type == "COMPUTED",
            computation_formula=formula,
        )

    rows = [_activity(*row) for row in EXECUTION_ACTIVITIES]
    categories = []
    for code, name, order, is_computed in EXECUTION_CATEGORIES:
        subs = tuple(
            SubCategory(
                code=sub_code,
                name=sub_name,
                display_order=sub_order,
                activities=tuple(a for a in rows if a.sub_category_code == sub_code),
            )
            for cat_code, sub_code, sub_name, sub_order in EXECUTION_SUB_CATEGORIES
            if cat_code == code
        )
        categories.append(Category(
            code=code,
            name=name,
            display_order=order,
            is_computed=is_computed,
            sub_categories=subs,
            activities=tuple(a for a in rows if a.section == code and a.sub_category_code is None),
        ))
    return tuple(categories)


@pytest.fixture()
def hierarchy():
    return build_hierarchy()


@pytest.fixture()
def seeded():
    """Seed the HIV/hospital template and return its hierarchy."""
    from app.services.hierarchy_service import get_hierarchy, seed_execution_activities

    seed_execution_activities(project_types=("HIV",), facility_types=("hospital",))
    _db.session.commit()
    return get_hierarchy("HIV", "hospital")


# ── Users & auth ─────────────────────────────────────────────────────────


@pytest.fixture()
def users():
    """One active user per workflow role."""
    made = {}
    for role in (ROLE_ACCOUNTANT, ROLE_DAF, ROLE_DG):
        u = User(email=f"{role}@facility.test", full_name=f"Test {role.upper()}", role=role, facility_id=1)
        _db.session.add(u)
        made[role] = u
    _db.session.commit()
    return made


@pytest.fixture()
def auth_headers():
    """Factory: auth_headers(user) → {"Authorization": "Bearer ..."}."""
    from app.services.jwt_service import generate_access_token

    def _headers(user, roles=None):
        token = generate_access_token(user.id, roles if roles is not None else [user.role])
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Execution & report fixtures ──────────────────────────────────────────


def balanced_activities(project="HIV", facility="hospital"):
    """Opening 100000; 12000 paid, 8000 partially paid (5000), 5000 unpaid.

    Recomputed: cash at bank 83000, payables 5000 (supervision) + 3000
    (supplies), C = F = G = 75000.
    """
    def _c(section, order, sub=None):
        return build_activity_code(project, facility, section, order, sub)

    return [
        {"code": _c("A", 2), "q1": 100000},
        {"code": _c("B", 1, "B-01"), "q1": 12000, "paymentStatus": "paid", "amountPaid": 12000},
        {"code": _c("B", 2, "B-04"), "q1": 8000, "paymentStatus": "partial", "amountPaid": 5000},
        {"code": _c("B", 1, "B-02"), "q1": 5000, "paymentStatus": "unpaid", "amountPaid": 0},
    ]


@pytest.fixture()
def execution_payload():
    """Factory: execution_payload(**overrides) → create body for tuple 1/1/1."""
    def _payload(activities=None, **overrides):
        body = {
            "projectId": 1,
            "facilityId": 1,
            "reportingPeriodId": 1,
            "projectType": "HIV",
            "facilityType": "hospital",
            "currentQuarter": "q1",
            "formData": {"activities": balanced_activities() if activities is None else activities},
        }
        body.update(overrides)
        return body

    return _payload


@pytest.fixture()
def draft_report(seeded, users, execution_payload):
    """Balanced execution record plus a draft report over the same tuple."""
    from app.services import execution_service, report_workflow

    execution_service.create_execution(execution_payload(), user_id=users[ROLE_ACCOUNTANT].id)
    return report_workflow.create_report(
        {"projectId": 1, "facilityId": 1, "reportingPeriodId": 1}, user_id=users[ROLE_ACCOUNTANT].id,
    )
