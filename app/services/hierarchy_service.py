"""
Execution hierarchy service.

Loads the Category → SubCategory → Activity template for a project and
facility type from the database and hands it to the ledger engine as
frozen value objects.  Also seeds the template for every program.
"""

import logging

from app.models import db
from app.models.hierarchy import (
    FACILITY_TYPES,
    PROJECT_TYPES,
    ExecutionActivity,
    ExecutionCategory,
    ExecutionSubCategory,
)
from app.core.exceptions import NotFoundError, ValidationError
from app.services.ledger.codes import build_activity_code
from app.services.ledger.hierarchy import Activity, Category, SubCategory

logger = logging.getLogger(__name__)


def normalize_scope(project_type: str, facility_type: str) -> tuple[str, str]:
    project = (project_type or "").strip().upper()
    if project == "MALARIA":
        project = "MAL"
    facility = (facility_type or "").strip().lower().replace(" ", "_")
    errors = {}
    if project not in PROJECT_TYPES:
        errors["projectType"] = f"must be one of {', '.join(PROJECT_TYPES)}"
    if facility not in FACILITY_TYPES:
        errors["facilityType"] = f"must be one of {', '.join(FACILITY_TYPES)}"
    if errors:
        raise ValidationError("Invalid hierarchy scope", details=errors)
    return project, facility


def _to_activity(row: ExecutionActivity) -> Activity:
    return Activity(
        code=row.code,
        name=row.name,
        section=row.section,
        sub_category_code=row.sub_category_code,
        display_order=row.display_order,
        is_total_row=row.is_total_row,
        is_computed=row.is_computed,
        computation_formula=row.computation_formula,
    )


def get_hierarchy(project_type: str, facility_type: str) -> tuple[Category, ...]:
    """Return the ordered activity hierarchy for one project/facility type.

    Raises:
        ValidationError: unknown project or facility type.
        NotFoundError: nothing seeded for the scope.
    """
    project, facility = normalize_scope(project_type, facility_type)

    categories = (
        ExecutionCategory.query
        .filter_by(project_type=project, facility_type=facility)
        .order_by(ExecutionCategory.display_order)
        .all()
    )
    if not categories:
        raise NotFoundError(resource="ExecutionHierarchy", resource_id=f"{project}/{facility}")

    subs_by_cat: dict[int, list[ExecutionSubCategory]] = {}
    for sub in (
        ExecutionSubCategory.query
        .filter_by(project_type=project, facility_type=facility)
        .order_by(ExecutionSubCategory.display_order)
    ):
        subs_by_cat.setdefault(sub.category_id, []).append(sub)

    acts_by_cat: dict[int, list[ExecutionActivity]] = {}
    acts_by_sub: dict[int, list[ExecutionActivity]] = {}
    for act in (
        ExecutionActivity.query
        .filter_by(project_type=project, facility_type=facility)
        .order_by(ExecutionActivity.display_order, ExecutionActivity.id)
    ):
        if act.sub_category_id:
            acts_by_sub.setdefault(act.sub_category_id, []).append(act)
        else:
            acts_by_cat.setdefault(act.category_id, []).append(act)

    hierarchy = []
    for cat in categories:
        sub_categories = tuple(
            SubCategory(
                code=sub.code,
                name=sub.name,
                display_order=sub.display_order,
                activities=tuple(_to_activity(a) for a in acts_by_sub.get(sub.id, [])),
            )
            for sub in subs_by_cat.get(cat.id, [])
        )
        hierarchy.append(Category(
            code=cat.code,
            name=cat.name,
            display_order=cat.display_order,
            is_computed=cat.is_computed,
            sub_categories=sub_categories,
            activities=tuple(_to_activity(a) for a in acts_by_cat.get(cat.id, [])),
        ))
    return tuple(hierarchy)


# ── Seeding ──────────────────────────────────────────────────────────────

EXECUTION_CATEGORIES = (
    ("A", "A. Receipts", 1, False),
    ("B", "B. Expenditures", 2, False),
    ("C", "C. SURPLUS / DEFICIT", 3, True),
    ("D", "D. Financial Assets", 4, False),
    ("E", "E. Financial Liabilities", 5, False),
    ("F", "F. Net Financial Assets", 6, True),
    ("G", "G. Closing Balance", 7, False),
)

EXECUTION_SUB_CATEGORIES = (
    ("B", "B-01", "Human Resources + Bonus", 1),
    ("B", "B-02", "Monitoring & Evaluation", 2),
    ("B", "B-03", "Living Support to Clients/Target Populations", 3),
    ("B", "B-04", "Overheads (Use of goods & services)", 4),
    ("B", "B-05", "Transfer to other reporting entities", 5),
)

# (section, sub-category, name, order, is_total_row, activity_type, formula)
EXECUTION_ACTIVITIES = (
    ("A", None, "Other Incomes", 1, False, "REVENUE", None),
    ("A", None, "Transfers from SPIU/RBC", 2, False, "REVENUE", None),
    ("A", None, "A. Receipts", 3, True, "REVENUE_TOTAL", None),
    ("B", "B-01", "Laboratory Technician", 1, False, "EXPENSE", None),
    ("B", "B-01", "Nurse", 2, False, "EXPENSE", None),
    ("B", "B-02", "Supervision CHWs", 1, False, "EXPENSE", None),
    ("B", "B-02", "Support group meetings", 2, False, "EXPENSE", None),
    ("B", "B-03", "Sample transport", 1, False, "EXPENSE", None),
    ("B", "B-03", "Home visit lost to follow up", 2, False, "EXPENSE", None),
    ("B", "B-03", "Transport and travel for survey/surveillance", 3, False, "EXPENSE", None),
    ("B", "B-04", "Infrastructure support", 1, False, "EXPENSE", None),
    ("B", "B-04", "Office supplies", 2, False, "EXPENSE", None),
    ("B", "B-04", "Transport and travel (Reporting)", 3, False, "EXPENSE", None),
    ("B", "B-04", "Bank charges", 4, False, "EXPENSE", None),
    ("B", "B-05", "Transfer to RBC", 1, False, "EXPENSE", None),
    ("B", None, "B. Expenditures", 99, True, "EXPENSE_TOTAL", None),
    ("D", None, "Cash at bank", 1, False, "ASSET", None),
    ("D", None, "Petty cash", 2, False, "ASSET", None),
    ("D", None, "Receivables (VAT refund)", 3, False, "ASSET", None),
    ("D", None, "Other Receivables", 4, False, "ASSET", None),
    ("D", None, "D. Financial Assets", 5, True, "ASSET_TOTAL", None),
    ("E", None, "payable 1: salaries", 1, False, "LIABILITY", None),
    ("E", None, "payable 2: supervision", 2, False, "LIABILITY", None),
    ("E", None, "payable 3: meetings", 3, False, "LIABILITY", None),
    ("E", None, "payable 4: sample transport", 4, False, "LIABILITY", None),
    ("E", None, "payable 5: home visits", 5, False, "LIABILITY", None),
    ("E", None, "payable 6: travel survellance", 6, False, "LIABILITY", None),
    ("E", None, "payable 7: infrastructure support", 7, False, "LIABILITY", None),
    ("E", None, "payable 8: supplies", 8, False, "LIABILITY", None),
    ("E", None, "payable 9: transport reporting", 9, False, "LIABILITY", None),
    ("E", None, "payable 10: bank charges", 10, False, "LIABILITY", None),
    ("E", None, "payable 11: VAT refund", 11, False, "LIABILITY", None),
    ("E", None, "E. Financial Liabilities", 12, True, "LIABILITY_TOTAL", None),
    ("F", None, "F. Net Financial Assets", 1, True, "COMPUTED", "D - E"),
    ("G", None, "Accumulated Surplus/Deficit", 1, False, "EQUITY", None),
    ("G", None, "Prior Year Adjustment", 2, False, "EQUITY", None),
    ("G", None, "Surplus/Deficit of the Period", 3, False, "COMPUTED", "A - B"),
    ("G", None, "G. Closing Balance", 4, True, "EQUITY_TOTAL", None),
)


def _seed_scope(project: str, facility: str) -> int:
    created = 0
    categories = {}
    for code, name, order, is_computed in EXECUTION_CATEGORIES:
        cat = ExecutionCategory.query.filter_by(
            project_type=project, facility_type=facility, code=code,
        ).first()
        if cat is None:
            cat = ExecutionCategory(
                project_type=project, facility_type=facility, code=code,
                name=name, display_order=order, is_computed=is_computed,
            )
            db.session.add(cat)
            created += 1
        categories[code] = cat
    db.session.flush()

    sub_categories = {}
    for cat_code, code, name, order in EXECUTION_SUB_CATEGORIES:
        sub = ExecutionSubCategory.query.filter_by(
            project_type=project, facility_type=facility, code=code,
        ).first()
        if sub is None:
            sub = ExecutionSubCategory(
                category_id=categories[cat_code].id, project_type=project,
                facility_type=facility, code=code, name=name, display_order=order,
            )
            db.session.add(sub)
            created += 1
        sub_categories[code] = sub
    db.session.flush()

    for section, sub_code, name, order, is_total, activity_type, formula in EXECUTION_ACTIVITIES:
        code = build_activity_code(project, facility, section, order, sub_code)
        if ExecutionActivity.query.filter_by(code=code).first():
            continue
        db.session.add(ExecutionActivity(
            category_id=categories[section].id,
            sub_category_id=sub_categories[sub_code].id if sub_code else None,
            project_type=project,
            facility_type=facility,
            code=code,
            name=name,
            section=section,
            sub_category_code=sub_code,
            display_order=order,
            is_total_row=is_total,
            is_computed=activity_type == "COMPUTED",
            computation_formula=formula,
            activity_type=activity_type,
        ))
        created += 1
    return created


def seed_execution_activities(project_types=PROJECT_TYPES, facility_types=FACILITY_TYPES) -> int:
    """
    Insert the execution template for every program and facility type.
    Safe to run multiple times — existing rows (by code) are skipped.
    """
    created = 0
    for project in project_types:
        for facility in facility_types:
            created += _seed_scope(project, facility)

    if created > 0:
        db.session.flush()
        logger.info("Seeded %d execution hierarchy rows", created)

    return created
