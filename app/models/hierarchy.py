"""
Healthcare Budget Execution Ledger
Activity hierarchy models.

Models:
    - ExecutionCategory: one row per section letter (A..G) and project/facility type
    - ExecutionSubCategory: expenditure groupings (B-01 .. B-05)
    - ExecutionActivity: leaf, total and computed rows of the execution template

Reference data: seeded once (``flask seed-execution-activities``) and read by
the ledger engine, never written at runtime.
"""

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_TYPES = ("HIV", "MAL", "TB")
FACILITY_TYPES = ("hospital", "health_center")


class ExecutionCategory(db.Model):
    __tablename__ = "execution_categories"
    __table_args__ = (
        db.UniqueConstraint("project_type", "facility_type", "code", name="uq_exec_category"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_type = db.Column(db.String(10), nullable=False, index=True)
    facility_type = db.Column(db.String(30), nullable=False, index=True)
    code = db.Column(db.String(1), nullable=False, comment="Section letter A..G")
    name = db.Column(db.String(200), nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_computed = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "project_type": self.project_type,
            "facility_type": self.facility_type,
            "code": self.code,
            "name": self.name,
            "display_order": self.display_order,
            "is_computed": self.is_computed,
        }


class ExecutionSubCategory(db.Model):
    __tablename__ = "execution_sub_categories"
    __table_args__ = (
        db.UniqueConstraint("project_type", "facility_type", "code", name="uq_exec_sub_category"),
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("execution_categories.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_type = db.Column(db.String(10), nullable=False)
    facility_type = db.Column(db.String(30), nullable=False)
    code = db.Column(db.String(10), nullable=False, comment="B-01 .. B-05")
    name = db.Column(db.String(200), nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "code": self.code,
            "name": self.name,
            "display_order": self.display_order,
        }


class ExecutionActivity(db.Model):
    __tablename__ = "execution_activities"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("execution_categories.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sub_category_id = db.Column(
        db.Integer, db.ForeignKey("execution_sub_categories.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    project_type = db.Column(db.String(10), nullable=False, index=True)
    facility_type = db.Column(db.String(30), nullable=False, index=True)
    code = db.Column(
        db.String(80), unique=True, nullable=False,
        comment="PROJECT_EXEC_FACILITY_SECTION[_SUB]_ORDER, e.g. HIV_EXEC_HOSPITAL_B_B-04_1",
    )
    name = db.Column(db.String(300), nullable=False)
    section = db.Column(db.String(1), nullable=False)
    sub_category_code = db.Column(db.String(10), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_total_row = db.Column(db.Boolean, nullable=False, default=False)
    is_computed = db.Column(db.Boolean, nullable=False, default=False)
    computation_formula = db.Column(db.String(20), nullable=True, comment="A-B | D-E")
    activity_type = db.Column(db.String(30), nullable=True, comment="REVENUE | EXPENSE | ASSET | ...")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "section": self.section,
            "sub_category_code": self.sub_category_code,
            "display_order": self.display_order,
            "is_total_row": self.is_total_row,
            "is_computed": self.is_computed,
            "computation_formula": self.computation_formula,
            "activity_type": self.activity_type,
        }

    def __repr__(self):
        return f"<ExecutionActivity {self.code}>"
