"""
Healthcare Budget Execution Ledger
Execution and planning data entered by facility accountants.

Models:
    - ExecutionRecord: quarterly actuals for one (project, facility, reporting period)
    - PlanningRecord: the matching budget plan, captured into report snapshots

``form_data`` keeps the shape the data-entry client posts:
    {"activities": [{"code", "q1", "q2", "q3", "q4", "comment",
                     "paymentStatus", "amountPaid"}, ...]}
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class ExecutionRecord(db.Model):
    __tablename__ = "execution_records"
    __table_args__ = (
        db.UniqueConstraint(
            "project_id", "facility_id", "reporting_period_id", name="uq_execution_tuple",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=False, index=True)
    facility_id = db.Column(db.Integer, nullable=False, index=True)
    reporting_period_id = db.Column(db.Integer, nullable=False, index=True)
    project_type = db.Column(db.String(10), nullable=False, comment="HIV | MAL | TB")
    facility_type = db.Column(db.String(30), nullable=False, comment="hospital | health_center")
    current_quarter = db.Column(db.String(2), nullable=False, default="q1")
    form_data = db.Column(db.JSON, nullable=False, default=dict)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    @property
    def activities(self) -> list:
        return list((self.form_data or {}).get("activities") or [])

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "facility_id": self.facility_id,
            "reporting_period_id": self.reporting_period_id,
            "project_type": self.project_type,
            "facility_type": self.facility_type,
            "current_quarter": self.current_quarter,
            "form_data": self.form_data or {},
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<ExecutionRecord #{self.id} project={self.project_id} "
            f"facility={self.facility_id} period={self.reporting_period_id}>"
        )


class PlanningRecord(db.Model):
    __tablename__ = "planning_records"
    __table_args__ = (
        db.UniqueConstraint(
            "project_id", "facility_id", "reporting_period_id", name="uq_planning_tuple",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=False, index=True)
    facility_id = db.Column(db.Integer, nullable=False, index=True)
    reporting_period_id = db.Column(db.Integer, nullable=False, index=True)
    form_data = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    @property
    def activities(self) -> list:
        return list((self.form_data or {}).get("activities") or [])

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "facility_id": self.facility_id,
            "reporting_period_id": self.reporting_period_id,
            "form_data": self.form_data or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
