"""
Healthcare Budget Execution Ledger
Financial report workflow models.

Models:
    - FinancialReport: the report moving through accountant → DAF → DG approval
    - FinancialReportVersion: immutable snapshot per submission
    - FinancialReportWorkflowLog: append-only audit trail, one row per transition
    - PeriodLock: hold on a (reporting period, project, facility) tuple

Status machine (see app/services/report_workflow.py):

    draft ──submit──▶ pending_daf_approval ──daf_approve──▶ approved_by_daf ──dg_approve──▶ fully_approved
                          │                                      │
                      daf_reject                              dg_reject
                          ▼                                      ▼
                    rejected_by_daf ──submit──▶ …         rejected_by_dg ──submit──▶ …
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_DRAFT = "draft"
STATUS_PENDING_DAF = "pending_daf_approval"
STATUS_APPROVED_BY_DAF = "approved_by_daf"
STATUS_REJECTED_BY_DAF = "rejected_by_daf"
STATUS_REJECTED_BY_DG = "rejected_by_dg"
STATUS_FULLY_APPROVED = "fully_approved"

REPORT_STATUSES = frozenset({
    STATUS_DRAFT,
    STATUS_PENDING_DAF,
    STATUS_APPROVED_BY_DAF,
    STATUS_REJECTED_BY_DAF,
    STATUS_REJECTED_BY_DG,
    STATUS_FULLY_APPROVED,
})

WORKFLOW_LOG_ACTIONS = frozenset({
    "submitted", "daf_approved", "daf_rejected", "dg_approved", "dg_rejected",
})


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class FinancialReport(db.Model):
    """
    A facility's financial statement for one reporting period.

    Business rules:
    - ``status`` changes only through report_workflow transitions.
    - ``locked`` is True while awaiting approval and forever once fully_approved.
    - ``row_version`` is the optimistic-lock counter: two concurrent
      transitions on the same row cannot both commit.
    """

    __tablename__ = "financial_reports"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    project_id = db.Column(db.Integer, nullable=False, index=True)
    facility_id = db.Column(db.Integer, nullable=False, index=True)
    reporting_period_id = db.Column(db.Integer, nullable=False, index=True)
    project_type = db.Column(db.String(10), nullable=False, default="HIV")
    facility_type = db.Column(db.String(30), nullable=False, default="hospital")
    statement_code = db.Column(db.String(40), nullable=False, default="ASSETS_LIAB")

    status = db.Column(
        db.String(30), nullable=False, default=STATUS_DRAFT, index=True,
        comment="draft | pending_daf_approval | approved_by_daf | rejected_by_daf | rejected_by_dg | fully_approved",
    )
    locked = db.Column(db.Boolean, nullable=False, default=False)
    version = db.Column(db.String(10), nullable=True, comment="Latest version label, e.g. 1.0")
    row_version = db.Column(db.Integer, nullable=False, default=1)

    # Snapshot captured at submission
    report_data = db.Column(db.JSON, nullable=True)
    snapshot_checksum = db.Column(db.String(64), nullable=True, comment="SHA-256 hex of canonical snapshot")
    snapshot_timestamp = db.Column(db.DateTime(timezone=True), nullable=True)

    # Stage actors
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    daf_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    daf_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    daf_comment = db.Column(db.Text, nullable=True)
    dg_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    dg_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dg_comment = db.Column(db.Text, nullable=True)
    final_pdf_url = db.Column(db.String(500), nullable=True)

    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    versions = db.relationship(
        "FinancialReportVersion", back_populates="report", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    workflow_logs = db.relationship(
        "FinancialReportWorkflowLog", back_populates="report", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def to_dict(self, include_snapshot: bool = False) -> dict:
        d = {
            "id": self.id,
            "title": self.title,
            "project_id": self.project_id,
            "facility_id": self.facility_id,
            "reporting_period_id": self.reporting_period_id,
            "project_type": self.project_type,
            "facility_type": self.facility_type,
            "statement_code": self.statement_code,
            "status": self.status,
            "locked": self.locked,
            "version": self.version,
            "snapshot_checksum": self.snapshot_checksum,
            "snapshot_timestamp": _iso(self.snapshot_timestamp),
            "created_by": self.created_by,
            "submitted_by": self.submitted_by,
            "submitted_at": _iso(self.submitted_at),
            "daf_id": self.daf_id,
            "daf_approved_at": _iso(self.daf_approved_at),
            "daf_comment": self.daf_comment,
            "dg_id": self.dg_id,
            "dg_approved_at": _iso(self.dg_approved_at),
            "dg_comment": self.dg_comment,
            "final_pdf_url": self.final_pdf_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_snapshot:
            d["report_data"] = self.report_data
        return d

    def __repr__(self):
        return f"<FinancialReport #{self.id} {self.status}>"


class FinancialReportVersion(db.Model):
    """Immutable copy of the snapshot taken at each submission."""

    __tablename__ = "financial_report_versions"
    __table_args__ = (
        db.UniqueConstraint("report_id", "version", name="uq_report_version"),
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("financial_reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    version = db.Column(db.String(10), nullable=False)
    snapshot_data = db.Column(db.JSON, nullable=False)
    snapshot_checksum = db.Column(db.String(64), nullable=False)
    change_reason = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    report = db.relationship("FinancialReport", back_populates="versions")

    def to_dict(self, include_snapshot: bool = False) -> dict:
        d = {
            "id": self.id,
            "report_id": self.report_id,
            "version": self.version,
            "snapshot_checksum": self.snapshot_checksum,
            "change_reason": self.change_reason,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }
        if include_snapshot:
            d["snapshot_data"] = self.snapshot_data
        return d

    def __repr__(self):
        return f"<FinancialReportVersion report={self.report_id} v{self.version}>"


class FinancialReportWorkflowLog(db.Model):
    """Append-only: rows are never updated or deleted."""

    __tablename__ = "financial_report_workflow_logs"
    __table_args__ = (
        db.Index("ix_report_workflow_log_report_ts", "report_id", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("financial_reports.id", ondelete="CASCADE"),
        nullable=False,
    )
    action = db.Column(
        db.String(20), nullable=False,
        comment="submitted | daf_approved | daf_rejected | dg_approved | dg_rejected",
    )
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    report = db.relationship("FinancialReport", back_populates="workflow_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "report_id": self.report_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "comment": self.comment,
            "timestamp": _iso(self.timestamp),
        }

    def __repr__(self):
        return f"<FinancialReportWorkflowLog #{self.id} report={self.report_id} {self.action}>"


class PeriodLock(db.Model):
    __tablename__ = "period_locks"
    __table_args__ = (
        db.UniqueConstraint(
            "reporting_period_id", "project_id", "facility_id", name="uq_period_lock_tuple",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    reporting_period_id = db.Column(db.Integer, nullable=False)
    project_id = db.Column(db.Integer, nullable=False)
    facility_id = db.Column(db.Integer, nullable=False)
    is_locked = db.Column(db.Boolean, nullable=False, default=True)
    locked_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    unlocked_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    unlocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reporting_period_id": self.reporting_period_id,
            "project_id": self.project_id,
            "facility_id": self.facility_id,
            "is_locked": self.is_locked,
            "locked_by": self.locked_by,
            "locked_at": _iso(self.locked_at),
            "reason": self.reason,
            "unlocked_by": self.unlocked_by,
            "unlocked_at": _iso(self.unlocked_at),
        }
