"""
Auth Models — users and their workflow roles.

Authentication itself happens upstream (bearer JWT, see app/middleware/jwt_auth.py).
This table only records who may act in the report approval chain and who
should be notified at each stage.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ACCOUNTANT = "accountant"
ROLE_DAF = "daf"
ROLE_DG = "dg"
ROLE_ADMIN = "admin"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(
        db.String(30), nullable=False, default=ROLE_ACCOUNTANT,
        comment="accountant | daf | dg | admin",
    )
    facility_id = db.Column(db.Integer, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "facility_id": self.facility_id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
