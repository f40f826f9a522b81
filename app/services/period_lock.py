"""
Period locks — freeze execution entry for a (reporting period, project,
facility) tuple while its financial report is awaiting or past approval.

Callers own the transaction: these helpers add/modify rows and flush,
the workflow service commits together with the status change.
"""

import logging
from datetime import datetime, timezone

from app.models import db
from app.models.financial_report import PeriodLock

logger = logging.getLogger(__name__)


def _get(reporting_period_id, project_id, facility_id):
    return PeriodLock.query.filter_by(
        reporting_period_id=reporting_period_id,
        project_id=project_id,
        facility_id=facility_id,
    ).first()


def is_period_locked(reporting_period_id, project_id, facility_id) -> bool:
    lock = _get(reporting_period_id, project_id, facility_id)
    return bool(lock and lock.is_locked)


def lock_period(reporting_period_id, project_id, facility_id, user_id=None, reason=None) -> PeriodLock:
    lock = _get(reporting_period_id, project_id, facility_id)
    if lock is None:
        lock = PeriodLock(
            reporting_period_id=reporting_period_id,
            project_id=project_id,
            facility_id=facility_id,
        )
        db.session.add(lock)
    lock.is_locked = True
    lock.locked_by = user_id
    lock.locked_at = datetime.now(timezone.utc)
    lock.reason = reason
    lock.unlocked_by = None
    lock.unlocked_at = None
    db.session.flush()
    logger.info(
        "Period locked",
        extra={
            "reporting_period_id": reporting_period_id,
            "project_id": project_id,
            "facility_id": facility_id,
            "user_id": user_id,
        },
    )
    return lock


def unlock_period(reporting_period_id, project_id, facility_id, user_id=None, reason=None) -> PeriodLock | None:
    """Release the lock; returns None when the tuple was never locked."""
    lock = _get(reporting_period_id, project_id, facility_id)
    if lock is None:
        return None
    lock.is_locked = False
    lock.unlocked_by = user_id
    lock.unlocked_at = datetime.now(timezone.utc)
    if reason:
        lock.reason = reason
    db.session.flush()
    logger.info(
        "Period unlocked",
        extra={
            "reporting_period_id": reporting_period_id,
            "project_id": project_id,
            "facility_id": facility_id,
            "user_id": user_id,
        },
    )
    return lock
