"""
Healthcare Budget Execution Ledger
Notification Service.

Creates in-app notifications for the report approval chain.  The workflow
calls the ``notify_*`` helpers after its transaction has committed; they
commit their own rows, log failures and never raise, so a broken
notification cannot undo or block a transition.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import inspect as sa_inspect

from app.models import db
from app.models.auth import ROLE_DAF, ROLE_DG, User
from app.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def broadcast(*, title, recipient_ids, message="", category="report_workflow",
                  severity="info", entity_type="", entity_id=None):
        """
        Send one notification per recipient.

        Returns:
            List of created Notification instances (committed).
        """
        notifications = []
        for recipient_id in dict.fromkeys(recipient_ids):
            notif = Notification(
                recipient_id=recipient_id,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        if notifications:
            db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark one of the recipient's notifications read; None if not theirs."""
        notif = Notification.query.filter_by(id=notification_id, recipient_id=recipient_id).first()
        if notif is None:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count


# ── Report workflow helpers ──────────────────────────────────────────────


def _active_user_ids(role: str) -> list[int]:
    return [
        u.id for u in User.query.filter_by(role=role, is_active=True).order_by(User.id)
    ]


def _safe_broadcast(report, build):
    """Run *build* (recipient lookup + message) and broadcast; never raises.

    Runs after the transition committed, so every query, including the
    recipient lookup, happens inside the guard.
    """
    try:
        return NotificationService.broadcast(
            entity_type="financial_report", entity_id=report.id, **build(),
        )
    except Exception:
        db.session.rollback()
        identity = sa_inspect(report).identity
        logger.exception(
            "Notification failed",
            extra={"report_id": identity[0] if identity else None},
        )
        return []


def notify_daf_users(report):
    """Submission: every active DAF user has a report to review."""
    return _safe_broadcast(report, lambda: {
        "recipient_ids": _active_user_ids(ROLE_DAF),
        "title": f"Report #{report.id} awaiting DAF approval",
        "message": f"{report.title} (version {report.version}) was submitted for review.",
    })


def notify_dg_users(report):
    """DAF approval: every active DG user has a report to review."""
    return _safe_broadcast(report, lambda: {
        "recipient_ids": _active_user_ids(ROLE_DG),
        "title": f"Report #{report.id} awaiting DG approval",
        "message": f"{report.title} was approved by the DAF.",
    })


def notify_report_creator(report, title: str, message: str = "", severity: str = "info"):
    """Rejection or final approval: tell whoever submitted the report."""
    def _build():
        recipient = report.submitted_by or report.created_by
        return {
            "recipient_ids": [recipient] if recipient is not None else [],
            "title": title,
            "message": message,
            "severity": severity,
        }

    return _safe_broadcast(report, _build)
