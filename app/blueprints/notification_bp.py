"""Notification inbox blueprint.

Endpoints (all scoped to the authenticated user):
  GET    /api/v1/notifications                 ?unreadOnly=true&limit=&offset=
  GET    /api/v1/notifications/unread-count
  PATCH  /api/v1/notifications/<id>/read
  POST   /api/v1/notifications/mark-all-read
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.middleware.jwt_auth import require_auth
from app.services.notification import NotificationService
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@require_auth
def list_notifications():
    unread_only = request.args.get("unreadOnly", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_recipient(
        g.jwt_user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@notification_bp.route("/unread-count", methods=["GET"])
@require_auth
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.jwt_user_id)}), 200


@notification_bp.route("/<int:notification_id>/read", methods=["PATCH"])
@require_auth
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.jwt_user_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/mark-all-read", methods=["POST"])
@require_auth
def mark_all_read():
    count = NotificationService.mark_all_read(g.jwt_user_id)
    logger.info("Notifications marked read", extra={"user_id": g.jwt_user_id, "count": count})
    return jsonify({"marked_read": count}), 200
