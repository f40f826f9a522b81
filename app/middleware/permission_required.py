"""
Role Decorators — JWT-aware role checks for route protection.

Usage:
    @bp.route("/execution", methods=["POST"])
    @require_auth
    @require_role("accountant", "admin")
    def create_execution():
        ...

Workflow actions check roles inside the service layer so that the ordering
of validation, role and state checks stays in one place; these decorators
guard the plain data-entry routes.
"""

import functools
import logging

from flask import g

from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_role(*roles: str):
    """
    Decorator: require the JWT user to hold at least ONE of *roles*.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_roles = set(getattr(g, "jwt_roles", None) or [])
            if not user_roles.intersection(roles):
                logger.warning(
                    "User %s denied: needs any of %s on %s",
                    getattr(g, "jwt_user_id", None), roles, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "Permission denied", details={"required_any": list(roles)},
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
