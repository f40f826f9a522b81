"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_roles

Requests without a valid token leave ``g.jwt_user_id`` as None; routes that
need an actor are wrapped with ``require_auth``.
"""

import functools
import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        # Clear JWT context
        g.jwt_user_id = None
        g.jwt_roles = []

        # Skip non-API routes and unauthenticated endpoints
        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = int(payload["sub"])
            g.jwt_roles = list(payload.get("roles", []))
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            logger.warning("Invalid access token on %s", path)


def require_auth(f):
    """Decorator: reject the request with 401 unless a JWT user is present."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "jwt_user_id", None) is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)
    return decorated
