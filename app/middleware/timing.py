"""
Request timing middleware.

Assigns each request an id (honouring an inbound X-Request-ID), echoes it and
the duration on the response, and logs API writes so every ledger mutation
leaves one access line.  Slow requests are logged at WARNING.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000
_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def init_request_timing(app: Flask):
    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if not request.path.startswith("/api/v1/") or request.path.startswith("/api/v1/health"):
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 1),
        }
        if duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request %s %s", request.method, request.path, extra=extra)
        elif request.method in _WRITE_METHODS or response.status_code >= 500:
            logger.info("%s %s -> %d", request.method, request.path, response.status_code, extra=extra)
        return response
