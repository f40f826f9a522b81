"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 once the activity template is seeded
    GET /api/v1/health/live   — per-dependency status (database, draft store,
                                 activity template, PDF archive)

Both paths are exempt from JWT auth.
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from app.models import db
from app.models.hierarchy import ExecutionActivity
from app.services.ledger.drafts import RedisDraftRepository, get_draft_repository

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _timed(probe) -> dict:
    t0 = time.perf_counter()
    detail = probe()
    result = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    if detail is not None:
        result["detail"] = detail
    return result


def _check_database():
    db.session.execute(db.text("SELECT 1"))


def _check_draft_store():
    repo = get_draft_repository(current_app)
    if not isinstance(repo, RedisDraftRepository):
        return None
    repo.client.ping()
    return None


def _check_template():
    return f"{ExecutionActivity.query.count()} activities"


def _check_pdf_dir():
    path = current_app.config.get("REPORT_PDF_DIR")
    if path and os.path.isdir(path) and not os.access(path, os.W_OK):
        raise OSError(f"{path} is not writable")
    return path


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness: the app can compute ledgers only with a seeded template."""
    seeded = db.session.query(ExecutionActivity.id).first() is not None
    if not seeded:
        return jsonify({"status": "not_ready", "detail": "run flask seed-execution-activities"}), 503
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    probes = [("database", _check_database), ("template", _check_template), ("pdf_archive", _check_pdf_dir)]
    if current_app.config.get("DRAFT_STORE_BACKEND") == "redis":
        probes.insert(1, ("redis", _check_draft_store))
    else:
        checks["redis"] = {"status": "skipped", "detail": "in-memory draft store"}

    for name, probe in probes:
        try:
            checks[name] = _timed(probe)
        except Exception as exc:
            checks[name] = {"status": "error", "detail": str(exc)}
            overall = False
            logger.error("Health check %s failed: %s", name, exc)

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
