"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
ENTRY_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Report workflow:  60/minute  (state changes, PDF generation)
        - Execution entry:  300/minute (draft auto-save + recalculation)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("financial_reports")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("execution")
    if bp:
        limiter.limit(ENTRY_LIMIT)(bp)

    app.logger.info(
        "Rate limiter configured — workflow: %s, execution entry: %s", WRITE_LIMIT, ENTRY_LIMIT,
    )
