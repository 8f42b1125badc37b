"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in compliance_audit/__init__.py with no
default limits; this module applies granular limits per route category.

Usage:
    from compliance_audit.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Scanner wrappers post results in bursts at the end of a crawl
INGEST_LIMIT = "120/minute"
REVIEW_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Audit trail (result ingestion): 120/minute
        - Review queue (dashboard reads, decisions): 200/minute
        - Health check: exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("audit_trail")
    if bp:
        limiter.limit(INGEST_LIMIT)(bp)

    bp = app.blueprints.get("review_queue")
    if bp:
        limiter.limit(REVIEW_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — audit_trail: %s, review_queue: %s",
        INGEST_LIMIT, REVIEW_LIMIT,
    )
