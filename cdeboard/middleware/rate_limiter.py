"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in cdeboard/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from cdeboard.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

RATE_LIMITS = {
    "compliance": "20/minute",
    "decision_support": "120/minute",
    "audit": "120/minute",
}


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Compliance runs:   20/minute (each run writes a check + snapshot)
        - Decision support: 120/minute (read-heavy dashboard views)
        - Audit queries:    120/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name, limit in RATE_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: compliance: %s, decision_support: %s, audit: %s",
        RATE_LIMITS["compliance"], RATE_LIMITS["decision_support"], RATE_LIMITS["audit"],
    )
