"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in fms/__init__.py with no default limits;
this module applies limits per route category.

Usage:
    from fms.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprints that mutate project state
WRITE_BLUEPRINTS = ("projects", "objections", "templates")

# Read-mostly blueprints
READ_BLUEPRINTS = ("score_logs",)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP), configurable:
        - Project / objection / template routes: FMS_WRITE_RATE_LIMIT
        - Score-log reporting routes:            FMS_READ_RATE_LIMIT
        - Health check:                          exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("FMS_WRITE_RATE_LIMIT", "60/minute")
    read_limit = app.config.get("FMS_READ_RATE_LIMIT", "200/minute")

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(read_limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — write: %s, read: %s", write_limit, read_limit,
    )
