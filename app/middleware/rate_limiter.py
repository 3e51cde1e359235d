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

PUBLIC_WRITE_LIMIT = "60/minute"
PUBLIC_READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Cart, checkout, waitlist:   60/minute  (customer-facing mutations)
        - Catalogue / account reads:  200/minute
        - Webhook, health, admin:     exempt (signed / API-key authenticated)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("cart", "checkout", "waitlist"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(PUBLIC_WRITE_LIMIT)(bp)

    for bp_name in ("workshop", "account"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(PUBLIC_READ_LIMIT)(bp)

    # The gateway retries aggressively; never throttle its deliveries.
    for bp_name in ("webhook", "health_bp", "admin"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — public writes: %s, reads: %s",
        PUBLIC_WRITE_LIMIT, PUBLIC_READ_LIMIT,
    )
