"""
Rate limiting configuration.

Applies per-blueprint limits with Flask-Limiter. The Limiter instance is
created in sitecms/__init__.py with no default limits; this module attaches
limits by route category:

    auth          AUTH_RATE_LIMIT (default 10/minute), brute-force protection
    other API     API_RATE_LIMIT  (default 300/minute)
    health        exempt

Rate limiting is skipped in testing mode and when RATELIMIT_ENABLED is off.
"""

import logging

logger = logging.getLogger(__name__)

API_BLUEPRINTS = (
    "sites", "users", "content_types", "terms", "posts",
    "menus", "media", "settings", "activity",
)


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    auth_limit = app.config.get("AUTH_RATE_LIMIT", "10/minute")
    api_limit = app.config.get("API_RATE_LIMIT", "300/minute")

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(auth_limit)(bp)

    for bp_name in API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(api_limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: auth=%s api=%s", auth_limit, api_limit)
