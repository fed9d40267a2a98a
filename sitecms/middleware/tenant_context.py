"""
Tenant Context Middleware — picks the site a request operates on.

  X-Site-ID header  →  that site
  otherwise         →  the principal's current site (token claim / key binding)

Only the id shape is checked here (malformed → 400). Whether the site
exists and is active is decided by the store registry when a protected
route resolves it; there is no fallback to a default site.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  permission decorators  →  route
"""

import logging

from flask import g, request

from sitecms.core.exceptions import ValidationError
from sitecms.utils.errors import E, api_error
from sitecms.utils.helpers import parse_id

logger = logging.getLogger(__name__)

TENANT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
    "/static/",
)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.site_id = None
        g.site = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        header = request.headers.get("X-Site-ID")
        if header is not None:
            try:
                g.site_id = parse_id(header, "X-Site-ID")
            except ValidationError as exc:
                logger.info("Malformed X-Site-ID %r on %s", header, request.path)
                return api_error(E.VALIDATION_ERROR, str(exc), status=400, field="X-Site-ID")
            return None

        principal = getattr(g, "principal", None)
        if principal is not None:
            g.site_id = principal.site_id
        return None

    logger.info("Tenant context middleware installed")
