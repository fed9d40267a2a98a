"""
Permission Decorators — route protection against the resolved PermissionSet.

Usage:
    @bp.route("/api/v1/posts", methods=["POST"])
    @require_permission("create_posts")
    def create_post():
        ...  # g.site and g.permissions are set

    @bp.route("/api/v1/users", methods=["GET"])
    @require_global_permission("manage_users")
    def list_users():
        ...

A missing principal is 401. A missing capability is 403 naming the
capability that was required, and nothing else.
"""

import functools
import logging

from flask import g

from sitecms.core.exceptions import ValidationError
from sitecms.services.permission_service import resolve, resolve_global
from sitecms.tenant import get_registry
from sitecms.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _denied(permission, where):
    principal = g.principal
    logger.warning(
        "User %s denied: missing permission '%s' on %s",
        principal.user_id, permission, where,
    )
    return api_error(E.FORBIDDEN, "Permission denied", status=403, details={"required": permission})


def _unauthenticated():
    return api_error(E.UNAUTHORIZED, "Authentication required", status=401)


def current_site():
    """Resolve ``g.site_id`` through the registry into ``g.site`` (cached per request)."""
    if g.get("site") is None:
        if g.get("site_id") is None:
            raise ValidationError("No site selected; send X-Site-ID", field="X-Site-ID")
        g.site = get_registry().resolve_site(g.site_id)
    return g.site


def require_auth(f):
    """Decorator: any authenticated principal."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if g.get("principal") is None:
            return _unauthenticated()
        return f(*args, **kwargs)
    return decorated


def require_permission(permission: str):
    """Decorator: *permission* on the request's site.

    Sets ``g.site`` and ``g.permissions`` for the view.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if g.get("principal") is None:
                return _unauthenticated()
            site = current_site()
            permissions = resolve(g.principal, site.id)
            if not permissions.has(permission):
                return _denied(permission, f.__name__)
            g.permissions = permissions
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_global_permission(permission: str):
    """Decorator: *permission* for site-independent administration."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if g.get("principal") is None:
                return _unauthenticated()
            permissions = resolve_global(g.principal)
            if not permissions.has(permission):
                return _denied(permission, f.__name__)
            g.permissions = permissions
            return f(*args, **kwargs)
        return decorated
    return decorator
