"""
API Key Service — long-lived credentials for integrations.

A key carries its own permission map and may be bound to one site. Keys
cannot grant more than their creator holds where the key will be used.
"""

import logging
from datetime import datetime, timezone

from sitecms.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from sitecms.core.principal import Principal
from sitecms.models import db
from sitecms.models.auth import ApiKey
from sitecms.services.audit_service import record_activity
from sitecms.services.permission_service import PERMISSIONS, resolve, resolve_global
from sitecms.tenant import get_registry
from sitecms.utils.crypto import digest_api_key, generate_api_key
from sitecms.utils.helpers import parse_datetime, parse_optional_id, require_text

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def list_api_keys(principal):
    q = ApiKey.query
    if not principal.is_super_admin:
        q = q.filter_by(user_id=principal.user_id)
    return q.order_by(ApiKey.id).all()


def create_api_key(principal, data):
    """Create a key for *principal*. Returns ``(ApiKey, raw_key)``; the raw key is shown once."""
    if principal.auth_method != "token":
        raise ForbiddenError("create_api_key", "API keys cannot create API keys")
    name = require_text(data, "name", 100)
    site_id = parse_optional_id(data.get("site_id"), "site_id")
    if site_id is not None:
        get_registry().resolve_site(site_id)

    requested = data.get("permissions") or {}
    if not isinstance(requested, dict) or not all(isinstance(v, bool) for v in requested.values()):
        raise ValidationError("permissions must be an object of name: bool", field="permissions")
    unknown = sorted(set(requested) - set(PERMISSIONS))
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}", field="permissions")

    held = resolve(principal, site_id) if site_id is not None else resolve_global(principal)
    for permission, enabled in requested.items():
        if enabled and not held.has(permission):
            raise ForbiddenError(permission)

    expires_at = parse_datetime(data.get("expires_at"), "expires_at")
    if expires_at is not None and expires_at <= _now():
        raise ValidationError("expires_at must be in the future", field="expires_at")

    raw = generate_api_key()
    key = ApiKey(
        name=name,
        key_prefix=raw[:12],
        key_hash=digest_api_key(raw),
        user_id=principal.user_id,
        site_id=site_id,
        permissions=dict(requested),
        expires_at=expires_at,
    )
    db.session.add(key)
    db.session.flush()
    record_activity(
        "api_key_created", "api_key", entity_id=key.id, entity_name=key.name,
        changes_after={"site_id": site_id, "permissions": key.permissions},
    )
    return key, raw


def revoke_api_key(principal, key_id):
    key = db.session.get(ApiKey, key_id)
    if key is None or (key.user_id != principal.user_id and not principal.is_super_admin):
        raise NotFoundError("ApiKey", key_id)
    key.is_active = False
    record_activity("api_key_revoked", "api_key", entity_id=key.id, entity_name=key.name)
    return key


def authenticate_api_key(raw_key) -> Principal | None:
    """Principal for a presented key, or None when it is unknown, inactive or expired."""
    if not raw_key:
        return None
    key = ApiKey.query.filter_by(key_hash=digest_api_key(raw_key)).first()
    if key is None or not key.is_active or key.is_expired():
        return None
    user = key.user
    if user is None or user.status != "active":
        return None
    key.last_used_at = _now()
    db.session.commit()
    return Principal(
        user_id=user.id,
        username=user.username,
        role=None,
        site_id=key.site_id,
        is_super_admin=False,
        auth_method="api_key",
        key_permissions=dict(key.permissions or {}),
        key_site_id=key.site_id,
    )
