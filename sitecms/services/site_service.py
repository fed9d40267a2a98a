"""
Site Service — sites and site memberships.

Creating a site provisions its store (per-site tables under the ``table``
strategy) and installs the default content types and settings. Deleting a
site removes every site-scoped row or table through the store registry.
"""

import logging

from sitecms.core.exceptions import ConflictError, NotFoundError, ValidationError
from sitecms.models import db
from sitecms.models.auth import ApiKey, Site, SiteMembership, User
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.services.content_types import content_types
from sitecms.services.user_service import get_role_by_name, get_user
from sitecms.tenant import get_registry
from sitecms.utils.helpers import parse_int, require_text, validate_name

logger = logging.getLogger(__name__)

SITE_FIELDS = ("name", "display_name", "description", "domain", "is_active")


def _site_snapshot(site):
    return snapshot(site.to_dict(), SITE_FIELDS)


def list_sites(principal, *, limit=None, offset=0):
    """Sites the principal can see: all for super-admins, else their memberships."""
    q = Site.query
    if not principal.is_super_admin:
        q = q.join(SiteMembership, SiteMembership.site_id == Site.id).filter(
            SiteMembership.user_id == principal.user_id
        )
    total = q.count()
    q = q.order_by(Site.id).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all(), total


def get_site(site_id) -> Site:
    site = db.session.get(Site, site_id)
    if site is None:
        raise NotFoundError("Site", site_id)
    return site


def _domain(value, site_id=None):
    if not value:
        return None
    if not isinstance(value, str) or len(value) > 200:
        raise ValidationError("domain must be a string of at most 200 characters", field="domain")
    domain = value.strip().lower()
    clash = Site.query.filter(Site.domain == domain, Site.id != site_id).first()
    if clash:
        raise ConflictError("Site", "domain", domain)
    return domain


def create_site(data) -> Site:
    name = validate_name(data.get("name"))
    if Site.query.filter_by(name=name).first():
        raise ConflictError("Site", "name", name)
    site = Site(
        name=name,
        display_name=require_text(data, "display_name", 200),
        description=data.get("description") or None,
        domain=_domain(data.get("domain")),
        is_active=True,
    )
    db.session.add(site)
    db.session.flush()

    registry = get_registry()
    registry.provision_site(site.id)
    content_types.install_defaults(site.id)
    # Deactivate only after provisioning: the registry refuses inactive sites.
    if data.get("is_active") is False:
        site.is_active = False
        registry.forget(site.id)
        db.session.flush()

    record_activity(
        "site_created", "site", entity_id=site.id, entity_name=site.name,
        changes_after=_site_snapshot(site), site_id=site.id,
    )
    logger.info("Site created: %s (id=%s, strategy=%s)", site.name, site.id, registry.strategy)
    return site


def update_site(site_id, data) -> Site:
    site = get_site(site_id)
    before = _site_snapshot(site)
    if "name" in data and data["name"] != site.name:
        name = validate_name(data["name"])
        if Site.query.filter_by(name=name).first():
            raise ConflictError("Site", "name", name)
        site.name = name
    if "display_name" in data:
        site.display_name = require_text(data, "display_name", 200)
    if "description" in data:
        site.description = data["description"] or None
    if "domain" in data:
        site.domain = _domain(data["domain"], site.id)
    if "is_active" in data:
        site.is_active = bool(data["is_active"])
    db.session.flush()
    get_registry().forget(site.id)
    record_activity(
        "site_updated", "site", entity_id=site.id, entity_name=site.name,
        changes_before=before, changes_after=_site_snapshot(site), site_id=site.id,
    )
    return site


def delete_site(site_id) -> None:
    site = get_site(site_id)
    record_activity(
        "site_deleted", "site", entity_id=site.id, entity_name=site.name,
        changes_before=_site_snapshot(site), site_id=site.id,
    )
    get_registry().drop_site(site)
    ApiKey.query.filter_by(site_id=site.id).delete(synchronize_session=False)
    db.session.delete(site)
    logger.info("Site deleted: %s (id=%s)", site.name, site.id)


# ═══════════════════════════════════════════════════════════════
# Memberships
# ═══════════════════════════════════════════════════════════════
def list_members(site_id):
    get_site(site_id)
    return (
        SiteMembership.query.filter_by(site_id=site_id)
        .order_by(SiteMembership.user_id)
        .all()
    )


def _membership(site_id, user_id) -> SiteMembership:
    membership = SiteMembership.query.filter_by(site_id=site_id, user_id=user_id).first()
    if membership is None:
        raise NotFoundError("SiteMembership", user_id, site_id=site_id)
    return membership


def add_member(site_id, data) -> SiteMembership:
    site = get_site(site_id)
    user_id = parse_int(data.get("user_id"), "user_id", minimum=1)
    user = get_user(user_id)
    role = get_role_by_name(data.get("role") or "subscriber")
    if SiteMembership.query.filter_by(site_id=site.id, user_id=user.id).first():
        raise ConflictError("SiteMembership", "user_id", str(user.id))
    membership = SiteMembership(site=site, user=user, role=role)
    db.session.add(membership)
    db.session.flush()
    record_activity(
        "site_member_added", "site", entity_id=site.id, entity_name=site.name,
        details=f"{user.username} as {role.name}", changes_after={"user_id": user.id, "role": role.name},
        site_id=site.id,
    )
    return membership


def update_member(site_id, user_id, data) -> SiteMembership:
    membership = _membership(site_id, user_id)
    before = membership.role.name
    membership.role = get_role_by_name(data.get("role"))
    db.session.flush()
    record_activity(
        "site_member_updated", "site", entity_id=site_id, entity_name=membership.site.name,
        changes_before={"user_id": user_id, "role": before},
        changes_after={"user_id": user_id, "role": membership.role.name},
        site_id=site_id,
    )
    return membership


def remove_member(site_id, user_id) -> None:
    membership = _membership(site_id, user_id)
    user = db.session.get(User, user_id)
    record_activity(
        "site_member_removed", "site", entity_id=site_id, entity_name=membership.site.name,
        details=user.username if user else None,
        changes_before={"user_id": user_id, "role": membership.role.name},
        site_id=site_id,
    )
    db.session.delete(membership)
