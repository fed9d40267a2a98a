"""
Permission Service — resolves the effective PermissionSet of a principal.

Resolution is deny-by-default and always reads the current role data; there
is no permission cache, so a membership or role change takes effect on the
next request.

  API key      → the key's own permission map (empty when the key is bound
                 to a different site)
  super-admin  → SuperAdminPermissions (every check passes)
  otherwise    → the permission map of the role the principal's
                 SiteMembership grants on the requested site, or an empty set

A missing membership is not an error: callers decide whether an empty set
means 403.
"""

import logging

from sitecms.core.principal import Principal
from sitecms.models import db
from sitecms.models.auth import Site, SiteMembership, User

logger = logging.getLogger(__name__)

PERMISSIONS = (
    "view_dashboard",
    "create_posts",
    "view_others_posts",
    "manage_others_posts",
    "can_publish",
    "can_delete",
    "can_delete_others",
    "can_reassign",
    "manage_media",
    "manage_taxonomies",
    "manage_post_types",
    "manage_menus",
    "manage_settings",
    "manage_users",
    "manage_roles",
    "manage_sites",
    "view_activity_log",
)


# ═══════════════════════════════════════════════════════════════
# Permission sets
# ═══════════════════════════════════════════════════════════════
class PermissionSet:
    """Capability lookup. Concrete variants: RoleBasedPermissions, SuperAdminPermissions."""

    kind = "abstract"

    def has(self, permission: str) -> bool:
        raise NotImplementedError

    def names(self) -> list[str]:
        raise NotImplementedError

    def to_dict(self) -> dict:
        return {"kind": self.kind, "permissions": self.names()}


class RoleBasedPermissions(PermissionSet):
    """Permissions granted by a ``name -> bool`` map. Only ``True`` grants."""

    kind = "role_based"

    def __init__(self, mapping: dict | None = None):
        self._granted = frozenset(
            name for name, enabled in (mapping or {}).items() if enabled is True
        )

    def has(self, permission: str) -> bool:
        return permission in self._granted

    def names(self) -> list[str]:
        return sorted(self._granted)

    def __eq__(self, other):
        return isinstance(other, RoleBasedPermissions) and self._granted == other._granted

    def __hash__(self):
        return hash(self._granted)

    def __repr__(self):
        return f"<RoleBasedPermissions {self.names()}>"


class SuperAdminPermissions(PermissionSet):
    """Every permission, unconditionally."""

    kind = "super_admin"

    def has(self, permission: str) -> bool:
        return True

    def names(self) -> list[str]:
        return list(PERMISSIONS)

    def __eq__(self, other):
        return isinstance(other, SuperAdminPermissions)

    def __hash__(self):
        return hash(self.kind)

    def __repr__(self):
        return "<SuperAdminPermissions>"


EMPTY_PERMISSIONS = RoleBasedPermissions()


# ═══════════════════════════════════════════════════════════════
# Resolution
# ═══════════════════════════════════════════════════════════════
def get_membership(site_id: int, user_id: int) -> SiteMembership | None:
    return SiteMembership.query.filter_by(site_id=site_id, user_id=user_id).first()


def resolve(principal: Principal | None, site_id: int | None = None) -> PermissionSet:
    """Effective permissions of *principal* on *site_id* (default: its current site)."""
    if principal is None:
        return EMPTY_PERMISSIONS

    if site_id is None:
        site_id = principal.site_id

    if principal.auth_method == "api_key":
        if principal.key_site_id is not None and principal.key_site_id != site_id:
            return EMPTY_PERMISSIONS
        return RoleBasedPermissions(principal.key_permissions)

    if principal.is_super_admin:
        return SuperAdminPermissions()

    if site_id is None:
        return EMPTY_PERMISSIONS

    membership = get_membership(site_id, principal.user_id)
    if membership is None or membership.role is None:
        return EMPTY_PERMISSIONS
    return RoleBasedPermissions(membership.role.permissions)


def resolve_global(principal: Principal | None) -> PermissionSet:
    """Permissions for site-independent administration (users, roles, sites)."""
    if principal is None:
        return EMPTY_PERMISSIONS
    if principal.auth_method == "api_key":
        if principal.key_site_id is not None:
            return EMPTY_PERMISSIONS
        return RoleBasedPermissions(principal.key_permissions)
    if principal.is_super_admin:
        return SuperAdminPermissions()
    user = db.session.get(User, principal.user_id)
    if user is None or user.role is None:
        return EMPTY_PERMISSIONS
    return RoleBasedPermissions(user.role.permissions)


# ═══════════════════════════════════════════════════════════════
# Principal construction
# ═══════════════════════════════════════════════════════════════
def active_memberships(user_id: int) -> list[SiteMembership]:
    """Memberships on active sites, lowest site id first."""
    return (
        SiteMembership.query.join(Site, Site.id == SiteMembership.site_id)
        .filter(SiteMembership.user_id == user_id, Site.is_active.is_(True))
        .order_by(SiteMembership.site_id)
        .all()
    )


def default_site_for(user: User) -> int | None:
    """Site a fresh session lands on."""
    memberships = active_memberships(user.id)
    if memberships:
        return memberships[0].site_id
    if user.is_super_admin:
        site = Site.query.filter_by(is_active=True).order_by(Site.id).first()
        return site.id if site else None
    return None


def build_principal(
    user: User,
    site_id: int | None,
    *,
    original_user_id: int | None = None,
    original_site_id: int | None = None,
) -> Principal:
    """Principal for *user* on *site_id*; the role is the site role when one exists."""
    role = None
    if site_id is not None:
        membership = get_membership(site_id, user.id)
        if membership is not None and membership.role is not None:
            role = membership.role.name
    if role is None and user.role is not None:
        role = user.role.name
    return Principal(
        user_id=user.id,
        username=user.username,
        role=role,
        site_id=site_id,
        is_super_admin=bool(user.is_super_admin),
        original_user_id=original_user_id,
        original_site_id=original_site_id,
    )


def principal_from_claims(claims: dict, user: User) -> Principal:
    """Rebuild a Principal from verified token claims.

    Only identity and site come from the token. The role and the super-admin
    flag are read from the current membership and user rows, so a demotion
    takes effect before the token expires.
    """
    return build_principal(
        user,
        claims.get("site_id"),
        original_user_id=int(claims["orig_sub"]) if claims.get("orig_sub") else None,
        original_site_id=claims.get("orig_site_id"),
    )
