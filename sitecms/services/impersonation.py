"""
Impersonation — switch user, switch back, switch site.

The undo information (original user and site) travels inside the new
principal, and from there inside the token pair issued for it. Switching
back therefore needs no server-side session: the original principal is
rebuilt from the ids the current token carries.

Switch actions are recorded against the *original* actor with no site id,
so the trail shows who really acted.
"""

import logging

from sitecms.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotImpersonatingError,
    TenantInactiveError,
    TenantNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from sitecms.core.principal import Principal
from sitecms.models import db
from sitecms.models.auth import User
from sitecms.services.audit_service import record_activity
from sitecms.services.permission_service import (
    active_memberships,
    build_principal,
    get_membership,
)
from sitecms.tenant import get_registry

logger = logging.getLogger(__name__)


def _target_site(actor: Principal, target: User) -> int | None:
    if target.is_super_admin:
        return actor.site_id
    memberships = active_memberships(target.id)
    if not memberships:
        raise ValidationError("Target user has no active site membership", field="user_id")
    if actor.site_id is not None and any(m.site_id == actor.site_id for m in memberships):
        return actor.site_id
    return memberships[0].site_id


def switch_user(actor: Principal, target_user_id: int) -> Principal:
    """Principal acting as *target_user_id*, remembering *actor* for the way back."""
    if actor.is_impersonating:
        raise ConflictError("Session", reason="Already switched; switch back first")
    if actor.auth_method != "token":
        raise ForbiddenError("switch_user", "API keys cannot switch user")
    actor_user = db.session.get(User, actor.user_id)
    if actor_user is None or actor_user.status != "active":
        raise UnauthorizedError("User is inactive or no longer exists")
    # Admin rights are judged on the current membership, never the token's role
    if not build_principal(actor_user, actor.site_id).is_admin:
        logger.warning("User %s attempted switch_user without admin rights", actor.user_id)
        raise ForbiddenError("switch_user")

    target = db.session.get(User, target_user_id)
    if target is None:
        raise NotFoundError("User", target_user_id)
    if target.status != "active":
        raise ValidationError("Target user is not active", field="user_id")
    if target.id == actor.user_id:
        raise ValidationError("Cannot switch to yourself", field="user_id")
    if target.is_super_admin and not actor.is_super_admin:
        logger.warning("User %s attempted to switch to super-admin %s", actor.user_id, target.id)
        raise ForbiddenError("switch_user", "Only super-admins can switch to a super-admin")

    principal = build_principal(
        target,
        _target_site(actor, target),
        original_user_id=actor.user_id,
        original_site_id=actor.site_id,
    )
    record_activity(
        "user_switched", "user", entity_id=target.id, entity_name=target.username,
        actor_id=actor.user_id, impersonator_id=None, site_id=None,
        details=f"{actor.username} switched to {target.username}",
    )
    logger.info("User %s switched to user %s (site %s)", actor.user_id, target.id, principal.site_id)
    return principal


def switch_back(current: Principal) -> Principal:
    """Rebuild the principal the session started as."""
    if not current.is_impersonating:
        raise NotImpersonatingError()

    original = db.session.get(User, current.original_user_id)
    if original is None or original.status != "active":
        # The original account vanished or was disabled mid-session.
        raise UnauthorizedError("Original user is no longer available")

    site_id = current.original_site_id
    if site_id is not None:
        try:
            get_registry().resolve_site(site_id)
        except (TenantNotFoundError, TenantInactiveError) as exc:
            logger.info("Original site %s unusable on switch back: %s", site_id, exc)
            site_id = None
    principal = build_principal(original, site_id)
    record_activity(
        "user_switch_back", "user", entity_id=current.user_id, entity_name=current.username,
        actor_id=original.id, impersonator_id=None, site_id=None,
        details=f"{original.username} switched back from {current.username}",
    )
    logger.info("User %s switched back from user %s", original.id, current.user_id)
    return principal


def switch_site(principal: Principal, site_id: int) -> Principal:
    """Same identity on another active site; impersonation fields are kept."""
    site = get_registry().resolve_site(site_id)
    if not principal.is_super_admin and get_membership(site.id, principal.user_id) is None:
        logger.warning("User %s denied switch to site %s (no membership)", principal.user_id, site.id)
        raise ForbiddenError("switch_site", "Not a member of this site")

    user = db.session.get(User, principal.user_id)
    if user is None:
        raise UnauthorizedError("User no longer exists")
    switched = build_principal(
        user, site.id,
        original_user_id=principal.original_user_id,
        original_site_id=principal.original_site_id,
    )
    record_activity(
        "site_switched", "site", entity_id=site.id, entity_name=site.name,
        actor_id=principal.original_user_id or principal.user_id,
        impersonator_id=None, site_id=None,
        details=f"from site {principal.site_id}",
    )
    return switched
