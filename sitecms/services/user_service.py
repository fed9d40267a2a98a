"""
User Service — users, roles, login.

Users and roles are global. A user's global role applies to user/role
administration; what they may do on a site comes from their membership
there (see site_service).
"""

import logging
import re
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from sitecms.core.exceptions import (
    ConflictError,
    ForbiddenError,
    ImmutableBuiltinError,
    InUseError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from sitecms.models import db
from sitecms.models.auth import BUILTIN_ROLES, Role, SiteMembership, User
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.services.permission_service import PERMISSIONS
from sitecms.utils.crypto import hash_password, verify_password
from sitecms.utils.helpers import parse_int, require_text, validate_name

logger = logging.getLogger(__name__)

USER_STATUSES = ("active", "inactive", "suspended")
USER_FIELDS = ("username", "email", "first_name", "last_name", "role", "is_super_admin", "status")
ROLE_FIELDS = ("name", "label", "description", "permissions", "level")
MIN_PASSWORD_LENGTH = 8
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,100}$")


def _grant(*names):
    return {name: name in names for name in PERMISSIONS}


DEFAULT_ROLES = {
    "super_admin": ("Super Admin", 100, _grant(*PERMISSIONS)),
    "admin": ("Administrator", 80, _grant(*(p for p in PERMISSIONS if p not in ("manage_sites", "manage_roles")))),
    "editor": ("Editor", 60, _grant(
        "view_dashboard", "create_posts", "view_others_posts", "manage_others_posts",
        "can_publish", "can_delete", "can_delete_others", "manage_media", "manage_taxonomies",
    )),
    "author": ("Author", 40, _grant(
        "view_dashboard", "create_posts", "can_publish", "can_delete", "manage_media",
    )),
    "contributor": ("Contributor", 20, _grant("view_dashboard", "create_posts")),
    "subscriber": ("Subscriber", 10, _grant("view_dashboard")),
    "guest": ("Guest", 0, _grant()),
}


def _now():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════
def _normalize_email(email):
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", field="email") from e


def _check_password(password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    return password


def get_role_by_name(name) -> Role:
    role = Role.query.filter_by(name=name).first()
    if role is None:
        raise ValidationError(f"Unknown role '{name}'", field="role")
    return role


def _user_snapshot(user):
    return snapshot(user.to_dict(), USER_FIELDS)


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def list_users(*, search=None, status=None, limit=None, offset=0):
    """Users ordered by username. Returns (items, total)."""
    q = User.query
    if status:
        q = q.filter_by(status=status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(User.username.ilike(pattern), User.email.ilike(pattern)))
    total = q.count()
    q = q.order_by(User.username, User.id).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all(), total


def get_user(user_id) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def create_user(actor, data) -> User:
    username = require_text(data, "username")
    if not _USERNAME_RE.match(username):
        raise ValidationError("username must be 3-100 characters of letters, digits, '.', '_' or '-'",
                              field="username")
    email = _normalize_email(data.get("email"))
    password = _check_password(data.get("password"))
    role = get_role_by_name(data.get("role") or "subscriber")

    is_super_admin = bool(data.get("is_super_admin"))
    if is_super_admin and not (actor and actor.is_super_admin):
        raise ForbiddenError("manage_sites", "Only super-admins can create super-admins")
    if User.query.filter_by(username=username).first():
        raise ConflictError("User", "username", username)
    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=data.get("first_name") or None,
        last_name=data.get("last_name") or None,
        role=role,
        is_super_admin=is_super_admin,
        status="active",
    )
    db.session.add(user)
    db.session.flush()
    record_activity(
        "user_created", "user", entity_id=user.id, entity_name=user.username,
        changes_after=_user_snapshot(user),
    )
    logger.info("User created: %s (role=%s)", user.username, role.name)
    return user


def update_user(actor, user_id, data) -> User:
    user = get_user(user_id)
    before = _user_snapshot(user)

    if "email" in data:
        email = _normalize_email(data["email"])
        clash = User.query.filter(User.email == email, User.id != user.id).first()
        if clash:
            raise ConflictError("User", "email", email)
        user.email = email
    for name in ("first_name", "last_name"):
        if name in data:
            setattr(user, name, data[name] or None)
    if data.get("password"):
        user.password_hash = hash_password(_check_password(data["password"]))
    if "role" in data:
        user.role = get_role_by_name(data["role"])
    if "status" in data:
        if data["status"] not in USER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(USER_STATUSES)}", field="status")
        if user.id == actor.user_id and data["status"] != "active":
            raise ValidationError("You cannot deactivate your own account", field="status")
        user.status = data["status"]
    if "is_super_admin" in data:
        if not actor.is_super_admin:
            raise ForbiddenError("manage_sites", "Only super-admins can change super-admin status")
        if user.id == actor.user_id and not data["is_super_admin"]:
            raise ValidationError("You cannot revoke your own super-admin status", field="is_super_admin")
        user.is_super_admin = bool(data["is_super_admin"])

    db.session.flush()
    after = _user_snapshot(user)
    action = (
        "user_deactivated"
        if before["status"] == "active" and user.status != "active"
        else "user_updated"
    )
    record_activity(
        action, "user", entity_id=user.id, entity_name=user.username,
        changes_before=before, changes_after=after,
    )
    return user


# ═══════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════
def authenticate(identifier, password) -> User:
    """Check credentials by username or email.

    Failures are recorded and committed before UnauthorizedError is raised,
    so they survive the error handler's rollback.
    """
    if not identifier or not password:
        raise ValidationError("username and password are required")
    user = User.query.filter(
        db.or_(User.username == identifier, User.email == str(identifier).lower())
    ).first()

    reason = None
    if user is None or not verify_password(password, user.password_hash):
        reason = "invalid credentials"
    elif user.status != "active":
        reason = f"account {user.status}"
    if reason:
        logger.warning("Login failed for %r: %s", identifier, reason)
        record_activity(
            "login_failed", "auth", actor_id=user.id if user else None,
            entity_id=user.id if user else None, entity_name=str(identifier)[:255], details=reason,
        )
        db.session.commit()
        raise UnauthorizedError("Invalid credentials")

    user.last_login_at = _now()
    record_activity("login", "auth", actor_id=user.id, entity_id=user.id, entity_name=user.username)
    return user


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
def _permission_map(raw):
    if not isinstance(raw, dict):
        raise ValidationError("permissions must be an object of name: bool", field="permissions")
    unknown = sorted(set(raw) - set(PERMISSIONS))
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}", field="permissions")
    if not all(isinstance(v, bool) for v in raw.values()):
        raise ValidationError("permission values must be booleans", field="permissions")
    return dict(raw)


def list_roles():
    return Role.query.order_by(Role.level.desc(), Role.name).all()


def get_role(role_id) -> Role:
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role", role_id)
    return role


def create_role(data) -> Role:
    name = validate_name(data.get("name"))
    if Role.query.filter_by(name=name).first():
        raise ConflictError("Role", "name", name)
    role = Role(
        name=name,
        label=require_text(data, "label", 100),
        description=data.get("description") or None,
        permissions=_permission_map(data.get("permissions") or {}),
        level=parse_int(data["level"], "level") if "level" in data else 0,
        is_builtin=False,
    )
    db.session.add(role)
    db.session.flush()
    record_activity(
        "role_created", "role", entity_id=role.id, entity_name=role.name,
        changes_after=snapshot(role.to_dict(), ROLE_FIELDS),
    )
    return role


def update_role(role_id, data) -> Role:
    role = get_role(role_id)
    before = snapshot(role.to_dict(), ROLE_FIELDS)
    if "name" in data and data["name"] != role.name:
        if role.is_builtin:
            raise ImmutableBuiltinError("role", role.name)
        name = validate_name(data["name"])
        if Role.query.filter_by(name=name).first():
            raise ConflictError("Role", "name", name)
        role.name = name
    if "label" in data:
        role.label = require_text(data, "label", 100)
    if "description" in data:
        role.description = data["description"] or None
    if "permissions" in data:
        role.permissions = _permission_map(data["permissions"])
    if "level" in data:
        role.level = parse_int(data["level"], "level")
    db.session.flush()
    record_activity(
        "role_updated", "role", entity_id=role.id, entity_name=role.name,
        changes_before=before, changes_after=snapshot(role.to_dict(), ROLE_FIELDS),
    )
    return role


def delete_role(role_id) -> None:
    role = db.session.query(Role).filter_by(id=role_id).with_for_update().first()
    if role is None:
        raise NotFoundError("Role", role_id)
    if role.is_builtin:
        raise ImmutableBuiltinError("role", role.name)
    in_use = (
        User.query.filter_by(role_id=role.id).count()
        + SiteMembership.query.filter_by(role_id=role.id).count()
    )
    if in_use:
        raise InUseError("Role", in_use, "users or memberships")
    record_activity(
        "role_deleted", "role", entity_id=role.id, entity_name=role.name,
        changes_before=snapshot(role.to_dict(), ROLE_FIELDS),
    )
    db.session.delete(role)


def seed_roles() -> int:
    """Create missing built-in roles. Returns how many were created."""
    created = 0
    for name in BUILTIN_ROLES:
        if Role.query.filter_by(name=name).first():
            continue
        label, level, permissions = DEFAULT_ROLES[name]
        db.session.add(Role(name=name, label=label, level=level,
                            permissions=permissions, is_builtin=True))
        created += 1
    db.session.flush()
    if created:
        logger.info("Seeded %d built-in roles", created)
    return created
