"""
Auth Models — sites, users, roles, site memberships, API keys.

Users and roles are global; a SiteMembership grants a user a role on one
site. Super-admins bypass memberships entirely.
"""

from datetime import datetime, timezone

from sitecms.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


BUILTIN_ROLES = (
    "super_admin", "admin", "editor", "author", "contributor", "subscriber", "guest",
)


# ═══════════════════════════════════════════════════════════════
# 1. SITES
# ═══════════════════════════════════════════════════════════════
class Site(db.Model):
    __tablename__ = "sites"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    display_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    domain = db.Column(db.String(200), unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    memberships = db.relationship(
        "SiteMembership", back_populates="site", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "domain": self.domain,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Site {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    label = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    permissions = db.Column(db.JSON, nullable=False, default=dict)  # name -> bool
    is_builtin = db.Column(db.Boolean, nullable=False, default=False)
    level = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def granted(self) -> set[str]:
        """Names of the permissions this role turns on."""
        return {name for name, enabled in (self.permissions or {}).items() if enabled is True}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "permissions": self.permissions or {},
            "is_builtin": self.is_builtin,
            "level": self.level,
        }

    def __repr__(self):
        return f"<Role {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 3. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False)
    is_super_admin = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="active")  # active, inactive, suspended
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    role = db.relationship("Role")
    memberships = db.relationship(
        "SiteMembership", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def display_name(self):
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username

    def to_dict(self, include_sites=False):
        d = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "role": self.role.name if self.role else None,
            "is_super_admin": self.is_super_admin,
            "status": self.status,
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
        }
        if include_sites:
            d["sites"] = [
                m.to_dict() for m in self.memberships.order_by(SiteMembership.site_id).all()
            ]
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.username}>"


# ═══════════════════════════════════════════════════════════════
# 4. SITE MEMBERSHIPS
# ═══════════════════════════════════════════════════════════════
class SiteMembership(db.Model):
    __tablename__ = "site_memberships"
    __table_args__ = (
        db.UniqueConstraint("site_id", "user_id", name="uq_site_membership"),
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(
        db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    site = db.relationship("Site", back_populates="memberships")
    user = db.relationship("User", back_populates="memberships")
    role = db.relationship("Role")

    def to_dict(self):
        return {
            "site_id": self.site_id,
            "site_name": self.site.name if self.site else None,
            "user_id": self.user_id,
            "role": self.role.name if self.role else None,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# 5. API KEYS
# ═══════════════════════════════════════════════════════════════
class ApiKey(db.Model):
    """Long-lived credential with its own permission map.

    Only the SHA-256 hash of the key is stored; the raw key is returned once
    at creation.
    """
    __tablename__ = "api_keys"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    key_prefix = db.Column(db.String(12), nullable=False)
    key_hash = db.Column(db.String(64), unique=True, nullable=False)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=True)
    permissions = db.Column(db.JSON, nullable=False, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime(timezone=True))
    last_used_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User")

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        now = now or _utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "key_prefix": self.key_prefix,
            "user_id": self.user_id,
            "site_id": self.site_id,
            "permissions": self.permissions or {},
            "is_active": self.is_active,
            "expires_at": _iso(self.expires_at),
            "last_used_at": _iso(self.last_used_at),
            "created_at": _iso(self.created_at),
        }
