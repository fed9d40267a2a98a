"""
Principal — the authenticated identity a request acts as.

Built by the auth middleware from a bearer token or an API key and stored
on ``g.principal``. It is an immutable value: impersonation and site
switches produce a new Principal (and a new token), never mutate one.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Principal:
    user_id: int
    username: str
    role: str | None
    site_id: int | None
    is_super_admin: bool = False
    # Impersonation: the user (and site) the session started as
    original_user_id: int | None = None
    original_site_id: int | None = None
    auth_method: str = "token"  # token | api_key
    key_permissions: dict | None = field(default=None, compare=False)
    key_site_id: int | None = None

    @property
    def is_impersonating(self) -> bool:
        return self.original_user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_super_admin or self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "role": self.role,
            "site_id": self.site_id,
            "is_super_admin": self.is_super_admin,
            "original_user_id": self.original_user_id,
            "is_switched": self.is_impersonating,
            "auth_method": self.auth_method,
        }
