"""
JWT Service — token generation, verification, revocation.

Access token:  15 minutes (configurable via JWT_ACCESS_EXPIRES)
Refresh token: 7 days     (configurable via JWT_REFRESH_EXPIRES)
Algorithm:     HS256

Token payload:
{
    "sub": "<user_id>",
    "username": "...",
    "role": "editor",
    "site_id": <site_id | null>,
    "super_admin": false,
    "orig_sub": "<original user id>",     # only while impersonating
    "orig_site_id": <original site id>,   # only while impersonating
    "type": "access" | "refresh",
    "iss": ..., "aud": ...,
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Sessions are stateless: impersonation undo data rides inside the token.
Revocation (logout, refresh rotation) goes to the TokenBlacklist owned by
the app, which forgets entries once the token would have expired anyway.
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from sitecms.core.principal import Principal

logger = logging.getLogger(__name__)

# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
DEFAULT_REFRESH_EXPIRES = 604800   # 7 days
DEFAULT_SWEEP_SECONDS = 300
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def _get_refresh_expires():
    return current_app.config.get("JWT_REFRESH_EXPIRES", DEFAULT_REFRESH_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Blacklist
# ═══════════════════════════════════════════════════════════════
class TokenBlacklist:
    """Revoked token ids, kept only until the token would expire.

    Expired entries are swept on access, at most once per
    ``sweep_interval`` seconds; there is no background thread.
    """

    def __init__(self, sweep_interval: int = DEFAULT_SWEEP_SECONDS, clock=time.time):
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def revoke(self, jti: str, expires_at: float) -> None:
        with self._lock:
            self._entries[jti] = float(expires_at)
        self._maybe_sweep()

    def is_revoked(self, jti: str) -> bool:
        self._maybe_sweep()
        with self._lock:
            expires_at = self._entries.get(jti)
        return expires_at is not None and expires_at > self._clock()

    def sweep(self) -> int:
        """Evict entries whose token has expired. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            stale = [jti for jti, exp in self._entries.items() if exp <= now]
            for jti in stale:
                del self._entries[jti]
            self._next_sweep = now + self._sweep_interval
        if stale:
            logger.debug("Token blacklist sweep evicted %d entries", len(stale))
        return len(stale)

    def _maybe_sweep(self) -> None:
        if self._clock() >= self._next_sweep:
            self.sweep()


def init_token_blacklist(app) -> TokenBlacklist:
    blacklist = TokenBlacklist(
        sweep_interval=app.config.get("TOKEN_BLACKLIST_SWEEP_SECONDS", DEFAULT_SWEEP_SECONDS)
    )
    app.extensions["token_blacklist"] = blacklist
    return blacklist


def get_blacklist() -> TokenBlacklist:
    return current_app.extensions["token_blacklist"]


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def _identity_claims(principal: Principal) -> dict:
    claims = {
        "sub": str(principal.user_id),
        "username": principal.username,
        "role": principal.role,
        "site_id": principal.site_id,
        "super_admin": principal.is_super_admin,
    }
    if principal.original_user_id is not None:
        claims["orig_sub"] = str(principal.original_user_id)
        claims["orig_site_id"] = principal.original_site_id
    return claims


def _encode(principal: Principal, token_type: str, lifetime: int) -> str:
    now = datetime.now(timezone.utc)
    payload = _identity_claims(principal)
    payload.update({
        "type": token_type,
        "iss": current_app.config.get("JWT_ISSUER", "sitecms-api"),
        "aud": current_app.config.get("JWT_AUDIENCE", "sitecms"),
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_access_token(principal: Principal) -> str:
    """Generate a short-lived access token."""
    return _encode(principal, "access", _get_access_expires())


def generate_refresh_token(principal: Principal) -> str:
    """Generate a long-lived refresh token carrying the same identity."""
    return _encode(principal, "refresh", _get_refresh_expires())


def generate_token_pair(principal: Principal) -> dict:
    """Generate both access + refresh tokens."""
    return {
        "access_token": generate_access_token(principal),
        "refresh_token": generate_refresh_token(principal),
        "token_type": "Bearer",
        "expires_in": _get_access_expires(),
    }


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, …),
    including for a token of the wrong type or one that was revoked.
    """
    payload = jwt.decode(
        token,
        _get_secret(),
        algorithms=[ALGORITHM],
        audience=current_app.config.get("JWT_AUDIENCE", "sitecms"),
        issuer=current_app.config.get("JWT_ISSUER", "sitecms-api"),
        options={"require": ["exp", "iat", "sub", "jti"]},
    )

    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")

    if get_blacklist().is_revoked(payload["jti"]):
        raise jwt.InvalidTokenError("Token has been revoked")

    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, expected_type="refresh")


def revoke_token_claims(payload: dict) -> None:
    """Blacklist a decoded token until its own expiry."""
    get_blacklist().revoke(payload["jti"], payload["exp"])
