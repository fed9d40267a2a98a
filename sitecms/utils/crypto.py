"""
Crypto utilities — bcrypt password hashing and API-key digests.

Password hashing:
  New hashes are bcrypt ($2b$). Werkzeug (scrypt/pbkdf2) hashes are still
  accepted on verify so accounts imported from older installs keep working.

API keys:
  Keys are random URL-safe strings; only their SHA-256 digest is stored.
"""

import hashlib
import secrets

import bcrypt
from werkzeug.security import check_password_hash

API_KEY_PREFIX = "sk_"


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_api_key() -> str:
    """Return a new raw API key. Shown to the caller once, never stored."""
    return API_KEY_PREFIX + secrets.token_urlsafe(32)


def digest_api_key(raw_key: str) -> str:
    """SHA-256 hex digest used for API-key lookup."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()
