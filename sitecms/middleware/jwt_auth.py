"""
Auth Middleware — authenticates every API request into ``g.principal``.

Credentials, in order:
  1. ``Authorization: Bearer <access token>``
  2. ``X-API-Key: <key>``

Presented-but-bad credentials (invalid, expired, wrong type, revoked token;
unknown, inactive or expired key; deactivated user) are rejected with 401
right here. A request without credentials continues with
``g.principal = None``; protected routes reject it via ``require_auth``.
"""

import logging

import jwt as pyjwt
from flask import g, request

from sitecms.models import db
from sitecms.models.auth import User
from sitecms.services.api_key_service import authenticate_api_key
from sitecms.services.jwt_service import decode_access_token
from sitecms.services.permission_service import principal_from_claims
from sitecms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip authentication entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
    "/static/",
)


def _unauthorized(message):
    return api_error(E.UNAUTHORIZED, message, status=401)


def _principal_from_bearer(token):
    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise pyjwt.InvalidTokenError("Malformed subject") from exc
    user = db.session.get(User, user_id)
    if user is None or user.status != "active":
        return None, payload
    return principal_from_claims(payload, user), payload


def init_jwt_middleware(app):
    """Register the auth hook as a before_request handler."""

    @app.before_request
    def _authenticate():
        g.principal = None
        g.token_claims = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        api_key = request.headers.get("X-API-Key")

        if auth_header.startswith("Bearer "):
            try:
                principal, claims = _principal_from_bearer(auth_header[7:].strip())
            except pyjwt.ExpiredSignatureError:
                return _unauthorized("Token has expired")
            except pyjwt.InvalidTokenError as exc:
                logger.info("Rejected bearer token on %s: %s", path, exc)
                return _unauthorized("Invalid token")
            if principal is None:
                return _unauthorized("User is inactive or no longer exists")
            g.principal = principal
            g.token_claims = claims
        elif auth_header:
            return _unauthorized("Unsupported authorization scheme")
        elif api_key:
            principal = authenticate_api_key(api_key)
            if principal is None:
                logger.warning("Rejected API key on %s", path)
                return _unauthorized("Invalid API key")
            g.principal = principal
        return None
