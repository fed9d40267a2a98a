"""
Auth Blueprint — tokens, session identity, switching.

Endpoints:
  POST /api/v1/auth/login        — username/email + password → JWT pair
  POST /api/v1/auth/refresh      — refresh token → new pair (old refresh revoked)
  POST /api/v1/auth/logout       — revoke the current access (and refresh) token
  GET  /api/v1/auth/me           — current principal, user, permissions, sites
  POST /api/v1/auth/switch-site  — same identity on another site
  POST /api/v1/auth/switch-user  — act as another user (admins)
  POST /api/v1/auth/switch-back  — return to the original user
"""

import logging

import jwt as pyjwt
from flask import Blueprint, g, jsonify

from sitecms.core.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from sitecms.middleware.permission_required import require_auth
from sitecms.models import db
from sitecms.models.auth import User
from sitecms.services import impersonation
from sitecms.services.audit_service import record_activity
from sitecms.services.jwt_service import (
    decode_refresh_token,
    generate_token_pair,
    revoke_token_claims,
)
from sitecms.services.permission_service import (
    active_memberships,
    build_principal,
    default_site_for,
    get_membership,
    resolve,
)
from sitecms.services.user_service import authenticate
from sitecms.tenant import get_registry
from sitecms.utils.helpers import commit, json_body, parse_id, parse_optional_id

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _session_body(principal, tokens):
    return {**tokens, "principal": principal.to_dict()}


def _rotate(principal):
    """Issue a pair for *principal* and revoke the access token that asked for it."""
    if g.get("token_claims"):
        revoke_token_claims(g.token_claims)
    tokens = generate_token_pair(principal)
    commit()
    return jsonify(_session_body(principal, tokens)), 200


def _login_site(user, requested):
    if requested is None:
        return default_site_for(user)
    site = get_registry().resolve_site(requested)
    if not user.is_super_admin and get_membership(site.id, user.id) is None:
        raise ForbiddenError("switch_site", "Not a member of this site")
    return site.id


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate and return a JWT pair.

    Body: { "username": "..." | "email": "...", "password": "...", "site_id": 1? }
    """
    data = json_body()
    identifier = (data.get("username") or data.get("email") or "").strip()
    user = authenticate(identifier, data.get("password") or "")
    site_id = _login_site(user, parse_optional_id(data.get("site_id"), "site_id"))
    principal = build_principal(user, site_id)
    tokens = generate_token_pair(principal)
    commit()
    logger.info("Login: user %s on site %s", user.id, site_id)
    return jsonify({**_session_body(principal, tokens), "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """Body: { "refresh_token": "..." }"""
    token = json_body().get("refresh_token")
    if not token:
        raise ValidationError("refresh_token is required", field="refresh_token")
    try:
        claims = decode_refresh_token(token)
    except pyjwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Refresh token has expired") from exc
    except pyjwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid refresh token") from exc

    user = db.session.get(User, int(claims["sub"]))
    if user is None or user.status != "active":
        raise UnauthorizedError("User is inactive or no longer exists")

    principal = build_principal(
        user,
        claims.get("site_id"),
        original_user_id=int(claims["orig_sub"]) if claims.get("orig_sub") else None,
        original_site_id=claims.get("orig_site_id"),
    )
    revoke_token_claims(claims)
    tokens = generate_token_pair(principal)
    return jsonify(_session_body(principal, tokens)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """Body (optional): { "refresh_token": "..." }"""
    if g.get("token_claims"):
        revoke_token_claims(g.token_claims)
    refresh_token = json_body().get("refresh_token")
    if refresh_token:
        try:
            revoke_token_claims(decode_refresh_token(refresh_token))
        except pyjwt.InvalidTokenError:
            logger.info("Logout with an unusable refresh token for user %s", g.principal.user_id)
    record_activity("logout", "auth", entity_id=g.principal.user_id, entity_name=g.principal.username)
    commit()
    return jsonify({"message": "Logged out"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    principal = g.principal
    user = db.session.get(User, principal.user_id)
    permissions = resolve(principal, g.site_id)
    return jsonify({
        "principal": principal.to_dict(),
        "user": user.to_dict() if user else None,
        "permissions": permissions.to_dict(),
        "sites": [m.to_dict() for m in active_memberships(principal.user_id)],
    }), 200


# ═══════════════════════════════════════════════════════════════
# Switching
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/switch-site", methods=["POST"])
@require_auth
def switch_site():
    """Body: { "site_id": 2 }"""
    if g.principal.auth_method != "token":
        raise ForbiddenError("switch_site", "API keys are bound to their site")
    site_id = parse_id(json_body().get("site_id"), "site_id")
    return _rotate(impersonation.switch_site(g.principal, site_id))


@auth_bp.route("/switch-user", methods=["POST"])
@require_auth
def switch_user():
    """Body: { "user_id": 7 }"""
    user_id = parse_id(json_body().get("user_id"), "user_id")
    return _rotate(impersonation.switch_user(g.principal, user_id))


@auth_bp.route("/switch-back", methods=["POST"])
@require_auth
def switch_back():
    return _rotate(impersonation.switch_back(g.principal))
