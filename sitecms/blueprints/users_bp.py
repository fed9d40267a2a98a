"""
Users Blueprint — users, roles and API keys.

Endpoints:
  GET    /api/v1/users            — list (manage_users)
  POST   /api/v1/users            — create (manage_users)
  GET    /api/v1/users/<id>       — one user with memberships (manage_users)
  PUT    /api/v1/users/<id>       — update (manage_users)
  GET    /api/v1/roles            — list (manage_users)
  POST   /api/v1/roles            — create (manage_roles)
  PUT    /api/v1/roles/<id>       — update (manage_roles)
  DELETE /api/v1/roles/<id>       — delete custom role (manage_roles)
  GET    /api/v1/api-keys         — own keys (all keys for super-admins)
  POST   /api/v1/api-keys         — create; the raw key is returned once
  DELETE /api/v1/api-keys/<id>    — revoke
"""

from flask import Blueprint, g, jsonify, request

from sitecms.blueprints import paginated, parse_pagination
from sitecms.middleware.permission_required import require_auth, require_global_permission
from sitecms.services import api_key_service, user_service
from sitecms.utils.helpers import commit, json_body

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@users_bp.route("/users", methods=["GET"])
@require_global_permission("manage_users")
def list_users():
    page, per_page = parse_pagination()
    users, total = user_service.list_users(
        search=request.args.get("search"),
        status=request.args.get("status"),
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return jsonify(paginated([u.to_dict() for u in users], total, page, per_page)), 200


@users_bp.route("/users", methods=["POST"])
@require_global_permission("manage_users")
def create_user():
    user = user_service.create_user(g.principal, json_body())
    commit()
    return jsonify(user.to_dict(include_sites=True)), 201


@users_bp.route("/users/<int:user_id>", methods=["GET"])
@require_global_permission("manage_users")
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict(include_sites=True)), 200


@users_bp.route("/users/<int:user_id>", methods=["PUT"])
@require_global_permission("manage_users")
def update_user(user_id):
    user = user_service.update_user(g.principal, user_id, json_body())
    commit()
    return jsonify(user.to_dict(include_sites=True)), 200


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
@users_bp.route("/roles", methods=["GET"])
@require_global_permission("manage_users")
def list_roles():
    return jsonify({"items": [r.to_dict() for r in user_service.list_roles()]}), 200


@users_bp.route("/roles", methods=["POST"])
@require_global_permission("manage_roles")
def create_role():
    role = user_service.create_role(json_body())
    commit()
    return jsonify(role.to_dict()), 201


@users_bp.route("/roles/<int:role_id>", methods=["PUT"])
@require_global_permission("manage_roles")
def update_role(role_id):
    role = user_service.update_role(role_id, json_body())
    commit()
    return jsonify(role.to_dict()), 200


@users_bp.route("/roles/<int:role_id>", methods=["DELETE"])
@require_global_permission("manage_roles")
def delete_role(role_id):
    user_service.delete_role(role_id)
    commit()
    return jsonify({"message": "Role deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# API keys
# ═══════════════════════════════════════════════════════════════
@users_bp.route("/api-keys", methods=["GET"])
@require_auth
def list_api_keys():
    keys = api_key_service.list_api_keys(g.principal)
    return jsonify({"items": [k.to_dict() for k in keys]}), 200


@users_bp.route("/api-keys", methods=["POST"])
@require_auth
def create_api_key():
    key, raw = api_key_service.create_api_key(g.principal, json_body())
    commit()
    return jsonify({**key.to_dict(), "key": raw}), 201


@users_bp.route("/api-keys/<int:key_id>", methods=["DELETE"])
@require_auth
def revoke_api_key(key_id):
    api_key_service.revoke_api_key(g.principal, key_id)
    commit()
    return jsonify({"message": "API key revoked"}), 200
