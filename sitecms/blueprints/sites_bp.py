"""
Sites Blueprint — sites and site memberships.

Endpoints:
  GET    /api/v1/sites                          — sites visible to the caller
  POST   /api/v1/sites                          — create (manage_sites)
  GET    /api/v1/sites/<id>                     — one site
  PUT    /api/v1/sites/<id>                     — update (manage_sites)
  DELETE /api/v1/sites/<id>                     — delete with all content (manage_sites)
  GET    /api/v1/sites/<id>/members             — memberships (manage_users on the site)
  POST   /api/v1/sites/<id>/members             — add member
  PUT    /api/v1/sites/<id>/members/<user_id>   — change member role
  DELETE /api/v1/sites/<id>/members/<user_id>   — remove member
"""

from flask import Blueprint, g, jsonify

from sitecms.blueprints import paginated, parse_pagination
from sitecms.core.exceptions import ForbiddenError, NotFoundError
from sitecms.middleware.permission_required import require_auth, require_global_permission
from sitecms.services import site_service
from sitecms.services.permission_service import get_membership, resolve, resolve_global
from sitecms.utils.helpers import commit, json_body

sites_bp = Blueprint("sites", __name__, url_prefix="/api/v1/sites")


def _require_site_admin(site_id):
    principal = g.principal
    if resolve_global(principal).has("manage_sites"):
        return
    if not resolve(principal, site_id).has("manage_users"):
        raise ForbiddenError("manage_users")


@sites_bp.route("", methods=["GET"])
@require_auth
def list_sites():
    page, per_page = parse_pagination()
    sites, total = site_service.list_sites(
        g.principal, limit=per_page, offset=(page - 1) * per_page
    )
    return jsonify(paginated([s.to_dict() for s in sites], total, page, per_page)), 200


@sites_bp.route("", methods=["POST"])
@require_global_permission("manage_sites")
def create_site():
    site = site_service.create_site(json_body())
    commit()
    return jsonify(site.to_dict()), 201


@sites_bp.route("/<int:site_id>", methods=["GET"])
@require_auth
def get_site(site_id):
    site = site_service.get_site(site_id)
    if not g.principal.is_super_admin and get_membership(site.id, g.principal.user_id) is None:
        # Non-members cannot tell a foreign site from a missing one.
        raise NotFoundError("Site", site_id)
    return jsonify(site.to_dict()), 200


@sites_bp.route("/<int:site_id>", methods=["PUT"])
@require_global_permission("manage_sites")
def update_site(site_id):
    site = site_service.update_site(site_id, json_body())
    commit()
    return jsonify(site.to_dict()), 200


@sites_bp.route("/<int:site_id>", methods=["DELETE"])
@require_global_permission("manage_sites")
def delete_site(site_id):
    site_service.delete_site(site_id)
    commit()
    return jsonify({"message": "Site deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════
@sites_bp.route("/<int:site_id>/members", methods=["GET"])
@require_auth
def list_members(site_id):
    _require_site_admin(site_id)
    members = site_service.list_members(site_id)
    return jsonify({"items": [m.to_dict() for m in members]}), 200


@sites_bp.route("/<int:site_id>/members", methods=["POST"])
@require_auth
def add_member(site_id):
    _require_site_admin(site_id)
    membership = site_service.add_member(site_id, json_body())
    commit()
    return jsonify(membership.to_dict()), 201


@sites_bp.route("/<int:site_id>/members/<int:user_id>", methods=["PUT"])
@require_auth
def update_member(site_id, user_id):
    _require_site_admin(site_id)
    membership = site_service.update_member(site_id, user_id, json_body())
    commit()
    return jsonify(membership.to_dict()), 200


@sites_bp.route("/<int:site_id>/members/<int:user_id>", methods=["DELETE"])
@require_auth
def remove_member(site_id, user_id):
    _require_site_admin(site_id)
    site_service.remove_member(site_id, user_id)
    commit()
    return jsonify({"message": "Member removed"}), 200
