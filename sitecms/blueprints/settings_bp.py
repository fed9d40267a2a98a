"""
Settings Blueprint — key/value settings of the current site.

Endpoints:
  GET /api/v1/settings   — all settings, or one group with ?group= (view_dashboard)
  PUT /api/v1/settings   — upsert the keys in the body (manage_settings)
"""

from flask import Blueprint, g, jsonify, request

from sitecms.middleware.permission_required import require_permission
from sitecms.services import settings_service
from sitecms.utils.helpers import commit, json_body

settings_bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")


@settings_bp.route("", methods=["GET"])
@require_permission("view_dashboard")
def get_settings():
    return jsonify(settings_service.get_settings(g.site.id, request.args.get("group"))), 200


@settings_bp.route("", methods=["PUT"])
@require_permission("manage_settings")
def update_settings():
    """Body: { "site_title": "...", "posts_per_page": 20, ... }"""
    settings = settings_service.update_settings(g.site.id, json_body(), request.args.get("group"))
    commit()
    return jsonify(settings), 200
