"""
Activity Blueprint — read-only view of the audit trail.

Endpoints:
  GET /api/v1/activity-log        — newest first (?entity_type=&entity_id=&action=&actor_id=)
  GET /api/v1/activity-log/<id>   — one entry with its displayed changes

Entries are those of the current site; super-admins also see global
entries (logins, user and site administration, switches).
"""

from flask import Blueprint, g, jsonify, request

from sitecms.blueprints import int_arg, paginated, parse_pagination
from sitecms.middleware.permission_required import require_permission
from sitecms.services import audit_service

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1/activity-log")


@activity_bp.route("", methods=["GET"])
@require_permission("view_activity_log")
def list_activity():
    page, per_page = parse_pagination()
    entries, total = audit_service.list_activity(
        g.principal, g.site.id,
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        action=request.args.get("action"),
        actor_id=int_arg("actor_id", None),
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    items = [e.to_dict(include_changes=True) for e in entries]
    return jsonify(paginated(items, total, page, per_page)), 200


@activity_bp.route("/<int:entry_id>", methods=["GET"])
@require_permission("view_activity_log")
def get_activity(entry_id):
    entry = audit_service.get_activity(g.principal, g.site.id, entry_id)
    return jsonify(entry.to_dict(include_changes=True)), 200
