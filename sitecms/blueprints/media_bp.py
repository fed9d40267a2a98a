"""
Media Blueprint — media library metadata of the current site.

Endpoints:
  GET    /api/v1/media                  — list (?mime_type=&folder=&search=&trashed=1)
  POST   /api/v1/media                  — register an uploaded file (manage_media)
  GET    /api/v1/media/<id>             — one
  PUT    /api/v1/media/<id>             — update alt text, caption, folder …
  DELETE /api/v1/media/<id>             — move to the trash
  POST   /api/v1/media/<id>/restore     — take out of the trash
  DELETE /api/v1/media/<id>/permanent   — delete a trashed item; clears its references
  DELETE /api/v1/media/trash            — permanently delete everything in the trash
"""

from flask import Blueprint, g, jsonify, request

from sitecms.blueprints import int_arg, paginated, parse_pagination
from sitecms.middleware.permission_required import require_permission
from sitecms.services import media_service
from sitecms.utils.helpers import commit, json_body, serialize_record

media_bp = Blueprint("media", __name__, url_prefix="/api/v1/media")


@media_bp.route("", methods=["GET"])
@require_permission("view_dashboard")
def list_media():
    page, per_page = parse_pagination()
    items, total = media_service.list_media(
        g.site.id,
        mime_type=request.args.get("mime_type"),
        folder=request.args.get("folder"),
        search=request.args.get("search"),
        trashed=bool(int_arg("trashed", 0)),
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return jsonify(paginated([serialize_record(m) for m in items], total, page, per_page)), 200


@media_bp.route("", methods=["POST"])
@require_permission("manage_media")
def create_media():
    media = media_service.create_media(g.site.id, g.principal, json_body())
    commit()
    return jsonify(serialize_record(media)), 201


@media_bp.route("/<int:media_id>", methods=["GET"])
@require_permission("view_dashboard")
def get_media(media_id):
    return jsonify(serialize_record(media_service.get_media(g.site.id, media_id))), 200


@media_bp.route("/<int:media_id>", methods=["PUT"])
@require_permission("manage_media")
def update_media(media_id):
    media = media_service.update_media(g.site.id, media_id, json_body())
    commit()
    return jsonify(serialize_record(media)), 200


@media_bp.route("/<int:media_id>", methods=["DELETE"])
@require_permission("manage_media")
def trash_media(media_id):
    media = media_service.trash_media(g.site.id, media_id)
    commit()
    return jsonify(serialize_record(media)), 200


@media_bp.route("/<int:media_id>/restore", methods=["POST"])
@require_permission("manage_media")
def restore_media(media_id):
    media = media_service.restore_media(g.site.id, media_id)
    commit()
    return jsonify(serialize_record(media)), 200


@media_bp.route("/<int:media_id>/permanent", methods=["DELETE"])
@require_permission("manage_media")
def delete_media(media_id):
    cleared = media_service.delete_media(g.site.id, media_id)
    commit()
    return jsonify({"message": "Media deleted", "references_cleared": cleared}), 200


@media_bp.route("/trash", methods=["DELETE"])
@require_permission("manage_media")
def empty_trash():
    deleted = media_service.empty_trash(g.site.id)
    commit()
    return jsonify({"message": "Trash emptied", "deleted": deleted}), 200
