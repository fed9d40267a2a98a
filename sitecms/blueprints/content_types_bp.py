"""
Content Types Blueprint — post types and taxonomies of the current site.

Endpoints (site from X-Site-ID or the token):
  GET    /api/v1/post-types            — list (view_dashboard)
  POST   /api/v1/post-types            — create (manage_post_types)
  GET    /api/v1/post-types/<id>       — one, with attached taxonomies
  PUT    /api/v1/post-types/<id>       — update (manage_post_types)
  DELETE /api/v1/post-types/<id>       — delete unused custom type
  GET    /api/v1/taxonomies            — list (view_dashboard)
  POST   /api/v1/taxonomies            — create (manage_taxonomies)
  GET    /api/v1/taxonomies/<id>       — one
  PUT    /api/v1/taxonomies/<id>       — update (manage_taxonomies)
  DELETE /api/v1/taxonomies/<id>       — delete custom taxonomy without terms
"""

from flask import Blueprint, g, jsonify

from sitecms.middleware.permission_required import require_permission
from sitecms.services.content_types import content_types
from sitecms.tenant import store_for
from sitecms.utils.helpers import commit, json_body, serialize_record

content_types_bp = Blueprint("content_types", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════
# Post types
# ═══════════════════════════════════════════════════════════════
@content_types_bp.route("/post-types", methods=["GET"])
@require_permission("view_dashboard")
def list_post_types():
    items = content_types.list_post_types(g.site.id)
    return jsonify({"items": [serialize_record(pt) for pt in items]}), 200


@content_types_bp.route("/post-types", methods=["POST"])
@require_permission("manage_post_types")
def create_post_type():
    post_type = content_types.create_post_type(g.site.id, json_body())
    commit()
    return jsonify(serialize_record(post_type)), 201


@content_types_bp.route("/post-types/<int:post_type_id>", methods=["GET"])
@require_permission("view_dashboard")
def get_post_type(post_type_id):
    post_type = store_for("post_types", g.site.id).get(post_type_id)
    out = serialize_record(post_type)
    out["attached_taxonomies"] = [
        t["name"] for t in content_types.taxonomies_for(g.site.id, post_type["name"])
    ]
    return jsonify(out), 200


@content_types_bp.route("/post-types/<int:post_type_id>", methods=["PUT"])
@require_permission("manage_post_types")
def update_post_type(post_type_id):
    post_type = content_types.update_post_type(g.site.id, post_type_id, json_body())
    commit()
    return jsonify(serialize_record(post_type)), 200


@content_types_bp.route("/post-types/<int:post_type_id>", methods=["DELETE"])
@require_permission("manage_post_types")
def delete_post_type(post_type_id):
    content_types.delete_post_type(g.site.id, post_type_id)
    commit()
    return jsonify({"message": "Post type deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Taxonomies
# ═══════════════════════════════════════════════════════════════
@content_types_bp.route("/taxonomies", methods=["GET"])
@require_permission("view_dashboard")
def list_taxonomies():
    items = content_types.list_taxonomies(g.site.id)
    return jsonify({"items": [serialize_record(t) for t in items]}), 200


@content_types_bp.route("/taxonomies", methods=["POST"])
@require_permission("manage_taxonomies")
def create_taxonomy():
    taxonomy = content_types.create_taxonomy(g.site.id, json_body())
    commit()
    return jsonify(serialize_record(taxonomy)), 201


@content_types_bp.route("/taxonomies/<int:taxonomy_id>", methods=["GET"])
@require_permission("view_dashboard")
def get_taxonomy(taxonomy_id):
    return jsonify(serialize_record(store_for("taxonomies", g.site.id).get(taxonomy_id))), 200


@content_types_bp.route("/taxonomies/<int:taxonomy_id>", methods=["PUT"])
@require_permission("manage_taxonomies")
def update_taxonomy(taxonomy_id):
    taxonomy = content_types.update_taxonomy(g.site.id, taxonomy_id, json_body())
    commit()
    return jsonify(serialize_record(taxonomy)), 200


@content_types_bp.route("/taxonomies/<int:taxonomy_id>", methods=["DELETE"])
@require_permission("manage_taxonomies")
def delete_taxonomy(taxonomy_id):
    content_types.delete_taxonomy(g.site.id, taxonomy_id)
    commit()
    return jsonify({"message": "Taxonomy deleted"}), 200
