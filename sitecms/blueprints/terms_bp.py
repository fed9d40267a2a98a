"""
Terms Blueprint — terms of the current site's taxonomies.

Endpoints:
  GET    /api/v1/taxonomies/<name>/terms   — list (?parent_id=0 for roots, ?search=)
  POST   /api/v1/taxonomies/<name>/terms   — create (manage_taxonomies)
  GET    /api/v1/terms/<id>                — one (?include=children,parent)
  PUT    /api/v1/terms/<id>                — update (manage_taxonomies)
  DELETE /api/v1/terms/<id>                — delete a term without children
"""

from flask import Blueprint, g, jsonify, request

from sitecms.blueprints import int_arg, paginated, parse_include, parse_pagination
from sitecms.middleware.permission_required import require_permission
from sitecms.services import term_service
from sitecms.utils.helpers import commit, json_body, serialize_record

terms_bp = Blueprint("terms", __name__, url_prefix="/api/v1")


@terms_bp.route("/taxonomies/<string:taxonomy>/terms", methods=["GET"])
@require_permission("view_dashboard")
def list_terms(taxonomy):
    page, per_page = parse_pagination()
    items, total = term_service.list_terms(
        g.site.id, taxonomy,
        parent_id=int_arg("parent_id", None),
        search=request.args.get("search"),
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return jsonify(paginated([serialize_record(t) for t in items], total, page, per_page)), 200


@terms_bp.route("/taxonomies/<string:taxonomy>/terms", methods=["POST"])
@require_permission("manage_taxonomies")
def create_term(taxonomy):
    term = term_service.create_term(g.site.id, taxonomy, json_body())
    commit()
    return jsonify(serialize_record(term)), 201


@terms_bp.route("/terms/<int:term_id>", methods=["GET"])
@require_permission("view_dashboard")
def get_term(term_id):
    includes = parse_include(term_service.TERM_INCLUDES)
    term = term_service.get_term(g.site.id, term_id)
    return jsonify(term_service.expand_term(g.site.id, term, includes)), 200


@terms_bp.route("/terms/<int:term_id>", methods=["PUT"])
@require_permission("manage_taxonomies")
def update_term(term_id):
    term = term_service.update_term(g.site.id, term_id, json_body())
    commit()
    return jsonify(serialize_record(term)), 200


@terms_bp.route("/terms/<int:term_id>", methods=["DELETE"])
@require_permission("manage_taxonomies")
def delete_term(term_id):
    term_service.delete_term(g.site.id, term_id)
    commit()
    return jsonify({"message": "Term deleted"}), 200
