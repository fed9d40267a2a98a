"""
Posts Blueprint — posts of every post type on the current site.

Endpoints:
  GET    /api/v1/posts                 — list (?post_type=&status=&author_id=&search=)
  POST   /api/v1/posts                 — create (create_posts)
  GET    /api/v1/posts/<id>            — one (?include=author,terms,children,parent,featured_image)
  PUT    /api/v1/posts/<id>            — update (owner, or manage_others_posts)
  DELETE /api/v1/posts/<id>            — delete permanently (can_delete / can_delete_others)
  POST   /api/v1/posts/<id>/trash      — move to trash
  POST   /api/v1/posts/<id>/restore    — restore from trash to the previous status
  GET    /api/v1/posts/<id>/revisions  — saved revisions, newest first
  POST   /api/v1/posts/<id>/revisions/<rev>/restore — copy a revision back onto the post
  POST   /api/v1/posts/process-scheduled — publish scheduled posts that are due (can_publish)

Ownership and publishing rules are enforced by post_service against the
PermissionSet resolved for the request (``g.permissions``).
"""

from flask import Blueprint, g, jsonify, request

from sitecms.blueprints import int_arg, paginated, parse_include, parse_pagination
from sitecms.core.exceptions import NotFoundError
from sitecms.middleware.permission_required import require_permission
from sitecms.services import post_service
from sitecms.utils.helpers import commit, json_body, serialize_record

posts_bp = Blueprint("posts", __name__, url_prefix="/api/v1/posts")


@posts_bp.route("", methods=["GET"])
@require_permission("view_dashboard")
def list_posts():
    page, per_page = parse_pagination()
    items, total = post_service.list_posts(
        g.site.id, g.principal, g.permissions,
        post_type=request.args.get("post_type"),
        status=request.args.get("status"),
        author_id=int_arg("author_id", None),
        search=request.args.get("search"),
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    body = paginated([post_service.serialize_post(p) for p in items], total, page, per_page)
    return jsonify(body), 200


@posts_bp.route("", methods=["POST"])
@require_permission("create_posts")
def create_post():
    post = post_service.create_post(g.site.id, g.principal, g.permissions, json_body())
    commit()
    return jsonify(post_service.serialize_post(post)), 201


@posts_bp.route("/<int:post_id>", methods=["GET"])
@require_permission("view_dashboard")
def get_post(post_id):
    includes = parse_include(post_service.POST_INCLUDES)
    post = post_service.get_post(g.site.id, post_id)
    if post["author_id"] != g.principal.user_id and not g.permissions.has("view_others_posts"):
        raise NotFoundError("Post", post_id, site_id=g.site.id)
    return jsonify(post_service.expand_post(g.site.id, post, includes)), 200


@posts_bp.route("/<int:post_id>", methods=["PUT"])
@require_permission("create_posts")
def update_post(post_id):
    post = post_service.update_post(g.site.id, g.principal, g.permissions, post_id, json_body())
    commit()
    return jsonify(post_service.serialize_post(post)), 200


@posts_bp.route("/<int:post_id>", methods=["DELETE"])
@require_permission("create_posts")
def delete_post(post_id):
    post_service.delete_post(g.site.id, g.principal, g.permissions, post_id)
    commit()
    return jsonify({"message": "Post deleted"}), 200


@posts_bp.route("/<int:post_id>/trash", methods=["POST"])
@require_permission("create_posts")
def trash_post(post_id):
    post = post_service.trash_post(g.site.id, g.principal, g.permissions, post_id)
    commit()
    return jsonify(post_service.serialize_post(post)), 200


@posts_bp.route("/<int:post_id>/restore", methods=["POST"])
@require_permission("create_posts")
def restore_post(post_id):
    post = post_service.restore_post(g.site.id, g.principal, g.permissions, post_id)
    commit()
    return jsonify(post_service.serialize_post(post)), 200


@posts_bp.route("/<int:post_id>/revisions", methods=["GET"])
@require_permission("create_posts")
def list_revisions(post_id):
    revisions = post_service.list_revisions(g.site.id, g.principal, g.permissions, post_id)
    return jsonify({"items": [serialize_record(r) for r in revisions]}), 200


@posts_bp.route("/<int:post_id>/revisions/<int:revision_id>/restore", methods=["POST"])
@require_permission("create_posts")
def restore_revision(post_id, revision_id):
    post = post_service.restore_revision(
        g.site.id, g.principal, g.permissions, post_id, revision_id,
    )
    commit()
    return jsonify(post_service.serialize_post(post)), 200


@posts_bp.route("/process-scheduled", methods=["POST"])
@require_permission("can_publish")
def process_scheduled():
    published = post_service.publish_due_posts(g.site.id)
    commit()
    return jsonify({
        "published": len(published),
        "items": [post_service.serialize_post(p) for p in published],
    }), 200
