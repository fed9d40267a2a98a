"""
Menus Blueprint — navigation menus, their items and item meta.

Endpoints:
  GET    /api/v1/menus                          — list (view_dashboard)
  POST   /api/v1/menus                          — create (manage_menus)
  GET    /api/v1/menus/<id>                     — one
  PUT    /api/v1/menus/<id>                     — update (manage_menus)
  DELETE /api/v1/menus/<id>                     — delete with items
  GET    /api/v1/menus/<id>/tree                — resolved item tree
  GET    /api/v1/menus/location/<location>      — menu + tree assigned to a theme location
  GET    /api/v1/menus/<id>/items               — flat item list
  POST   /api/v1/menus/<id>/items               — add item (manage_menus)
  PUT    /api/v1/menus/<id>/items/reorder       — batch order/parent change
  PUT    /api/v1/menu-items/<id>                — update item
  DELETE /api/v1/menu-items/<id>                — delete item without children
  GET    /api/v1/menu-items/<id>/meta           — item meta map
  PUT    /api/v1/menu-items/<id>/meta/<key>     — set one meta value
  DELETE /api/v1/menu-items/<id>/meta/<key>     — remove one meta value

Reorder answers 200 when every entry applied, 207 when some failed and 400
when none applied; the body always lists ``applied`` and ``failed``.
"""

from flask import Blueprint, g, jsonify

from sitecms.middleware.permission_required import require_permission
from sitecms.services import menu_service
from sitecms.utils.errors import E, api_error
from sitecms.utils.helpers import commit, json_body, serialize_record

menus_bp = Blueprint("menus", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════
# Menus
# ═══════════════════════════════════════════════════════════════
@menus_bp.route("/menus", methods=["GET"])
@require_permission("view_dashboard")
def list_menus():
    menus = menu_service.list_menus(g.site.id)
    return jsonify({"items": [serialize_record(m) for m in menus]}), 200


@menus_bp.route("/menus", methods=["POST"])
@require_permission("manage_menus")
def create_menu():
    menu = menu_service.create_menu(g.site.id, json_body())
    commit()
    return jsonify(serialize_record(menu)), 201


@menus_bp.route("/menus/<int:menu_id>", methods=["GET"])
@require_permission("view_dashboard")
def get_menu(menu_id):
    return jsonify(serialize_record(menu_service.get_menu(g.site.id, menu_id))), 200


@menus_bp.route("/menus/<int:menu_id>", methods=["PUT"])
@require_permission("manage_menus")
def update_menu(menu_id):
    menu = menu_service.update_menu(g.site.id, menu_id, json_body())
    commit()
    return jsonify(serialize_record(menu)), 200


@menus_bp.route("/menus/<int:menu_id>", methods=["DELETE"])
@require_permission("manage_menus")
def delete_menu(menu_id):
    menu_service.delete_menu(g.site.id, menu_id)
    commit()
    return jsonify({"message": "Menu deleted"}), 200


@menus_bp.route("/menus/<int:menu_id>/tree", methods=["GET"])
@require_permission("view_dashboard")
def menu_tree(menu_id):
    menu = menu_service.get_menu(g.site.id, menu_id)
    tree = menu_service.menu_tree(g.site.id, menu_id)
    return jsonify({"menu": serialize_record(menu), "items": tree}), 200


@menus_bp.route("/menus/location/<string:location>", methods=["GET"])
@require_permission("view_dashboard")
def menu_by_location(location):
    menu, tree = menu_service.get_menu_by_location(g.site.id, location)
    return jsonify({"menu": serialize_record(menu), "items": tree}), 200


# ═══════════════════════════════════════════════════════════════
# Items
# ═══════════════════════════════════════════════════════════════
@menus_bp.route("/menus/<int:menu_id>/items", methods=["GET"])
@require_permission("view_dashboard")
def list_items(menu_id):
    items = menu_service.list_items(g.site.id, menu_id)
    return jsonify({"items": [serialize_record(i) for i in items]}), 200


@menus_bp.route("/menus/<int:menu_id>/items", methods=["POST"])
@require_permission("manage_menus")
def create_item(menu_id):
    item = menu_service.create_item(g.site.id, menu_id, json_body())
    commit()
    return jsonify(serialize_record(item)), 201


@menus_bp.route("/menus/<int:menu_id>/items/reorder", methods=["PUT"])
@require_permission("manage_menus")
def reorder_items(menu_id):
    """Body: { "items": [ {"id": 3, "menu_order": 0, "parent_id": null}, ... ] }"""
    result = menu_service.reorder_items(g.site.id, menu_id, json_body().get("items"))
    commit()
    if not result["applied"]:
        return api_error(E.VALIDATION_ERROR, "No menu items were reordered",
                         field="items", details=result)
    return jsonify(result), 207 if result["failed"] else 200


@menus_bp.route("/menu-items/<int:item_id>", methods=["PUT"])
@require_permission("manage_menus")
def update_item(item_id):
    item = menu_service.update_item(g.site.id, item_id, json_body())
    commit()
    return jsonify(serialize_record(item)), 200


@menus_bp.route("/menu-items/<int:item_id>", methods=["DELETE"])
@require_permission("manage_menus")
def delete_item(item_id):
    menu_service.delete_item(g.site.id, item_id)
    commit()
    return jsonify({"message": "Menu item deleted"}), 200


# ── Meta ─────────────────────────────────────────────────────────────────────

@menus_bp.route("/menu-items/<int:item_id>/meta", methods=["GET"])
@require_permission("view_dashboard")
def get_item_meta(item_id):
    return jsonify(menu_service.get_item_meta(g.site.id, item_id)), 200


@menus_bp.route("/menu-items/<int:item_id>/meta/<string:key>", methods=["PUT"])
@require_permission("manage_menus")
def set_item_meta(item_id, key):
    """Body: { "value": <any JSON value> }"""
    meta = menu_service.set_item_meta(g.site.id, item_id, key, json_body().get("value"))
    commit()
    return jsonify(meta), 200


@menus_bp.route("/menu-items/<int:item_id>/meta/<string:key>", methods=["DELETE"])
@require_permission("manage_menus")
def delete_item_meta(item_id, key):
    menu_service.delete_item_meta(g.site.id, item_id, key)
    commit()
    return jsonify({"message": "Meta removed"}), 200
