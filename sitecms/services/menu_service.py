"""
Menu Service — menus, menu items and item meta.

Item writes validate the link variant through ``link_from_row`` and keep
parents inside the same menu. Reordering is applied item by item: each item
is committed on its own, so a bad entry never rolls back the good ones.
"""

import logging

from sitecms.core.exceptions import ConflictError, InUseError, NotFoundError, ValidationError
from sitecms.models import db
from sitecms.models.menu import MENU_ITEM_TARGETS
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.services.menu_hierarchy import LabelResolver, build_menu_tree, link_from_row
from sitecms.tenant import store_for
from sitecms.utils.helpers import parse_id, parse_int, parse_optional_id, validate_name

logger = logging.getLogger(__name__)

MENU_FIELDS = ("name", "display_name", "location", "description")
ITEM_FIELDS = (
    "menu_id", "type", "object_id", "url", "label", "parent_id", "menu_order",
    "target", "title_attr", "css_classes", "description",
)
_LINK_FIELDS = ("type", "object_id", "url", "label")
_TEXT_FIELDS = {"label": 255, "title_attr": 255, "css_classes": 255, "url": 1000}


def _menus(site_id):
    return store_for("menus", site_id)


def _items(site_id):
    return store_for("menu_items", site_id)


def _meta(site_id):
    return store_for("menu_item_meta", site_id)


# ═══════════════════════════════════════════════════════════════
# Menus
# ═══════════════════════════════════════════════════════════════
def list_menus(site_id):
    return _menus(site_id).find_all(order_by="name")


def get_menu(site_id, menu_id):
    return _menus(site_id).get(menu_id)


def _menu_values(store, data, partial, menu_id=None):
    values = {}
    if "name" in data or not partial:
        values["name"] = validate_name(data.get("name"))
        existing = store.find_one(name=values["name"])
        if existing is not None and existing["id"] != menu_id:
            raise ConflictError("Menu", "name", values["name"])
    if "display_name" in data:
        values["display_name"] = data.get("display_name") or None
    if "location" in data:
        location = data.get("location") or None
        if location is not None:
            validate_name(location, "location")
            existing = store.find_one(location=location)
            if existing is not None and existing["id"] != menu_id:
                raise ConflictError("Menu", "location", location)
        values["location"] = location
    if "description" in data:
        values["description"] = data.get("description") or None
    return values


def create_menu(site_id, data):
    store = _menus(site_id)
    values = _menu_values(store, data, partial=False)
    values.setdefault("display_name", data.get("name"))
    menu = store.create(values)
    record_activity(
        "menu_created", "menu", entity_id=menu["id"], entity_name=menu["name"],
        changes_after=snapshot(menu, MENU_FIELDS), site_id=site_id,
    )
    return menu


def update_menu(site_id, menu_id, data):
    store = _menus(site_id)
    before = store.get(menu_id)
    after = store.update(menu_id, _menu_values(store, data, partial=True, menu_id=menu_id))
    record_activity(
        "menu_updated", "menu", entity_id=menu_id, entity_name=after["name"],
        changes_before=snapshot(before, MENU_FIELDS),
        changes_after=snapshot(after, MENU_FIELDS), site_id=site_id,
    )
    return after


def delete_menu(site_id, menu_id):
    """Delete a menu with all of its items and their meta."""
    store = _menus(site_id)
    menu = store.get(menu_id, for_update=True)
    item_ids = [i["id"] for i in _items(site_id).find_all({"menu_id": menu_id})]
    if item_ids:
        _meta(site_id).delete_where(item_id=item_ids)
        _items(site_id).delete_where(menu_id=menu_id)
    store.delete(menu_id)
    record_activity(
        "menu_deleted", "menu", entity_id=menu_id, entity_name=menu["name"],
        details=f"{len(item_ids)} items removed",
        changes_before=snapshot(menu, MENU_FIELDS), site_id=site_id,
    )


# ═══════════════════════════════════════════════════════════════
# Trees
# ═══════════════════════════════════════════════════════════════
def menu_tree(site_id, menu_id):
    """Resolved item tree of a menu."""
    _menus(site_id).get(menu_id)
    rows = _items(site_id).find_all({"menu_id": menu_id})
    meta_rows = _meta(site_id).find_all({"item_id": [r["id"] for r in rows]}) if rows else []
    roots = build_menu_tree(rows, meta_rows)
    return LabelResolver(site_id).serialize(roots)


def get_menu_by_location(site_id, location):
    menu = _menus(site_id).find_one(location=location)
    if menu is None:
        raise NotFoundError("Menu", location, site_id=site_id)
    return menu, menu_tree(site_id, menu["id"])


# ═══════════════════════════════════════════════════════════════
# Items
# ═══════════════════════════════════════════════════════════════
def list_items(site_id, menu_id):
    _menus(site_id).get(menu_id)
    return _items(site_id).find_all({"menu_id": menu_id}, order_by="menu_order")


def _check_item_parent(site_id, menu_id, parent_id, item_id=None):
    if parent_id is None:
        return
    items = _items(site_id)
    parent = items.find(parent_id)
    if parent is None or parent["menu_id"] != menu_id:
        raise ValidationError("parent_id must be an item of the same menu", field="parent_id")
    if item_id is None:
        return
    seen = set()
    node = parent
    while node is not None:
        if node["id"] == item_id:
            raise ValidationError("A menu item cannot be its own ancestor", field="parent_id")
        if node["id"] in seen:
            break
        seen.add(node["id"])
        node = items.find(node["parent_id"]) if node["parent_id"] else None


def _item_values(data):
    values = {}
    for name, limit in _TEXT_FIELDS.items():
        if name in data:
            value = data[name]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", field=name)
            if value and len(value) > limit:
                raise ValidationError(f"{name} must be at most {limit} characters", field=name)
            values[name] = value or None
    if "description" in data:
        values["description"] = data.get("description") or None
    if "target" in data:
        if data["target"] not in MENU_ITEM_TARGETS:
            raise ValidationError(f"target must be one of {', '.join(MENU_ITEM_TARGETS)}", field="target")
        values["target"] = data["target"]
    if "menu_order" in data:
        values["menu_order"] = parse_int(data["menu_order"], "menu_order", minimum=0)
    return values


def _normalised_link(row):
    """Variant-checked link columns: object links drop url, custom links drop object_id."""
    link = link_from_row(row)
    if link.kind == "custom":
        return {"type": "custom", "url": link.url, "object_id": None}
    return {"type": link.kind, "object_id": link.object_id, "url": None}


def create_item(site_id, menu_id, data):
    _menus(site_id).get(menu_id)
    items = _items(site_id)
    values = _item_values(data)
    values.update(_normalised_link({**data, **values}))
    parent_id = parse_optional_id(data.get("parent_id"), "parent_id")
    _check_item_parent(site_id, menu_id, parent_id)
    values["parent_id"] = parent_id
    values["menu_id"] = menu_id
    if "menu_order" not in values:
        highest = items.max_value("menu_order", {"menu_id": menu_id})
        values["menu_order"] = 0 if highest is None else highest + 1
    item = items.create(values)
    record_activity(
        "menu_item_created", "menu_item", entity_id=item["id"], entity_name=item["label"],
        changes_after=snapshot(item, ITEM_FIELDS), site_id=site_id,
    )
    return item


def update_item(site_id, item_id, data):
    items = _items(site_id)
    before = items.get(item_id)
    values = _item_values(data)
    if any(name in data for name in _LINK_FIELDS):
        merged = {**before, **{k: data[k] for k in _LINK_FIELDS if k in data}}
        values.update(_normalised_link(merged))
    if "parent_id" in data:
        parent_id = parse_optional_id(data.get("parent_id"), "parent_id")
        if parent_id == item_id:
            raise ValidationError("A menu item cannot be its own parent", field="parent_id")
        _check_item_parent(site_id, before["menu_id"], parent_id, item_id=item_id)
        values["parent_id"] = parent_id
    after = items.update(item_id, values) if values else before
    record_activity(
        "menu_item_updated", "menu_item", entity_id=item_id, entity_name=after["label"],
        changes_before=snapshot(before, ITEM_FIELDS),
        changes_after=snapshot(after, ITEM_FIELDS), site_id=site_id,
    )
    return after


def delete_item(site_id, item_id):
    items = _items(site_id)
    item = items.get(item_id, for_update=True)
    children = items.count({"parent_id": item_id})
    if children:
        raise InUseError("MenuItem", children, "child items")
    _meta(site_id).delete_where(item_id=item_id)
    items.delete(item_id)
    record_activity(
        "menu_item_deleted", "menu_item", entity_id=item_id, entity_name=item["label"],
        changes_before=snapshot(item, ITEM_FIELDS), site_id=site_id,
    )


# ── Meta ─────────────────────────────────────────────────────────────────────

def get_item_meta(site_id, item_id):
    _items(site_id).get(item_id)
    return {m["meta_key"]: m["meta_value"] for m in _meta(site_id).find_all({"item_id": item_id})}


def set_item_meta(site_id, item_id, key, value):
    item = _items(site_id).get(item_id)
    if not isinstance(key, str) or not key or len(key) > 100:
        raise ValidationError("meta key must be 1-100 characters", field="meta_key")
    meta = _meta(site_id)
    existing = meta.find_one(item_id=item_id, meta_key=key)
    if existing is None:
        meta.create({"item_id": item_id, "meta_key": key, "meta_value": value})
        before = None
    else:
        meta.update(existing["id"], {"meta_value": value})
        before = {key: existing["meta_value"]}
    record_activity(
        "menu_item_updated", "menu_item", entity_id=item_id, entity_name=item["label"],
        details=f"meta {key} set", changes_before=before, changes_after={key: value},
        site_id=site_id,
    )
    return {key: value}


def delete_item_meta(site_id, item_id, key):
    item = _items(site_id).get(item_id)
    meta = _meta(site_id)
    existing = meta.find_one(item_id=item_id, meta_key=key)
    if existing is None:
        raise NotFoundError("MenuItemMeta", key, site_id=site_id)
    meta.delete(existing["id"])
    record_activity(
        "menu_item_updated", "menu_item", entity_id=item_id, entity_name=item["label"],
        details=f"meta {key} removed", changes_before={key: existing["meta_value"]},
        site_id=site_id,
    )


# ── Reorder ──────────────────────────────────────────────────────────────────

def _reorder_one(site_id, menu_id, entry):
    if not isinstance(entry, dict):
        raise ValidationError("Each entry must be an object", field="items")
    item_id = parse_id(entry.get("id"), "id")
    items = _items(site_id)
    item = items.find(item_id)
    if item is None or item["menu_id"] != menu_id:
        raise NotFoundError("MenuItem", item_id, site_id=site_id)
    values = _item_values({"menu_order": entry.get("menu_order", item["menu_order"])})
    if "parent_id" in entry:
        parent_id = parse_optional_id(entry["parent_id"], "parent_id")
        if parent_id == item_id:
            raise ValidationError("A menu item cannot be its own parent", field="parent_id")
        _check_item_parent(site_id, menu_id, parent_id, item_id=item_id)
        values["parent_id"] = parent_id
    items.update(item_id, values)
    return item_id


def reorder_items(site_id, menu_id, batch):
    """Apply ``[{id, menu_order, parent_id?}, …]`` entry by entry.

    Each applied entry is committed immediately; a failing entry is rolled
    back alone and reported. Returns ``{"applied": [...], "failed": [...]}``.
    """
    _menus(site_id).get(menu_id)
    if not isinstance(batch, list) or not batch:
        raise ValidationError("items must be a non-empty list", field="items")

    applied, failed = [], []
    for entry in batch:
        try:
            applied.append(_reorder_one(site_id, menu_id, entry))
            db.session.commit()
        except (ValidationError, NotFoundError) as exc:
            db.session.rollback()
            failed.append({"id": entry.get("id") if isinstance(entry, dict) else None,
                           "error": str(exc)})
    if applied:
        record_activity(
            "menu_items_reordered", "menu", entity_id=menu_id,
            details=f"{len(applied)} applied, {len(failed)} failed",
            changes_after={"applied": applied}, site_id=site_id,
        )
    logger.info("Reorder on menu %s: %d applied, %d failed", menu_id, len(applied), len(failed))
    return {"applied": applied, "failed": failed}
