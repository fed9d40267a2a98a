"""
Term Service — terms of a taxonomy, kept as a forest.

Tree rules:
  * a parent must be a term of the same taxonomy, and only hierarchical
    taxonomies accept parents
  * a term can never become its own ancestor
  * a term with children cannot be deleted (remove or re-parent them first)
"""

import logging

from sitecms.core.exceptions import InUseError, ValidationError
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.services.content_types import content_types
from sitecms.tenant import store_for
from sitecms.utils.helpers import parse_optional_id, require_text, resolve_slug, serialize_record

logger = logging.getLogger(__name__)

TERM_FIELDS = ("taxonomy", "name", "slug", "description", "parent_id", "image_id", "meta")
TERM_INCLUDES = frozenset({"children", "parent"})


def _terms(site_id):
    return store_for("terms", site_id)


def list_terms(site_id, taxonomy_name, *, parent_id=None, search=None, limit=None, offset=0):
    """Terms of one taxonomy ordered by name. Returns (items, total)."""
    content_types.taxonomy_for(site_id, taxonomy_name)
    where = {"taxonomy": taxonomy_name}
    if parent_id is not None:
        where["parent_id"] = parent_id or None
    search_spec = (("name", "slug"), search) if search else None
    store = _terms(site_id)
    total = store.count(where, search=search_spec)
    items = store.find_all(where, order_by="name", limit=limit, offset=offset, search=search_spec)
    return items, total


def get_term(site_id, term_id):
    return _terms(site_id).get(term_id)


def _check_parent(site_id, taxonomy, parent_id, term_id=None):
    """Validate *parent_id* for a term of *taxonomy* (``term_id`` when updating)."""
    if parent_id is None:
        return
    if not taxonomy["is_hierarchical"]:
        raise ValidationError(f"Taxonomy '{taxonomy['name']}' is not hierarchical", field="parent_id")
    store = _terms(site_id)
    # Held until commit; delete_term takes the same lock before counting children
    parent = store.find(parent_id, for_update=True)
    if parent is None or parent["taxonomy"] != taxonomy["name"]:
        raise ValidationError("parent_id must be a term of the same taxonomy", field="parent_id")
    if term_id is None:
        return
    # Walk up from the new parent; meeting the term itself means a cycle.
    seen = set()
    node = parent
    while node is not None:
        if node["id"] == term_id:
            raise ValidationError("A term cannot be its own ancestor", field="parent_id")
        if node["id"] in seen:
            break
        seen.add(node["id"])
        node = store.find(node["parent_id"]) if node["parent_id"] else None


def _term_values(data, partial):
    values = {}
    if "name" in data or not partial:
        values["name"] = require_text(data, "name", 200)
    if "description" in data:
        values["description"] = data.get("description") or None
    if "image_id" in data:
        values["image_id"] = parse_optional_id(data.get("image_id"), "image_id")
    if "meta" in data:
        if not isinstance(data["meta"], dict):
            raise ValidationError("meta must be an object", field="meta")
        values["meta"] = data["meta"]
    return values


def create_term(site_id, taxonomy_name, data):
    taxonomy = content_types.taxonomy_for(site_id, taxonomy_name, for_update=True)
    store = _terms(site_id)
    values = _term_values(data, partial=False)
    parent_id = parse_optional_id(data.get("parent_id"), "parent_id")
    _check_parent(site_id, taxonomy, parent_id)
    values.update(
        taxonomy=taxonomy_name,
        parent_id=parent_id,
        slug=resolve_slug(store, data.get("slug"), values["name"], taxonomy=taxonomy_name),
    )
    term = store.create(values)
    record_activity(
        "term_created", "term", entity_id=term["id"], entity_name=term["name"],
        changes_after=snapshot(term, TERM_FIELDS), site_id=site_id,
    )
    return term


def update_term(site_id, term_id, data):
    store = _terms(site_id)
    before = store.get(term_id)
    taxonomy = content_types.taxonomy_for(site_id, before["taxonomy"])
    values = _term_values(data, partial=True)
    if "parent_id" in data:
        parent_id = parse_optional_id(data.get("parent_id"), "parent_id")
        if parent_id == term_id:
            raise ValidationError("A term cannot be its own parent", field="parent_id")
        _check_parent(site_id, taxonomy, parent_id, term_id=term_id)
        values["parent_id"] = parent_id
    if "slug" in data:
        values["slug"] = resolve_slug(
            store, data.get("slug"), values.get("name", before["name"]),
            exclude_id=term_id, taxonomy=before["taxonomy"],
        )
    after = store.update(term_id, values)
    record_activity(
        "term_updated", "term", entity_id=term_id, entity_name=after["name"],
        changes_before=snapshot(before, TERM_FIELDS),
        changes_after=snapshot(after, TERM_FIELDS), site_id=site_id,
    )
    return after


def delete_term(site_id, term_id):
    """Delete a leaf term and its post assignments."""
    store = _terms(site_id)
    term = store.get(term_id, for_update=True)
    children = store.count({"parent_id": term_id})
    if children:
        raise InUseError("Term", children, "child terms")
    detached = store_for("post_terms", site_id).delete_where(term_id=term_id)
    store.delete(term_id)
    logger.info("Deleted term %s (%s) on site %s, %d assignments removed",
                term_id, term["slug"], site_id, detached)
    record_activity(
        "term_deleted", "term", entity_id=term_id, entity_name=term["name"],
        changes_before=snapshot(term, TERM_FIELDS), site_id=site_id,
    )


def recount_terms(site_id, term_ids):
    """Refresh ``count`` of the given terms from their post assignments."""
    terms = _terms(site_id)
    links = store_for("post_terms", site_id)
    for term_id in set(term_ids):
        if terms.find(term_id) is not None:
            terms.update(term_id, {"count": links.count({"term_id": term_id})})


def expand_term(site_id, term, includes):
    """Add the requested ``children`` / ``parent`` expansions to *term*."""
    out = serialize_record(term)
    store = _terms(site_id)
    if "children" in includes:
        out["children"] = [
            serialize_record(c) for c in store.find_all({"parent_id": term["id"]}, order_by="name")
        ]
    if "parent" in includes:
        out["parent"] = serialize_record(store.find(term["parent_id"])) if term["parent_id"] else None
    return out


def terms_by_ids(site_id, term_ids):
    """Map of id -> term; an unknown id is a validation error on ``terms``."""
    ids = list(dict.fromkeys(term_ids))
    found = {t["id"]: t for t in _terms(site_id).find_all({"id": ids})} if ids else {}
    missing = [i for i in ids if i not in found]
    if missing:
        raise ValidationError(f"Unknown term id {missing[0]}", field="terms")
    return found
