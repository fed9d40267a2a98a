"""
Content Type Registry — post types and taxonomies per site.

Holds the shape rules for content: which optional capabilities a post type
supports (and therefore which payload fields a write may carry) and which
taxonomies attach to which post types.

Built-ins (post, page, category, tag) can be edited but never renamed or
deleted. Custom definitions can be deleted only while nothing references
them; the reference count is read under a row lock on the definition, in
the same transaction as the delete.
"""

import logging

from sitecms.core.exceptions import (
    ConflictError,
    ImmutableBuiltinError,
    InUseError,
    NotFoundError,
    ValidationError,
)
from sitecms.models.content import (
    BUILTIN_POST_TYPES,
    BUILTIN_TAXONOMIES,
    CAPABILITIES,
    URL_STRUCTURES,
)
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.tenant import store_for
from sitecms.utils.helpers import parse_int, require_text, slugify, validate_name

logger = logging.getLogger(__name__)

# Payload fields gated by each capability
CAPABILITY_FIELDS = {
    "title": ("title",),
    "body": ("body",),
    "excerpt": ("excerpt",),
    "featured_image": ("featured_image_id",),
    "custom_fields": ("custom_fields",),
    "categories": ("terms",),
}

POST_TYPE_FIELDS = (
    "name", "label", "singular_label", "description", "is_hierarchical",
    "supports", "taxonomies", "menu_icon", "menu_position", "url_structure",
)
TAXONOMY_FIELDS = (
    "name", "label", "singular_label", "description", "is_hierarchical", "post_types",
)

DEFAULT_POST_TYPES = (
    {
        "name": "post", "label": "Posts", "singular_label": "Post",
        "is_hierarchical": False,
        "supports": ["title", "body", "excerpt", "featured_image", "custom_fields", "categories"],
        "taxonomies": ["category", "tag"],
        "menu_icon": "document", "menu_position": 5,
    },
    {
        "name": "page", "label": "Pages", "singular_label": "Page",
        "is_hierarchical": True,
        "supports": ["title", "body", "featured_image", "custom_fields"],
        "taxonomies": [],
        "menu_icon": "file", "menu_position": 20,
    },
)

DEFAULT_TAXONOMIES = (
    {"name": "category", "label": "Categories", "singular_label": "Category",
     "is_hierarchical": True, "post_types": ["post"]},
    {"name": "tag", "label": "Tags", "singular_label": "Tag",
     "is_hierarchical": False, "post_types": ["post"]},
)

DEFAULT_SETTINGS = (
    ("site_title", "My Site", "general"),
    ("site_tagline", "", "general"),
    ("posts_per_page", 10, "reading"),
    ("max_revisions", 10, "writing"),
    ("date_format", "F j, Y", "general"),
    ("time_format", "g:i a", "general"),
    ("timezone", "UTC", "general"),
)


def _string_list(value, field: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValidationError(f"{field} must be a list of names", field=field)
    return list(dict.fromkeys(value))


class ContentTypeRegistry:
    """Post type / taxonomy definitions of each site, read through the store registry."""

    # ═══════════════════════════════════════════════════════════════
    # Lookups
    # ═══════════════════════════════════════════════════════════════
    def post_type_for(self, site_id: int, name: str, for_update: bool = False) -> dict:
        """Post type *name*; ``for_update`` locks the row until the transaction ends."""
        record = store_for("post_types", site_id).find_one(for_update=for_update, name=name)
        if record is None:
            raise NotFoundError("PostType", name, site_id=site_id)
        return record

    def taxonomy_for(self, site_id: int, name: str, for_update: bool = False) -> dict:
        record = store_for("taxonomies", site_id).find_one(for_update=for_update, name=name)
        if record is None:
            raise NotFoundError("Taxonomy", name, site_id=site_id)
        return record

    @staticmethod
    def supports(post_type: dict, capability: str) -> bool:
        if capability not in CAPABILITIES:
            raise ValueError(f"Unknown capability {capability!r}")
        return capability in (post_type.get("supports") or [])

    def filter_payload(self, post_type: dict, payload: dict) -> dict:
        """Drop fields the post type does not support.

        Unsupported fields are discarded silently rather than rejected:
        older clients send every field regardless of the type.
        """
        out = dict(payload)
        dropped = []
        for capability, fields in CAPABILITY_FIELDS.items():
            if self.supports(post_type, capability):
                continue
            for name in fields:
                if name in out:
                    out.pop(name)
                    dropped.append(name)
        if not post_type.get("is_hierarchical") and "parent_id" in out:
            out.pop("parent_id")
            dropped.append("parent_id")
        if dropped:
            logger.debug("Dropped unsupported fields %s for post type %s", dropped, post_type["name"])
        return out

    def taxonomies_for(self, site_id: int, post_type_name: str) -> list[dict]:
        """Taxonomies attached to a post type, from either side of the link."""
        post_type = self.post_type_for(site_id, post_type_name)
        attached = set(post_type.get("taxonomies") or [])
        return [
            tax for tax in store_for("taxonomies", site_id).find_all(order_by="name")
            if tax["name"] in attached or post_type_name in (tax.get("post_types") or [])
        ]

    def list_post_types(self, site_id: int) -> list[dict]:
        return store_for("post_types", site_id).find_all(order_by=["menu_position", "name"])

    def list_taxonomies(self, site_id: int) -> list[dict]:
        return store_for("taxonomies", site_id).find_all(order_by="name")

    # ═══════════════════════════════════════════════════════════════
    # Post types
    # ═══════════════════════════════════════════════════════════════
    def _post_type_values(self, site_id: int, data: dict, partial: bool) -> dict:
        values = {}
        if "name" in data or not partial:
            values["name"] = validate_name(data.get("name"))
        if "label" in data or not partial:
            values["label"] = require_text(data, "label", 100)
        if "singular_label" in data:
            values["singular_label"] = data.get("singular_label") or None
        if "description" in data:
            values["description"] = data.get("description") or None
        if "is_hierarchical" in data:
            values["is_hierarchical"] = bool(data["is_hierarchical"])
        if "supports" in data:
            supports = _string_list(data["supports"], "supports")
            unknown = sorted(set(supports) - set(CAPABILITIES))
            if unknown:
                raise ValidationError(f"Unknown capabilities: {', '.join(unknown)}", field="supports")
            values["supports"] = supports
        elif not partial:
            values["supports"] = ["title", "body"]
        if "taxonomies" in data:
            names = _string_list(data["taxonomies"], "taxonomies")
            known = {t["name"] for t in store_for("taxonomies", site_id).find_all(where={"name": names})}
            missing = sorted(set(names) - known)
            if missing:
                raise ValidationError(f"Unknown taxonomies: {', '.join(missing)}", field="taxonomies")
            values["taxonomies"] = names
        if "menu_icon" in data:
            values["menu_icon"] = data.get("menu_icon") or None
        if "menu_position" in data:
            values["menu_position"] = parse_int(data["menu_position"], "menu_position")
        if "url_structure" in data:
            if data["url_structure"] not in URL_STRUCTURES:
                raise ValidationError(
                    f"url_structure must be one of {', '.join(URL_STRUCTURES)}", field="url_structure",
                )
            values["url_structure"] = data["url_structure"]
        return values

    def create_post_type(self, site_id: int, data: dict) -> dict:
        store = store_for("post_types", site_id)
        values = self._post_type_values(site_id, data, partial=False)
        if store.find_one(name=values["name"]) is not None:
            raise ConflictError("PostType", "name", values["name"])
        values["is_builtin"] = False
        record = store.create(values)
        record_activity(
            "post_type_created", "post_type", entity_id=record["id"], entity_name=record["label"],
            changes_after=snapshot(record, POST_TYPE_FIELDS), site_id=site_id,
        )
        return record

    def update_post_type(self, site_id: int, post_type_id: int, data: dict) -> dict:
        store = store_for("post_types", site_id)
        before = store.get(post_type_id)
        values = self._post_type_values(site_id, data, partial=True)
        new_name = values.get("name", before["name"])
        if new_name != before["name"]:
            if before["is_builtin"]:
                raise ImmutableBuiltinError("post type", before["name"])
            if store.find_one(name=new_name) is not None:
                raise ConflictError("PostType", "name", new_name)
        after = store.update(post_type_id, values)
        if new_name != before["name"]:
            self._rename_post_type_references(site_id, before["name"], new_name)
        record_activity(
            "post_type_updated", "post_type", entity_id=post_type_id, entity_name=after["label"],
            changes_before=snapshot(before, POST_TYPE_FIELDS),
            changes_after=snapshot(after, POST_TYPE_FIELDS), site_id=site_id,
        )
        return after

    @staticmethod
    def _rename_post_type_references(site_id: int, old: str, new: str) -> None:
        moved = store_for("posts", site_id).update_where({"post_type": new}, post_type=old)
        taxonomies = store_for("taxonomies", site_id)
        for tax in taxonomies.find_all():
            linked = tax.get("post_types") or []
            if old in linked:
                taxonomies.update(tax["id"], {"post_types": [new if n == old else n for n in linked]})
        logger.info("Renamed post type %s -> %s on site %s (%d posts moved)", old, new, site_id, moved)

    def delete_post_type(self, site_id: int, post_type_id: int) -> None:
        store = store_for("post_types", site_id)
        record = store.get(post_type_id, for_update=True)
        if record["is_builtin"] or record["name"] in BUILTIN_POST_TYPES:
            raise ImmutableBuiltinError("post type", record["name"])
        in_use = store_for("posts", site_id).count({"post_type": record["name"]})
        if in_use:
            raise InUseError("PostType", in_use, "posts")
        store.delete(post_type_id)
        record_activity(
            "post_type_deleted", "post_type", entity_id=post_type_id, entity_name=record["label"],
            changes_before=snapshot(record, POST_TYPE_FIELDS), site_id=site_id,
        )

    # ═══════════════════════════════════════════════════════════════
    # Taxonomies
    # ═══════════════════════════════════════════════════════════════
    def _taxonomy_values(self, site_id: int, data: dict, partial: bool) -> dict:
        values = {}
        if "name" in data or not partial:
            values["name"] = validate_name(data.get("name"))
        if "label" in data or not partial:
            values["label"] = require_text(data, "label", 100)
        if "singular_label" in data:
            values["singular_label"] = data.get("singular_label") or None
        if "description" in data:
            values["description"] = data.get("description") or None
        if "is_hierarchical" in data:
            values["is_hierarchical"] = bool(data["is_hierarchical"])
        if "post_types" in data:
            names = _string_list(data["post_types"], "post_types")
            known = {p["name"] for p in store_for("post_types", site_id).find_all(where={"name": names})}
            missing = sorted(set(names) - known)
            if missing:
                raise ValidationError(f"Unknown post types: {', '.join(missing)}", field="post_types")
            values["post_types"] = names
        return values

    def create_taxonomy(self, site_id: int, data: dict) -> dict:
        store = store_for("taxonomies", site_id)
        values = self._taxonomy_values(site_id, data, partial=False)
        if store.find_one(name=values["name"]) is not None:
            raise ConflictError("Taxonomy", "name", values["name"])
        values["is_builtin"] = False
        record = store.create(values)
        record_activity(
            "taxonomy_created", "taxonomy", entity_id=record["id"], entity_name=record["label"],
            changes_after=snapshot(record, TAXONOMY_FIELDS), site_id=site_id,
        )
        return record

    def update_taxonomy(self, site_id: int, taxonomy_id: int, data: dict) -> dict:
        store = store_for("taxonomies", site_id)
        before = store.get(taxonomy_id)
        values = self._taxonomy_values(site_id, data, partial=True)
        new_name = values.get("name", before["name"])
        if new_name != before["name"]:
            if before["is_builtin"]:
                raise ImmutableBuiltinError("taxonomy", before["name"])
            if store.find_one(name=new_name) is not None:
                raise ConflictError("Taxonomy", "name", new_name)
        after = store.update(taxonomy_id, values)
        if new_name != before["name"]:
            store_for("terms", site_id).update_where({"taxonomy": new_name}, taxonomy=before["name"])
            store_for("post_terms", site_id).update_where({"taxonomy": new_name}, taxonomy=before["name"])
            self._unlink_taxonomy(site_id, before["name"], replacement=new_name)
        record_activity(
            "taxonomy_updated", "taxonomy", entity_id=taxonomy_id, entity_name=after["label"],
            changes_before=snapshot(before, TAXONOMY_FIELDS),
            changes_after=snapshot(after, TAXONOMY_FIELDS), site_id=site_id,
        )
        return after

    @staticmethod
    def _unlink_taxonomy(site_id: int, name: str, replacement: str | None = None) -> None:
        post_types = store_for("post_types", site_id)
        for pt in post_types.find_all():
            linked = pt.get("taxonomies") or []
            if name in linked:
                updated = [replacement if n == name else n for n in linked if replacement or n != name]
                post_types.update(pt["id"], {"taxonomies": updated})

    def delete_taxonomy(self, site_id: int, taxonomy_id: int) -> None:
        store = store_for("taxonomies", site_id)
        record = store.get(taxonomy_id, for_update=True)
        if record["is_builtin"] or record["name"] in BUILTIN_TAXONOMIES:
            raise ImmutableBuiltinError("taxonomy", record["name"])
        in_use = store_for("terms", site_id).count({"taxonomy": record["name"]})
        if in_use:
            raise InUseError("Taxonomy", in_use, "terms")
        store.delete(taxonomy_id)
        self._unlink_taxonomy(site_id, record["name"])
        record_activity(
            "taxonomy_deleted", "taxonomy", entity_id=taxonomy_id, entity_name=record["label"],
            changes_before=snapshot(record, TAXONOMY_FIELDS), site_id=site_id,
        )

    # ═══════════════════════════════════════════════════════════════
    # Site defaults
    # ═══════════════════════════════════════════════════════════════
    def install_defaults(self, site_id: int) -> None:
        """Create built-in types, taxonomies, the default category and settings. Idempotent."""
        taxonomies = store_for("taxonomies", site_id)
        for definition in DEFAULT_TAXONOMIES:
            if taxonomies.find_one(name=definition["name"]) is None:
                taxonomies.create({**definition, "is_builtin": True})

        post_types = store_for("post_types", site_id)
        for definition in DEFAULT_POST_TYPES:
            if post_types.find_one(name=definition["name"]) is None:
                post_types.create({**definition, "is_builtin": True})

        terms = store_for("terms", site_id)
        if terms.find_one(taxonomy="category", slug="uncategorized") is None:
            terms.create({"taxonomy": "category", "name": "Uncategorized", "slug": slugify("Uncategorized")})

        settings = store_for("settings", site_id)
        for key, value, group in DEFAULT_SETTINGS:
            if settings.find_one(key=key) is None:
                settings.create({"key": key, "value": value, "group": group})
        logger.info("Installed content defaults for site %s", site_id)


content_types = ContentTypeRegistry()
