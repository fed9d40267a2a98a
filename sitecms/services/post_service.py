"""
Post Service — posts and pages of every post type.

Ownership rules (``perms`` is the caller's resolved PermissionSet):
  * editing someone else's post needs ``manage_others_posts``
  * deleting or trashing needs ``can_delete`` (own) / ``can_delete_others``
  * ``published`` / ``scheduled`` need ``can_publish``; without it the post
    is stored as ``pending``
  * changing ``author_id`` needs ``can_reassign``
  * listing other authors' posts needs ``view_others_posts``

Payloads pass through ``ContentTypeRegistry.filter_payload`` first, so
fields the post type does not support are dropped before validation.

Content edits keep the previous title/body/excerpt/custom_fields as a
revision (newest ``max_revisions`` per post). Scheduled posts are published
by ``publish_due_posts``, called from the API or the ``publish-scheduled``
CLI command.
"""

import logging
from datetime import datetime, timezone

from sitecms.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from sitecms.models import db
from sitecms.models.auth import Site, User
from sitecms.models.content import POST_STATUSES, POST_VISIBILITIES
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.services.content_types import content_types
from sitecms.services.term_service import recount_terms, terms_by_ids
from sitecms.tenant import store_for
from sitecms.utils.crypto import hash_password
from sitecms.utils.helpers import (
    parse_datetime,
    parse_id,
    parse_int,
    parse_optional_id,
    resolve_slug,
    serialize_record,
)

logger = logging.getLogger(__name__)

POST_FIELDS = (
    "post_type", "title", "slug", "body", "excerpt", "status", "visibility",
    "author_id", "parent_id", "featured_image_id", "custom_fields", "menu_order",
    "published_at", "scheduled_at",
)
POST_INCLUDES = frozenset({"author", "terms", "children", "parent", "featured_image"})
PUBLISHING_STATUSES = frozenset({"published", "scheduled"})
LIVE_STATUSES = tuple(s for s in POST_STATUSES if s != "trash")
PREVIOUS_STATUS_KEY = "_previous_status"
REVISION_FIELDS = ("title", "body", "excerpt", "custom_fields")
DEFAULT_MAX_REVISIONS = 10


def _posts(site_id):
    return store_for("posts", site_id)


def _revisions(site_id):
    return store_for("post_revisions", site_id)


def _now():
    return datetime.now(timezone.utc)


def serialize_post(post):
    """JSON-safe post; the password hash never leaves the service."""
    out = serialize_record(post, exclude=("password",))
    out["has_password"] = bool(post.get("password"))
    return out


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════
def list_posts(site_id, principal, perms, *, post_type=None, status=None, author_id=None,
               search=None, limit=None, offset=0):
    """Posts visible to *principal*. Returns (items, total).

    Trashed posts are listed only when ``status="trash"`` is asked for.
    """
    where = {}
    if post_type:
        where["post_type"] = post_type
    if status:
        if status not in POST_STATUSES:
            raise ValidationError(f"Unknown status '{status}'", field="status")
        where["status"] = status
    else:
        where["status"] = LIVE_STATUSES
    if not perms.has("view_others_posts"):
        where["author_id"] = principal.user_id
    elif author_id is not None:
        where["author_id"] = author_id

    search_spec = (("title", "slug", "excerpt"), search) if search else None
    store = _posts(site_id)
    total = store.count(where, search=search_spec)
    items = store.find_all(where, order_by="-created_at", limit=limit, offset=offset,
                           search=search_spec)
    return items, total


def get_post(site_id, post_id):
    return _posts(site_id).get(post_id)


def post_terms(site_id, post_id):
    """Terms assigned to a post, in assignment order."""
    links = store_for("post_terms", site_id).find_all({"post_id": post_id}, order_by="term_order")
    if not links:
        return []
    by_id = {t["id"]: t for t in store_for("terms", site_id).find_all(
        {"id": [link["term_id"] for link in links]})}
    return [by_id[link["term_id"]] for link in links if link["term_id"] in by_id]


def expand_post(site_id, post, includes):
    """Serialized post with the requested expansions. Others are not computed."""
    out = serialize_post(post)
    store = _posts(site_id)
    if "author" in includes:
        author = db.session.get(User, post["author_id"]) if post["author_id"] else None
        out["author"] = (
            {"id": author.id, "username": author.username, "display_name": author.display_name}
            if author else None
        )
    if "terms" in includes:
        out["terms"] = [serialize_record(t) for t in post_terms(site_id, post["id"])]
    if "children" in includes:
        out["children"] = [
            serialize_post(c)
            for c in store.find_all({"parent_id": post["id"]}, order_by=["menu_order", "title"])
        ]
    if "parent" in includes:
        parent = store.find(post["parent_id"]) if post["parent_id"] else None
        out["parent"] = serialize_post(parent) if parent else None
    if "featured_image" in includes:
        media = (
            store_for("media", site_id).find(post["featured_image_id"])
            if post["featured_image_id"] else None
        )
        out["featured_image"] = serialize_record(media)
    return out


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════
def _check_parent(site_id, post_type, parent_id, post_id=None):
    if parent_id is None:
        return
    store = _posts(site_id)
    parent = store.find(parent_id, for_update=True)
    if parent is None or parent["post_type"] != post_type["name"]:
        raise ValidationError("parent_id must be a post of the same type", field="parent_id")
    seen = set()
    node = parent
    while node is not None and post_id is not None:
        if node["id"] == post_id:
            raise ValidationError("A post cannot be its own ancestor", field="parent_id")
        if node["id"] in seen:
            break
        seen.add(node["id"])
        node = store.find(node["parent_id"]) if node["parent_id"] else None


def _resolve_status(requested, perms):
    if requested not in POST_STATUSES:
        raise ValidationError(f"Unknown status '{requested}'", field="status")
    if requested == "trash":
        raise ValidationError("Use the trash endpoint to trash a post", field="status")
    if requested in PUBLISHING_STATUSES and not perms.has("can_publish"):
        logger.info("Status %s downgraded to pending (no can_publish)", requested)
        return "pending"
    return requested


def _post_values(site_id, post_type, payload, perms, principal, before=None):
    """Validated column values from an already capability-filtered payload."""
    values = {}
    if "title" in payload:
        title = payload["title"]
        if title is not None and not isinstance(title, str):
            raise ValidationError("title must be a string", field="title")
        if title and len(title) > 500:
            raise ValidationError("title must be at most 500 characters", field="title")
        values["title"] = title.strip() if title else None
    for field in ("body", "excerpt"):
        if field in payload:
            if payload[field] is not None and not isinstance(payload[field], str):
                raise ValidationError(f"{field} must be a string", field=field)
            values[field] = payload[field]
    if "status" in payload:
        values["status"] = _resolve_status(payload["status"], perms)
    if "visibility" in payload:
        if payload["visibility"] not in POST_VISIBILITIES:
            raise ValidationError(f"Unknown visibility '{payload['visibility']}'", field="visibility")
        values["visibility"] = payload["visibility"]
    if "password" in payload:
        values["password"] = hash_password(payload["password"]) if payload["password"] else None
    visibility = values.get("visibility", (before or {}).get("visibility", "public"))
    password = values.get("password", (before or {}).get("password"))
    if visibility == "password" and not password:
        raise ValidationError("password is required for password-protected posts", field="password")

    if "author_id" in payload:
        author_id = parse_id(payload["author_id"], "author_id")
        current = before["author_id"] if before else principal.user_id
        if author_id != current and not perms.has("can_reassign"):
            raise ForbiddenError("can_reassign")
        if db.session.get(User, author_id) is None:
            raise ValidationError(f"Unknown author {author_id}", field="author_id")
        values["author_id"] = author_id

    if "parent_id" in payload:
        parent_id = parse_optional_id(payload["parent_id"], "parent_id")
        _check_parent(site_id, post_type, parent_id, before["id"] if before else None)
        values["parent_id"] = parent_id
    if "featured_image_id" in payload:
        media_id = parse_optional_id(payload["featured_image_id"], "featured_image_id")
        if media_id is not None:
            media = store_for("media", site_id).find(media_id)
            if media is None or media["trashed_at"] is not None:
                raise ValidationError(f"Unknown media {media_id}", field="featured_image_id")
        values["featured_image_id"] = media_id
    if "custom_fields" in payload:
        if not isinstance(payload["custom_fields"], dict):
            raise ValidationError("custom_fields must be an object", field="custom_fields")
        values["custom_fields"] = {
            k: v for k, v in payload["custom_fields"].items() if k != PREVIOUS_STATUS_KEY
        }
    if "menu_order" in payload:
        values["menu_order"] = parse_int(payload["menu_order"], "menu_order")
    if "scheduled_at" in payload:
        values["scheduled_at"] = parse_datetime(payload["scheduled_at"], "scheduled_at")

    status = values.get("status", (before or {}).get("status", "draft"))
    if status == "scheduled" and not values.get("scheduled_at", (before or {}).get("scheduled_at")):
        raise ValidationError("scheduled_at is required for scheduled posts", field="scheduled_at")
    if status == "published" and not (before or {}).get("published_at"):
        values["published_at"] = _now()
    return values


def _term_ids(site_id, post_type, raw):
    """Validated term ids for a post of *post_type*."""
    if not isinstance(raw, list):
        raise ValidationError("terms must be a list of term ids", field="terms")
    ids = [parse_id(value, "terms") for value in raw]
    terms = terms_by_ids(site_id, ids)
    allowed = {t["name"] for t in content_types.taxonomies_for(site_id, post_type["name"])}
    for term in terms.values():
        if term["taxonomy"] not in allowed:
            raise ValidationError(
                f"Taxonomy '{term['taxonomy']}' is not attached to '{post_type['name']}'",
                field="terms",
            )
    return list(dict.fromkeys(ids)), terms


def _assign_terms(site_id, post_id, term_ids, terms):
    """Replace the post's term assignments and refresh the affected counts."""
    links = store_for("post_terms", site_id)
    previous = {link["term_id"] for link in links.find_all({"post_id": post_id})}
    links.delete_where(post_id=post_id)
    for order, term_id in enumerate(term_ids):
        links.create({
            "post_id": post_id,
            "term_id": term_id,
            "taxonomy": terms[term_id]["taxonomy"],
            "term_order": order,
        })
    recount_terms(site_id, previous | set(term_ids))


def _require_owner_or(perms, principal, post, permission):
    if post["author_id"] != principal.user_id and not perms.has(permission):
        raise ForbiddenError(permission)


def _check_delete(perms, principal, post):
    own = post["author_id"] == principal.user_id
    required = "can_delete" if own else "can_delete_others"
    if not perms.has(required):
        raise ForbiddenError(required)


# ═══════════════════════════════════════════════════════════════
# Writes
# ═══════════════════════════════════════════════════════════════
def create_post(site_id, principal, perms, data):
    post_type = content_types.post_type_for(site_id, data.get("post_type") or "post", for_update=True)
    payload = content_types.filter_payload(post_type, data)
    values = _post_values(site_id, post_type, payload, perms, principal)
    values.setdefault("author_id", principal.user_id)
    values.setdefault("status", "draft")
    values["post_type"] = post_type["name"]

    store = _posts(site_id)
    values["slug"] = resolve_slug(
        store, data.get("slug"), values.get("title") or post_type["name"],
        post_type=post_type["name"],
    )
    term_ids, terms = (
        _term_ids(site_id, post_type, payload["terms"]) if "terms" in payload else ([], {})
    )
    post = store.create(values)
    if term_ids:
        _assign_terms(site_id, post["id"], term_ids, terms)

    record_activity(
        "post_created", "post", entity_id=post["id"], entity_name=post["title"] or post["slug"],
        changes_after=snapshot(post, POST_FIELDS), site_id=site_id,
    )
    if post["status"] == "published":
        record_activity("post_published", "post", entity_id=post["id"],
                        entity_name=post["title"] or post["slug"], site_id=site_id)
    return post


def update_post(site_id, principal, perms, post_id, data):
    store = _posts(site_id)
    before = store.get(post_id)
    _require_owner_or(perms, principal, before, "manage_others_posts")
    if before["status"] == "trash":
        raise ValidationError("Restore the post before editing it", field="status")

    post_type = content_types.post_type_for(site_id, before["post_type"], for_update=True)
    payload = content_types.filter_payload(post_type, data)
    payload.pop("post_type", None)
    values = _post_values(site_id, post_type, payload, perms, principal, before=before)
    if "slug" in data:
        values["slug"] = resolve_slug(
            store, data.get("slug"), values.get("title", before["title"]) or post_type["name"],
            exclude_id=post_id, post_type=post_type["name"],
        )
    if "terms" in payload:
        term_ids, terms = _term_ids(site_id, post_type, payload["terms"])
        _assign_terms(site_id, post_id, term_ids, terms)

    if any(field in values and values[field] != before[field] for field in REVISION_FIELDS):
        _save_revision(site_id, before, principal.user_id)
    after = store.update(post_id, values) if values else before
    record_activity(
        "post_updated", "post", entity_id=post_id, entity_name=after["title"] or after["slug"],
        changes_before=snapshot(before, POST_FIELDS),
        changes_after=snapshot(after, POST_FIELDS), site_id=site_id,
    )
    if after["status"] == "published" and before["status"] != "published":
        record_activity("post_published", "post", entity_id=post_id,
                        entity_name=after["title"] or after["slug"], site_id=site_id)
    return after


def trash_post(site_id, principal, perms, post_id):
    store = _posts(site_id)
    before = store.get(post_id)
    _check_delete(perms, principal, before)
    if before["status"] == "trash":
        raise ValidationError("Post is already in the trash", field="status")
    custom_fields = dict(before["custom_fields"] or {})
    custom_fields[PREVIOUS_STATUS_KEY] = before["status"]
    after = store.update(post_id, {"status": "trash", "custom_fields": custom_fields})
    record_activity(
        "post_trashed", "post", entity_id=post_id, entity_name=after["title"] or after["slug"],
        changes_before={"status": before["status"]}, changes_after={"status": "trash"},
        site_id=site_id,
    )
    return after


def restore_post(site_id, principal, perms, post_id):
    store = _posts(site_id)
    before = store.get(post_id)
    _check_delete(perms, principal, before)
    if before["status"] != "trash":
        raise ValidationError("Post is not in the trash", field="status")
    custom_fields = dict(before["custom_fields"] or {})
    status = custom_fields.pop(PREVIOUS_STATUS_KEY, None) or "draft"
    after = store.update(post_id, {"status": status, "custom_fields": custom_fields})
    record_activity(
        "post_restored", "post", entity_id=post_id, entity_name=after["title"] or after["slug"],
        changes_before={"status": "trash"}, changes_after={"status": status}, site_id=site_id,
    )
    return after


def delete_post(site_id, principal, perms, post_id):
    """Permanently delete a post; its children move up to its parent."""
    store = _posts(site_id)
    post = store.get(post_id, for_update=True)
    _check_delete(perms, principal, post)

    links = store_for("post_terms", site_id)
    term_ids = {link["term_id"] for link in links.find_all({"post_id": post_id})}
    links.delete_where(post_id=post_id)
    _revisions(site_id).delete_where(post_id=post_id)
    store.update_where({"parent_id": post["parent_id"]}, parent_id=post_id)
    store.delete(post_id)
    recount_terms(site_id, term_ids)

    record_activity(
        "post_deleted", "post", entity_id=post_id, entity_name=post["title"] or post["slug"],
        changes_before=snapshot(post, POST_FIELDS), site_id=site_id,
    )


# ═══════════════════════════════════════════════════════════════
# Revisions
# ═══════════════════════════════════════════════════════════════
def _max_revisions(site_id) -> int:
    setting = store_for("settings", site_id).find_one(key="max_revisions")
    return DEFAULT_MAX_REVISIONS if setting is None else setting["value"]


def _save_revision(site_id, post, author_id):
    """Store *post*'s current content as a revision, keeping the newest N."""
    keep = _max_revisions(site_id)
    if keep <= 0:
        return None
    revisions = _revisions(site_id)
    revision = revisions.create({
        "post_id": post["id"],
        "title": post["title"],
        "body": post["body"],
        "excerpt": post["excerpt"],
        "custom_fields": {
            k: v for k, v in (post["custom_fields"] or {}).items() if k != PREVIOUS_STATUS_KEY
        },
        "author_id": author_id,
    })
    for stale in revisions.find_all({"post_id": post["id"]}, order_by="-id", offset=keep):
        revisions.delete(stale["id"])
    return revision


def list_revisions(site_id, principal, perms, post_id):
    """Revisions of a post, newest first."""
    post = _posts(site_id).get(post_id)
    _require_owner_or(perms, principal, post, "manage_others_posts")
    return _revisions(site_id).find_all({"post_id": post_id}, order_by="-id")


def restore_revision(site_id, principal, perms, post_id, revision_id):
    """Copy a revision's content back onto its post.

    The content being replaced is saved as a revision first, so a restore
    can itself be undone.
    """
    store = _posts(site_id)
    before = store.get(post_id, for_update=True)
    _require_owner_or(perms, principal, before, "manage_others_posts")
    if before["status"] == "trash":
        raise ValidationError("Restore the post before editing it", field="status")
    revision = _revisions(site_id).find(revision_id)
    if revision is None or revision["post_id"] != post_id:
        raise NotFoundError("PostRevision", revision_id, site_id=site_id)

    _save_revision(site_id, before, principal.user_id)
    custom_fields = dict(revision["custom_fields"] or {})
    if PREVIOUS_STATUS_KEY in (before["custom_fields"] or {}):
        custom_fields[PREVIOUS_STATUS_KEY] = before["custom_fields"][PREVIOUS_STATUS_KEY]
    after = store.update(post_id, {
        "title": revision["title"],
        "body": revision["body"],
        "excerpt": revision["excerpt"],
        "custom_fields": custom_fields,
    })
    record_activity(
        "post_revision_restored", "post", entity_id=post_id,
        entity_name=after["title"] or after["slug"],
        changes_before=snapshot(before, REVISION_FIELDS),
        changes_after=snapshot(after, REVISION_FIELDS),
        details=f"revision {revision_id}", site_id=site_id,
    )
    return after


# ═══════════════════════════════════════════════════════════════
# Scheduled publishing
# ═══════════════════════════════════════════════════════════════
def publish_due_posts(site_id, now=None) -> list[dict]:
    """Publish every scheduled post whose ``scheduled_at`` has passed."""
    now = now or _now()
    store = _posts(site_id)
    due = store.find_all(
        {"status": "scheduled", "scheduled_at__lte": now}, order_by="scheduled_at", for_update=True,
    )
    published = []
    for post in due:
        after = store.update(post["id"], {"status": "published", "published_at": now})
        record_activity(
            "post_published", "post", entity_id=post["id"],
            entity_name=after["title"] or after["slug"],
            changes_before={"status": "scheduled"}, changes_after={"status": "published"},
            details="scheduled", site_id=site_id,
        )
        published.append(after)
    if published:
        logger.info("Published %d scheduled post(s) on site %s", len(published), site_id)
    return published


def publish_due_posts_everywhere(now=None) -> dict:
    """Run ``publish_due_posts`` on every active site, committing per site."""
    now = now or _now()
    results = {}
    for site in Site.query.filter_by(is_active=True).order_by(Site.id).all():
        results[site.id] = len(publish_due_posts(site.id, now))
        db.session.commit()
    return results
