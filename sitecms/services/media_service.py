"""
Media Service — media library metadata.

Only metadata is stored; uploads are handled by whatever serves ``url``.
Deleting moves an item to the trash. Permanent deletion, only possible from
the trash, clears it from posts (featured image) and terms (image) that used it.
"""

import logging
from datetime import datetime, timezone

from sitecms.core.exceptions import ValidationError
from sitecms.services.audit_service import record_activity, snapshot
from sitecms.tenant import store_for
from sitecms.utils.helpers import parse_int, require_text

logger = logging.getLogger(__name__)

MEDIA_FIELDS = (
    "filename", "original_name", "mime_type", "size", "url", "alt_text",
    "caption", "width", "height", "folder",
)
_EDITABLE_TEXT = {"original_name": 255, "alt_text": 500, "caption": None, "folder": 200}


def _media(site_id):
    return store_for("media", site_id)


def _now():
    return datetime.now(timezone.utc)


def _int_field(data, name, minimum=0):
    value = data.get(name)
    if value is None:
        return None
    return parse_int(value, name, minimum=minimum)


def _text_values(data):
    values = {}
    for name, limit in _EDITABLE_TEXT.items():
        if name in data:
            value = data[name]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", field=name)
            if value and limit and len(value) > limit:
                raise ValidationError(f"{name} must be at most {limit} characters", field=name)
            values[name] = value or None
    return values


def list_media(site_id, *, mime_type=None, folder=None, search=None, trashed=False,
               limit=None, offset=0):
    """Media items, newest first. Returns (items, total).

    Trashed items are listed only when ``trashed`` is set, and then only they are.
    """
    where = {"trashed_at__ne" if trashed else "trashed_at": None}
    if folder:
        where["folder"] = folder
    if mime_type:
        where["mime_type"] = mime_type
    store = _media(site_id)
    search_spec = (("filename", "original_name", "alt_text"), search) if search else None
    total = store.count(where, search=search_spec)
    items = store.find_all(where, order_by="-created_at", limit=limit, offset=offset, search=search_spec)
    return items, total


def get_media(site_id, media_id):
    return _media(site_id).get(media_id)


def create_media(site_id, principal, data):
    values = {
        "filename": require_text(data, "filename", 255),
        "mime_type": require_text(data, "mime_type", 100),
        "url": require_text(data, "url", 500),
        "size": _int_field(data, "size") or 0,
        "width": _int_field(data, "width", 1),
        "height": _int_field(data, "height", 1),
        "uploaded_by": principal.user_id,
    }
    values.update(_text_values(data))
    media = _media(site_id).create(values)
    record_activity(
        "media_created", "media", entity_id=media["id"], entity_name=media["filename"],
        changes_after=snapshot(media, MEDIA_FIELDS), site_id=site_id,
    )
    return media


def update_media(site_id, media_id, data):
    store = _media(site_id)
    before = store.get(media_id)
    values = _text_values(data)
    for name in ("width", "height"):
        if name in data:
            values[name] = _int_field(data, name, 1)
    after = store.update(media_id, values) if values else before
    record_activity(
        "media_updated", "media", entity_id=media_id, entity_name=after["filename"],
        changes_before=snapshot(before, MEDIA_FIELDS),
        changes_after=snapshot(after, MEDIA_FIELDS), site_id=site_id,
    )
    return after


def trash_media(site_id, media_id):
    """Move an item to the trash; it stays referenced until permanently deleted."""
    store = _media(site_id)
    media = store.get(media_id, for_update=True)
    if media["trashed_at"] is not None:
        raise ValidationError("Media is already in the trash", field="status")
    after = store.update(media_id, {"trashed_at": _now()})
    record_activity(
        "media_trashed", "media", entity_id=media_id, entity_name=media["filename"],
        site_id=site_id,
    )
    return after


def restore_media(site_id, media_id):
    store = _media(site_id)
    media = store.get(media_id, for_update=True)
    if media["trashed_at"] is None:
        raise ValidationError("Media is not in the trash", field="status")
    after = store.update(media_id, {"trashed_at": None})
    record_activity(
        "media_restored", "media", entity_id=media_id, entity_name=media["filename"],
        site_id=site_id,
    )
    return after


def _purge(site_id, media):
    media_id = media["id"]
    cleared = store_for("posts", site_id).update_where(
        {"featured_image_id": None}, featured_image_id=media_id
    )
    cleared += store_for("terms", site_id).update_where({"image_id": None}, image_id=media_id)
    _media(site_id).delete(media_id)
    if cleared:
        logger.info("Cleared media %s from %d posts/terms", media_id, cleared)
    record_activity(
        "media_deleted", "media", entity_id=media_id, entity_name=media["filename"],
        changes_before=snapshot(media, MEDIA_FIELDS), site_id=site_id,
    )
    return cleared


def delete_media(site_id, media_id) -> int:
    """Permanently delete a trashed item. Returns the number of references cleared."""
    media = _media(site_id).get(media_id, for_update=True)
    if media["trashed_at"] is None:
        raise ValidationError("Move the media to the trash before deleting it", field="status")
    return _purge(site_id, media)


def empty_trash(site_id) -> int:
    """Permanently delete every trashed item. Returns how many were deleted."""
    trashed = _media(site_id).find_all({"trashed_at__ne": None}, for_update=True)
    for media in trashed:
        _purge(site_id, media)
    logger.info("Emptied media trash of site %s (%d items)", site_id, len(trashed))
    return len(trashed)
