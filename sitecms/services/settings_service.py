"""Settings Service — per-site key/value settings."""

import logging

from sitecms.core.exceptions import ValidationError
from sitecms.services.audit_service import record_activity
from sitecms.tenant import store_for
from sitecms.utils.helpers import parse_int

logger = logging.getLogger(__name__)

_KEY_MAX = 100


def _check_value(key, value):
    if key == "posts_per_page":
        if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= 100:
            raise ValidationError("posts_per_page must be an integer between 1 and 100", field=key)
    elif key == "max_revisions":
        parse_int(value, key, minimum=0, maximum=100)
    elif key in ("site_title", "site_tagline", "date_format", "time_format", "timezone"):
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string", field=key)


def get_settings(site_id, group=None) -> dict:
    where = {"group": group} if group else None
    return {s["key"]: s["value"] for s in store_for("settings", site_id).find_all(where, order_by="key")}


def update_settings(site_id, data, group=None) -> dict:
    """Upsert every key of *data*; returns the full settings map."""
    if not isinstance(data, dict) or not data:
        raise ValidationError("Provide at least one setting", field="body")
    store = store_for("settings", site_id)
    before, after = {}, {}
    for key, value in data.items():
        if not isinstance(key, str) or not key or len(key) > _KEY_MAX:
            raise ValidationError(f"setting keys must be 1-{_KEY_MAX} characters", field="key")
        _check_value(key, value)
        existing = store.find_one(key=key)
        if existing is None:
            store.create({"key": key, "value": value, "group": group or "general"})
        else:
            before[key] = existing["value"]
            values = {"value": value}
            if group:
                values["group"] = group
            store.update(existing["id"], values)
        after[key] = value
    record_activity(
        "settings_updated", "settings", entity_name=", ".join(sorted(after)),
        changes_before=before, changes_after=after, site_id=site_id,
    )
    return get_settings(site_id)
