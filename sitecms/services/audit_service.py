"""
Audit Service — append-only activity log.

Callers build an ``AuditEntry`` (snapshotting the pre-image *before* they
mutate and the post-image after) and hand it to ``AuditLogger.record``.
The logger does no diffing and never reads the audited entity back; it only
validates and appends. The row is flushed, not committed, so it lands in
the same transaction as the mutation it describes.

``displayed_changes`` is the single read-side diff rule used everywhere a
change set is shown.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime

from flask import g, has_request_context, request

from sitecms.core.exceptions import NotFoundError
from sitecms.models import db
from sitecms.models.audit import ACTIONS, ENTITY_TYPES, GLOBAL_ACTIONS, ActivityLog
from sitecms.utils.helpers import client_ip

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    actor_id: int | None
    action: str
    entity_type: str
    entity_id: int | str | None = None
    entity_name: str | None = None
    details: str | None = None
    changes_before: dict | None = None
    changes_after: dict | None = None
    site_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    impersonator_id: int | None = None


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serialisable")


def _dump(snapshot: dict | None) -> str | None:
    if snapshot is None:
        return None
    return json.dumps(snapshot, default=_json_default, sort_keys=True)


class AuditLogger:
    """Validates and appends ActivityLog rows."""

    def record(self, entry: AuditEntry) -> ActivityLog:
        if entry.action not in ACTIONS:
            raise ValueError(f"Unknown audit action {entry.action!r}")
        if entry.entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown audit entity type {entry.entity_type!r}")
        if entry.action not in GLOBAL_ACTIONS and entry.site_id is None:
            raise ValueError(f"Action {entry.action!r} is site-scoped and needs a site_id")

        row = ActivityLog(
            actor_id=entry.actor_id,
            impersonator_id=entry.impersonator_id,
            site_id=entry.site_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=str(entry.entity_id) if entry.entity_id is not None else None,
            entity_name=(entry.entity_name or "")[:255] or None,
            details=entry.details,
            changes_before=_dump(entry.changes_before),
            changes_after=_dump(entry.changes_after),
            ip_address=entry.ip_address,
            user_agent=(entry.user_agent or "")[:500] or None,
        )
        db.session.add(row)
        db.session.flush()
        logger.debug(
            "Audit %s %s/%s by %s", entry.action, entry.entity_type, entry.entity_id, entry.actor_id,
        )
        return row


audit_logger = AuditLogger()


# ── Request-aware construction ───────────────────────────────────────────────

def entry_from_request(action: str, entity_type: str, **kwargs) -> AuditEntry:
    """AuditEntry pre-filled from the current request and ``g.principal``.

    Actor is the effective principal; while impersonating, the original user
    is kept as ``impersonator_id``. Explicit kwargs win.
    """
    values = {}
    if has_request_context():
        principal = getattr(g, "principal", None)
        if principal is not None:
            values["actor_id"] = principal.user_id
            values["impersonator_id"] = principal.original_user_id
        site = getattr(g, "site", None)
        if site is not None and action not in GLOBAL_ACTIONS:
            values["site_id"] = site.id
        values["ip_address"] = client_ip()
        values["user_agent"] = request.headers.get("User-Agent")
    values.setdefault("actor_id", None)
    values.update(kwargs)
    return AuditEntry(action=action, entity_type=entity_type, **values)


def record_activity(action: str, entity_type: str, **kwargs) -> ActivityLog:
    """Build an entry from the request context and record it."""
    return audit_logger.record(entry_from_request(action, entity_type, **kwargs))


# ── Snapshots & display diff ─────────────────────────────────────────────────

def snapshot(record: dict | None, fields) -> dict | None:
    """Copy of the chosen *fields* of *record* (missing fields are left out)."""
    if record is None:
        return None
    return {f: record[f] for f in fields if f in record}


def _same(a, b) -> bool:
    """Structural equality of two snapshot values.

    Numbers compare by value (``1 == 1.0``) but a bool never equals a
    number; dicts and lists compare element-wise. Datetimes compare as
    their ISO-8601 text, which is how snapshots are stored.
    """
    if isinstance(a, (datetime, date)):
        a = a.isoformat()
    if isinstance(b, (datetime, date)):
        b = b.isoformat()
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_same(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(_same(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list, tuple)) or isinstance(b, (dict, list, tuple)):
        return False
    return a == b


def displayed_changes(before: dict | None, after: dict | None) -> dict:
    """Fields worth showing for a before/after pair.

    The candidate set is the union of keys of both maps. A field is shown
    only when its values differ under structural equality (see ``_same``:
    nested objects compare by content, ``1`` equals ``1.0`` but not
    ``true``); a key present on one side only counts as a difference.
    Returned as ``{field: {"before": value | None, "after": value | None}}``.
    """
    before = before or {}
    after = after or {}
    changes = {}
    for key in sorted(set(before) | set(after)):
        if key in before and key in after and _same(before[key], after[key]):
            continue
        changes[key] = {"before": before.get(key), "after": after.get(key)}
    return changes


# ── Queries ──────────────────────────────────────────────────────────────────

def _visible(principal, site_id):
    """Entries of *site_id*; super-admins also see global entries."""
    q = ActivityLog.query
    if principal.is_super_admin:
        return q.filter(db.or_(ActivityLog.site_id == site_id, ActivityLog.site_id.is_(None)))
    return q.filter(ActivityLog.site_id == site_id)


def list_activity(principal, site_id, *, entity_type=None, entity_id=None, action=None,
                  actor_id=None, limit=None, offset=0):
    """Newest-first activity for a site. Returns (entries, total)."""
    q = _visible(principal, site_id)
    if entity_type:
        q = q.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(ActivityLog.entity_id == str(entity_id))
    if action:
        q = q.filter(ActivityLog.action == action)
    if actor_id is not None:
        q = q.filter(ActivityLog.actor_id == actor_id)
    total = q.count()
    q = q.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all(), total


def get_activity(principal, site_id, entry_id) -> ActivityLog:
    entry = _visible(principal, site_id).filter(ActivityLog.id == entry_id).first()
    if entry is None:
        raise NotFoundError("ActivityLog", entry_id, site_id=site_id)
    return entry
