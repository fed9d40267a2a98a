"""Shared utility functions for blueprints and services.

parse_id:         path/query id shape validation (malformed → 400, never a store crash)
parse_int:        JSON integer field within the INTEGER column range
parse_datetime:   ISO-8601 input → aware datetime
slugify:          url-safe slug from a title or name
resolve_slug:     slug for a write, unique within a store scope
json_body:        request JSON as a dict, or ValidationError
client_ip:        X-Forwarded-For → X-Real-IP → remote_addr
serialize_record: store record → JSON-safe dict
IdConverter:      the app's `<int:…>` converter, bounded by MAX_ID
commit:           commit the session, translating integrity errors
"""
import logging
import re
import unicodedata
from datetime import date, datetime, timezone

from flask import request
from werkzeug.routing import IntegerConverter

from sitecms.core.exceptions import ConflictError, ValidationError
from sitecms.models import db

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9\s-]")
_SLUG_DASH = re.compile(r"[\s_-]+")
_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]{0,49}$")

# Range of the INTEGER columns (ids, ordering, levels, sizes)
MIN_INT = -(2**31)
MAX_INT = 2**31 - 1
MAX_ID = MAX_INT


def parse_id(value, field: str = "id") -> int:
    """Return *value* as a positive int or raise ValidationError naming *field*.

    Strings must be plain ASCII digits ("²" and other Unicode digits are
    rejected) and values above MAX_ID are rejected before they reach a query.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer", field=field)
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        number = int(value.strip())
    else:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    if number < 1 or number > MAX_ID:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return number


def parse_int(value, field: str, minimum: int = MIN_INT, maximum: int = MAX_INT) -> int:
    """Return a JSON integer within ``minimum..maximum`` or raise ValidationError."""
    if not isinstance(value, int) or isinstance(value, bool) or not minimum <= value <= maximum:
        raise ValidationError(
            f"{field} must be an integer between {minimum} and {maximum}", field=field,
        )
    return value


def parse_optional_id(value, field: str):
    """Like parse_id, but ``None`` / ``""`` pass through as None."""
    if value is None or value == "":
        return None
    return parse_id(value, field)


def parse_datetime(value, field: str):
    """Parse an ISO-8601 string into an aware UTC datetime (None passes through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def slugify(text: str) -> str:
    """Lower-case, ASCII-fold and dash-join *text*."""
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = _SLUG_STRIP.sub("", text.lower()).strip()
    return _SLUG_DASH.sub("-", text).strip("-")


def validate_name(value, field: str = "name") -> str:
    """Machine names of post types, taxonomies, roles and menus."""
    if not isinstance(value, str) or not _NAME_RE.match(value):
        raise ValidationError(
            f"{field} must start with a letter and contain only a-z, 0-9, '_' or '-'",
            field=field,
        )
    return value


def require_text(data: dict, field: str, max_len: int | None = None) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    value = value.strip()
    if max_len and len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters", field=field)
    return value


def json_body() -> dict:
    """Return the JSON request body as a dict (empty body → {})."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return data


def client_ip() -> str | None:
    """Client address: first X-Forwarded-For hop, then X-Real-IP, then the socket."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.remote_addr


def serialize_record(record: dict | None, exclude: tuple = ()) -> dict | None:
    """Convert a store record into a JSON-safe dict."""
    if record is None:
        return None
    out = {}
    for key, value in record.items():
        if key in exclude:
            continue
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        out[key] = value
    return out


# ── Database commit helper ───────────────────────────────────────────────────

def commit():
    """Commit the current SQLAlchemy session.

    IntegrityError → ConflictError (rolled back first). Anything else
    propagates to the app-level 500 handler, which rolls back and logs.
    """
    from sqlalchemy.exc import IntegrityError

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError("Resource", reason="Duplicate or constraint violation") from exc


# ── Slugs ────────────────────────────────────────────────────────────────────

def resolve_slug(store, explicit, source: str, exclude_id=None, **scope) -> str:
    """Slug for a write: the explicit slug if given, else derived from *source*.

    The slug is normalised and must be free within *scope*; a clash raises
    ConflictError whether the slug was supplied or derived.
    """
    if explicit not in (None, ""):
        if not isinstance(explicit, str):
            raise ValidationError("slug must contain letters or digits", field="slug")
        slug = slugify(explicit)
    else:
        slug = slugify(source)
    if not slug:
        raise ValidationError("slug must contain letters or digits", field="slug")
    existing = store.find_one(slug=slug, **scope)
    if existing is not None and existing["id"] != exclude_id:
        raise ConflictError(store.resource, "slug", slug)
    return slug


# ── URL converters ───────────────────────────────────────────────────────────

class IdConverter(IntegerConverter):
    """``<int:…>`` capped at MAX_ID; larger path ids do not match (404)."""

    def __init__(self, map, fixed_digits=0, min=None, max=MAX_ID, signed=False):
        super().__init__(map, fixed_digits=fixed_digits, min=min, max=max, signed=signed)
