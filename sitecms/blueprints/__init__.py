"""
sitecms
Blueprint helpers shared by the API routes.
"""

from flask import current_app, request

from sitecms.core.exceptions import ValidationError
from sitecms.utils.helpers import MAX_INT


def int_arg(name, default):
    """Integer query parameter; ASCII digits with an optional sign, within INTEGER range."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    digits = raw[1:] if raw[:1] in "+-" else raw
    if not (digits.isascii() and digits.isdigit()):
        raise ValidationError(f"{name} must be an integer", field=name)
    value = int(raw)
    if abs(value) > MAX_INT:
        raise ValidationError(f"{name} is out of range", field=name)
    return value


def parse_pagination():
    """Validated ``(page, per_page)`` from the query string.

    Query params:
        page     — 1-based page number (default 1); the offset it implies
                   must stay within INTEGER range
        per_page — items per page, 1..MAX_PER_PAGE (default DEFAULT_PER_PAGE)
    """
    default = current_app.config.get("DEFAULT_PER_PAGE", 10)
    maximum = current_app.config.get("MAX_PER_PAGE", 100)
    page = int_arg("page", 1)
    per_page = int_arg("per_page", default)
    if not 1 <= per_page <= maximum:
        raise ValidationError(f"per_page must be between 1 and {maximum}", field="per_page")
    last_page = MAX_INT // per_page
    if not 1 <= page <= last_page:
        raise ValidationError(f"page must be between 1 and {last_page}", field="page")
    return page, per_page


def pagination_meta(total, count, page, per_page):
    return {
        "total": total,
        "count": count,
        "per_page": per_page,
        "current_page": page,
        "total_pages": (total + per_page - 1) // per_page if total else 0,
    }


def paginated(items, total, page, per_page):
    """Response body for one page of *items*."""
    return {"items": items, "pagination": pagination_meta(total, len(items), page, per_page)}


def parse_include(allowed):
    """Set of expansions from ``?include=a,b``; unknown names are a 400."""
    raw = request.args.get("include", "")
    names = {part.strip() for part in raw.split(",") if part.strip()}
    unknown = sorted(names - set(allowed))
    if unknown:
        raise ValidationError(
            f"Unknown include: {', '.join(unknown)}. Allowed: {', '.join(sorted(allowed))}",
            field="include",
        )
    return names
