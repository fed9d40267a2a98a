"""Standardised API error responses.

Usage
-----
    from sitecms.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Menu not found")
    return api_error(E.VALIDATION_ERROR, "page must be >= 1", field="page")

``register_error_handlers(app)`` wires every ``PlatformError`` subclass,
integrity violations and HTTP errors to the same body shape::

    {"error": <message>, "code": <KIND>, "field"?: ..., "details"?: ...}
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from sitecms.core.exceptions import PlatformError
from sitecms.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error kinds."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    IMMUTABLE_BUILTIN = "IMMUTABLE_BUILTIN"
    IN_USE = "IN_USE"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_INACTIVE = "TENANT_INACTIVE"
    NOT_IMPERSONATING = "NOT_IMPERSONATING"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL = "INTERNAL_ERROR"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.VALIDATION_ERROR: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT: 409,
    E.IMMUTABLE_BUILTIN: 400,
    E.IN_USE: 409,
    E.TENANT_NOT_FOUND: 404,
    E.TENANT_INACTIVE: 400,
    E.NOT_IMPERSONATING: 400,
    E.METHOD_NOT_ALLOWED: 405,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}

_HTTP_CODES: dict[int, str] = {
    400: E.VALIDATION_ERROR,
    401: E.UNAUTHORIZED,
    403: E.FORBIDDEN,
    404: E.NOT_FOUND,
    405: E.METHOD_NOT_ALLOWED,
    409: E.CONFLICT,
    415: E.UNSUPPORTED_MEDIA_TYPE,
    429: E.RATE_LIMITED,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    field: str | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error kind (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    field : str, optional
        Offending input field for validation errors.
    details : dict, optional
        Extra structured payload (blocking count, required permission, …).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if field:
        body["field"] = field
    if details:
        body.update(details)

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map every error kind to the standard body. Rolls back the session first."""

    @app.errorhandler(PlatformError)
    def _platform_error(exc: PlatformError):
        db.session.rollback()
        if exc.status >= 500:
            logger.error("Unhandled platform error: %s", exc, exc_info=exc)
            return api_error(E.INTERNAL, "Internal server error", status=500)
        return api_error(exc.code, str(exc), status=exc.status, details=exc.payload())

    @app.errorhandler(IntegrityError)
    def _integrity_error(exc: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity violation surfaced at route boundary: %s", exc.orig)
        return api_error(E.CONFLICT, "Resource conflicts with an existing record")

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        code = _HTTP_CODES.get(exc.code, E.INTERNAL if (exc.code or 500) >= 500 else E.VALIDATION_ERROR)
        if exc.code == 429:
            return api_error(code, "Too many requests", status=429,
                             details={"retry_after": exc.description})
        return api_error(code, exc.description or exc.name, status=exc.code)

    @app.errorhandler(Exception)
    def _unexpected_error(exc: Exception):
        db.session.rollback()
        logger.error("500 error: %s", exc, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error", status=500)
