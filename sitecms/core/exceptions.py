"""
Platform-wide exception hierarchy.

Services raise these; ``sitecms.utils.errors.register_error_handlers`` maps
each one to the JSON error shape once, so blueprints never build error
responses for business-rule failures themselves.

Every class carries ``code`` (the machine-readable kind returned to clients)
and ``status`` (the HTTP status).

Usage:
    from sitecms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Post", resource_id=42)
    raise ValidationError("Title is required", field="title")
"""


class PlatformError(Exception):
    """Base class for errors that carry their own error kind."""

    code = "INTERNAL_ERROR"
    status = 500

    def payload(self) -> dict:
        """Extra keys merged into the error body."""
        return {}


class UnauthorizedError(PlatformError):
    """No credentials, or credentials that are invalid, expired or revoked."""

    code = "UNAUTHORIZED"
    status = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(PlatformError):
    """The principal lacks a capability.

    Args:
        permission: The capability that was required. It is the only
            remediation detail ever returned to the caller.
    """

    code = "FORBIDDEN"
    status = 403

    def __init__(self, permission: str, message: str = "Permission denied") -> None:
        self.permission = permission
        super().__init__(message)

    def payload(self) -> dict:
        return {"required": self.permission}


class NotFoundError(PlatformError):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND cross-site
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Post", "Term").
        resource_id: The id that was looked up.
        site_id: Optional scope that was enforced. For debug logging only.
    """

    code = "NOT_FOUND"
    status = 404

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        site_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.site_id = site_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    def payload(self) -> dict:
        return {"resource": self.resource}


class ValidationError(PlatformError):
    """Input failed validation.

    Args:
        message: Human-readable explanation of what failed.
        field: The offending field, when one can be named.
        details: Optional field-level breakdown.
    """

    code = "VALIDATION_ERROR"
    status = 400

    def __init__(self, message: str, field: str | None = None, details: dict | None = None) -> None:
        self.field = field
        self.details = details or {}
        super().__init__(message)

    def payload(self) -> dict:
        body = {}
        if self.field:
            body["field"] = self.field
        if self.details:
            body["details"] = self.details
        return body


class ConflictError(PlatformError):
    """Raised when an operation would duplicate a unique value (slug, name, domain).

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
        reason: Overrides the generated message.
    """

    code = "CONFLICT"
    status = 409

    def __init__(
        self,
        resource: str,
        field: str | None = None,
        value: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = reason or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)

    def payload(self) -> dict:
        return {"field": self.field} if self.field else {}


class ImmutableBuiltinError(PlatformError):
    """Attempt to rename or delete a built-in post type, taxonomy or role."""

    code = "IMMUTABLE_BUILTIN"
    status = 400

    def __init__(self, resource: str, name: str) -> None:
        self.resource = resource
        self.name = name
        super().__init__(f"Built-in {resource} '{name}' cannot be renamed or deleted")


class InUseError(PlatformError):
    """Deletion blocked by dependents. Always reports how many block it."""

    code = "IN_USE"
    status = 409

    def __init__(self, resource: str, count: int, dependents: str = "references") -> None:
        self.resource = resource
        self.count = count
        super().__init__(f"{resource} is still in use by {count} {dependents}")

    def payload(self) -> dict:
        return {"count": self.count}


class TenantNotFoundError(PlatformError):
    code = "TENANT_NOT_FOUND"
    status = 404

    def __init__(self, site_id) -> None:
        self.site_id = site_id
        super().__init__(f"Site {site_id} not found")


class TenantInactiveError(PlatformError):
    code = "TENANT_INACTIVE"
    status = 400

    def __init__(self, site_id) -> None:
        self.site_id = site_id
        super().__init__(f"Site {site_id} is inactive")


class NotImpersonatingError(PlatformError):
    code = "NOT_IMPERSONATING"
    status = 400

    def __init__(self) -> None:
        super().__init__("Not in switched mode")


class TenantStoreMissingError(PlatformError):
    """A per-site table is absent and was never provisioned.

    Surfaces as a generic internal error; the table name stays in the logs.
    """

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        super().__init__(f"Store table {table_name} does not exist")
