"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``onboarding_desk.utils.errors.register_error_handlers``) and get
consistent HTTP status codes everywhere.

Usage:
    from onboarding_desk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Onboarding", resource_id=42)
    raise ValidationError("status is invalid", details={"0": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Template absence on a plain fetch is NOT an error (the template store
    returns None); this is raised when a caller needs the resource to act
    on it, e.g. updating an instance or deciding an onboarding.

    Args:
        resource: Human-readable model/entity name (e.g. "Onboarding").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed JSON but violates a business rule.

    Examples: a status outside the closed vocabulary, an empty decision note,
    an update that references an item the instance does not have.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PreconditionFailedError(Exception):
    """Raised when an operation is rejected because upstream state is not ready.

    Distinct from ValidationError: the request itself is valid, but the
    record it targets is not in a state that allows it (checklist not fully
    reviewed, decision already terminal).

    Maps to HTTP 412.

    Args:
        message: Human-readable, user-actionable explanation.
        code: Machine-readable reason (e.g. "CHECKLIST_INCOMPLETE").
        details: Optional structured payload (outstanding items, current state).
    """

    def __init__(self, message: str, code: str, details: dict | None = None) -> None:
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a duplicate key, a stale revision or a disallowed status change.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field that conflicts (unique key, "revision" or "status").
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if field == "revision":
            msg = f"{resource} revision {value!r} is stale"
        elif field == "status":
            msg = f"{resource} status transition {value} is not allowed"
        else:
            msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class UnauthorizedError(Exception):
    """Raised when authentication is required but no valid token was sent. HTTP 401."""


class ForbiddenError(Exception):
    """Raised when the authenticated caller lacks the role for an action.

    Kept separate from every other failure so the surrounding system can
    redirect to an access-denied view. Maps to HTTP 403.
    """

    def __init__(self, message: str = "Permission denied", required: str | None = None) -> None:
        self.required = required
        super().__init__(message)


class UpstreamUnavailableError(Exception):
    """Raised when the durable store (database or remote API) cannot be reached.

    Callers may retry at their discretion; the engine never retries. HTTP 503.
    """

    def __init__(self, operation: str, reason: str | None = None) -> None:
        self.operation = operation
        self.reason = reason
        msg = f"Store unavailable during {operation}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
