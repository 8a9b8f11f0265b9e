"""Standardised API error responses.

Usage
-----
    from onboarding_desk.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Onboarding not found")
    return api_error(E.VALIDATION_REQUIRED, "decisionNotes is required")

Blueprints call ``register_error_handlers(bp)`` once so that the exceptions
in ``onboarding_desk.core.exceptions`` become consistent JSON responses.
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from onboarding_desk.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 (malformed request) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Precondition – HTTP 412
    CHECKLIST_INCOMPLETE = "CHECKLIST_INCOMPLETE"
    DECISION_ALREADY_RECORDED = "DECISION_ALREADY_RECORDED"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500 / 503
    UPSTREAM_UNAVAILABLE = "ERR_UPSTREAM_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CHECKLIST_INCOMPLETE: 412,
    E.DECISION_ALREADY_RECORDED: 412,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.UPSTREAM_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (outstanding items, unmatched updates, etc.).

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
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp):
    """Map the platform exception hierarchy onto ``bp``'s responses."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(PreconditionFailedError)
    def _handle_precondition(error: PreconditionFailedError):
        return api_error(error.code, str(error), status=412, details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        code = E.CONFLICT_STATE if error.field in ("revision", "status") else E.CONFLICT_DUPLICATE
        return api_error(code, str(error), details={"field": error.field, "value": error.value})

    @bp.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        return api_error(E.UNAUTHORIZED, str(error) or "Authentication required")

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        details = {"required": error.required} if error.required else None
        return api_error(E.FORBIDDEN, str(error), details=details)

    @bp.errorhandler(UpstreamUnavailableError)
    def _handle_upstream(error: UpstreamUnavailableError):
        logger.error("Upstream unavailable endpoint=%s operation=%s", request.endpoint, error.operation)
        return api_error(E.UPSTREAM_UNAVAILABLE, "Service temporarily unavailable")

    return bp
