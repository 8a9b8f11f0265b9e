"""
Role Decorators - JWT-aware RBAC decorators for route protection.

Roles (carried in the access token):
    onboarding_agent       read onboardings, work the checklist
    onboarding_supervisor  everything an agent can do, plus decisions
    checklist_admin        publish checklist templates

Usage:
    @bp.route("/onboarding/<int:onboarding_id>/decision", methods=["POST"])
    @require_role(SUPERVISOR)
    def decide(onboarding_id):
        ...

When API_AUTH_ENABLED is false (development, most tests) the decorators
pass through. When it is true:
    - no valid token              → UnauthorizedError (401)
    - token without a listed role → ForbiddenError (403)
"""

import functools
import logging

from flask import current_app, g

from onboarding_desk.core.exceptions import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

AGENT = "onboarding_agent"
SUPERVISOR = "onboarding_supervisor"
CHECKLIST_ADMIN = "checklist_admin"

# Roles that implicitly include others.
ROLE_IMPLIES = {
    SUPERVISOR: frozenset({AGENT}),
}


def auth_enabled() -> bool:
    return str(current_app.config.get("API_AUTH_ENABLED", "false")).lower() == "true"


def effective_roles(roles) -> set[str]:
    expanded = set(roles or [])
    for role in list(expanded):
        expanded |= ROLE_IMPLIES.get(role, frozenset())
    return expanded


def current_user_id() -> str | None:
    """Caller identity from the token, if any."""
    user_id = getattr(g, "jwt_user_id", None)
    return str(user_id) if user_id is not None else None


def require_role(*roles: str):
    """
    Decorator: require the JWT user to hold at least ONE of ``roles``.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if not auth_enabled():
                return f(*args, **kwargs)

            user_id = current_user_id()
            if user_id is None:
                raise UnauthorizedError("Authentication required")

            if not effective_roles(getattr(g, "jwt_roles", [])) & set(roles):
                logger.warning(
                    "User %s denied: missing role %s on %s",
                    user_id, "|".join(roles), f.__name__,
                    extra={"reviewer_id": user_id},
                )
                raise ForbiddenError("Permission denied", required="|".join(roles))

            return f(*args, **kwargs)
        return decorated
    return decorator
