"""
JWT Auth Middleware - Parses JWT from Authorization header, sets g.jwt_*.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_roles

Invalid or expired tokens leave g.jwt_user_id unset; the route decorators
in ``permission_required`` decide whether that is acceptable.
"""

import logging

import jwt as pyjwt
from flask import g, request

from onboarding_desk.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired bearer token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid bearer token on %s", path)
            return

        g.jwt_user_id = payload.get("sub")
        g.jwt_roles = payload.get("roles", [])
