"""
JWT Auth Middleware: parses the Bearer token and sets ``g.jwt_user_id``.

Authentication itself is issued elsewhere; this hook only turns a valid
access token into a caller identity. Requests without a token (or with an
invalid one) continue with ``g.jwt_user_id = None`` and are rejected by
``require_user`` on the routes that need an identity.
"""

import logging

import jwt as pyjwt
from flask import g, request

from cdeboard.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        # Health probes and static files never carry identity
        if not path.startswith("/api/v1/"):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
            return
        except pyjwt.InvalidTokenError:
            logger.info("Invalid access token", extra={"path": path})
            return

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            g.jwt_user_id = None
