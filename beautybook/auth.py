"""Bearer token helpers.

Tokens are issued by the identity service and signed with the shared
``SECRET_KEY``; this service only verifies them.
"""
from __future__ import annotations

from flask import current_app, request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from .errors import CustomerUnauthenticated

TOKEN_SALT = "auth-token"
TOKEN_MAX_AGE_SECONDS = 86400


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def build_token(payload: dict[str, object]) -> str:
    return _serializer().dumps(payload)


def get_current_identity() -> dict[str, object] | None:
    """Return the token payload from the Authorization header, or None if missing or invalid."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    try:
        payload = _serializer().loads(token, max_age=TOKEN_MAX_AGE_SECONDS)
    except BadSignature:
        # Covers expired tokens (SignatureExpired subclasses BadSignature)
        return None
    return payload if isinstance(payload, dict) else None


def get_jwt_identity() -> int | None:
    identity = get_current_identity()
    return identity.get("user_id") if identity else None


def require_identity() -> int:
    user_id = get_jwt_identity()
    if user_id is None:
        raise CustomerUnauthenticated()
    return user_id
