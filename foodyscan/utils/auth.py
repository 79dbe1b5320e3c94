"""Authentication helpers for the FoodyScan API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import current_app, g, request

logger = logging.getLogger(__name__)


@dataclass
class AuthError(Exception):
    """Raised when the caller cannot be authenticated."""

    message: str
    status_code: int = 401

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


def bearer_token(header: Optional[str]) -> str:
    """Return the token from an ``Authorization: Bearer ...`` header."""

    if not header:
        raise AuthError("Unauthorized")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Unauthorized")
    return token.strip()


def decode_access_token(token: str, secret: str, audience: str = "authenticated") -> Dict[str, Any]:
    """Validate and decode a Supabase access token.

    Parameters
    ----------
    token:
        The encoded JWT sent in the ``Authorization`` header.
    secret:
        The project's JWT secret (``SUPABASE_JWT_SECRET``).
    audience:
        Expected ``aud`` claim. Supabase issues ``authenticated`` for signed-in
        users.

    Returns
    -------
    dict
        The decoded token payload.

    Raises
    ------
    AuthError
        If the secret is not configured, or the token is missing, invalid or
        expired.
    """

    if not secret:
        raise AuthError("Authentication is not configured on this server.", 503)

    if not token:
        raise AuthError("Unauthorized")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Authorization token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Authorization token is invalid.") from exc

    exp = payload.get("exp")
    if isinstance(exp, (int, float)):
        expiry = datetime.fromtimestamp(exp, tz=timezone.utc)
        if expiry < datetime.now(timezone.utc):
            raise AuthError("Authorization token has expired.")

    return payload


def authenticate_request() -> str:
    """Resolve the calling user's id from the current request."""

    token = bearer_token(request.headers.get("Authorization"))

    secret = os.environ.get("SUPABASE_JWT_SECRET", "")
    if secret:
        payload = decode_access_token(token, secret)
        return str(payload["sub"])

    storage = current_app.storage_service
    if not storage.supabase_enabled:
        raise AuthError("Authentication is not configured on this server.", 503)

    user_id = storage.get_user_for_token(token)
    if not user_id:
        raise AuthError("Unauthorized")
    return user_id


def require_auth(view):
    """Decorator that authenticates the caller and stores ``g.user_id``."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        g.user_id = authenticate_request()
        return view(*args, **kwargs)

    return wrapped
