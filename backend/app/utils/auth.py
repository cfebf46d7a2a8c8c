"""Bearer token identity provider helpers."""

from __future__ import annotations

import functools
import hashlib
import hmac
import secrets
from collections.abc import Callable
from http import HTTPStatus
from typing import Any, TypeVar, cast

from flask import current_app, g, jsonify, request

from ..extensions import db
from ..models.auth import ApiToken, User
from ..roles import admin_roles, has_any_role
from ..workflow.errors import UnauthenticatedError

TCallable = TypeVar("TCallable", bound=Callable[..., Any])


def hash_token(token: str) -> str:
    """Return a SHA-256 hash for the given token."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    """Generate a secure random token string."""

    return secrets.token_urlsafe(32)


def _extract_bearer_token() -> str | None:
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return None
    return value.strip()


def _find_token(token_hash: str) -> ApiToken | None:
    return ApiToken.query.filter_by(token_hash=token_hash).first()


def _unauthorized(message: str, code: str):
    response = jsonify({"error": message, "code": code})
    response.status_code = HTTPStatus.UNAUTHORIZED
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


def _forbidden(message: str):
    return jsonify({"error": message, "code": "ADMIN_REQUIRED"}), HTTPStatus.FORBIDDEN


def is_admin(user: User) -> bool:
    return has_any_role(user.role_list(), admin_roles(current_app.config))


def current_user() -> User:
    """Return the principal attached by :func:`require_user`."""

    user = getattr(g, "current_user", None)
    if user is None:
        raise UnauthenticatedError("Not authorized")
    return user


def resolve_user(reference: object) -> User | None:
    """Resolve any accepted identity form to the canonical user row.

    Integers and digit strings are treated as user ids, other strings as the
    user's license.
    """

    if isinstance(reference, bool):
        return None
    if isinstance(reference, int):
        return db.session.get(User, reference)
    if isinstance(reference, str):
        candidate = reference.strip()
        if not candidate:
            return None
        if candidate.isdigit():
            user = db.session.get(User, int(candidate))
            if user is not None:
                return user
        return User.query.filter_by(license=candidate).first()
    return None


def require_user(admin: bool = False) -> Callable[[TCallable], TCallable]:
    """Decorator resolving the bearer token to a user, optionally requiring admin."""

    def decorator(func: TCallable) -> TCallable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            token_value = _extract_bearer_token()
            if not token_value:
                return _unauthorized("Not authorized, no token", "NO_TOKEN")

            token_hash = hash_token(token_value)
            api_token = _find_token(token_hash)
            if api_token is None or not hmac.compare_digest(token_hash, api_token.token_hash):
                return _unauthorized("Invalid token", "INVALID_TOKEN")

            if not api_token.is_active():
                return _unauthorized("Token revoked", "TOKEN_REVOKED")

            user = api_token.user
            if user is None:
                return _unauthorized("User not found or deleted", "USER_NOT_FOUND")

            if admin and not is_admin(user):
                return _forbidden("Access denied - Admin privileges required")

            g.api_token = api_token
            g.current_user = user

            return func(*args, **kwargs)

        return cast(TCallable, wrapper)

    return decorator
