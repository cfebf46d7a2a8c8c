"""REST endpoints for users, roles and API token management."""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db, limiter
from ..models.auth import ApiToken, User
from ..models.sharepoint import HistoryEntry, SharePoint, SignerEntry, sharepoint_managers
from ..roles import (
    ALL_ROLES,
    DEFAULT_ROLES,
    ROLE_CATEGORIES,
    admin_roles,
    has_any_role,
    is_valid_role,
)
from ..utils.auth import current_user, generate_token, hash_token, is_admin, require_user
from ..utils.timestamps import serialize_timestamp, utcnow
from ..workflow.errors import (
    DuplicateError,
    ForbiddenError,
    InUseError,
    NotFoundError,
    ValidationError,
)

bp = Blueprint("auth", __name__)


def _serialize_user(user: User) -> dict[str, object | None]:
    return {
        "id": user.id,
        "license": user.license,
        "username": user.username,
        "email": user.email,
        "roles": user.role_list(),
        "createdAt": serialize_timestamp(user.created_at),
    }


def _serialize_token(token: ApiToken) -> dict[str, object | None]:
    return {
        "id": token.id,
        "userId": token.user_id,
        "name": token.name,
        "createdAt": serialize_timestamp(token.created_at),
        "revokedAt": serialize_timestamp(token.revoked_at),
    }


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _validate_roles(roles: object) -> list[str]:
    if roles is None:
        return list(DEFAULT_ROLES)
    if not isinstance(roles, list) or not roles:
        raise ValidationError("roles must be a non-empty list", field="roles")
    invalid = [role for role in roles if not is_valid_role(role)]
    if invalid:
        raise ValidationError(f"Invalid roles: {', '.join(map(str, invalid))}", field="roles")
    return list(dict.fromkeys(roles))


def _required(payload: dict, field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def _is_referenced(user_id: int) -> bool:
    checks = (
        SharePoint.query.filter(
            or_(SharePoint.created_by_id == user_id, SharePoint.approved_by_id == user_id)
        ),
        SignerEntry.query.filter_by(user_id=user_id),
        HistoryEntry.query.filter_by(performed_by_id=user_id),
        db.session.query(sharepoint_managers).filter(sharepoint_managers.c.user_id == user_id),
    )
    return any(query.first() is not None for query in checks)


@bp.get("/users/me")
@require_user()
def me() -> tuple[object, int]:
    payload = _serialize_user(current_user())
    payload["isAdmin"] = is_admin(current_user())
    return jsonify(payload), HTTPStatus.OK


@bp.get("/users")
@require_user()
def list_users() -> tuple[object, int]:
    users = User.query.order_by(User.username.asc()).all()
    return jsonify([_serialize_user(user) for user in users]), HTTPStatus.OK


@bp.post("/users")
@require_user(admin=True)
def create_user() -> tuple[object, int]:
    payload = request.get_json(force=True, silent=True) or {}
    license_key = _required(payload, "license")
    username = _required(payload, "username")
    email = _required(payload, "email").lower()
    roles = _validate_roles(payload.get("roles"))

    clash = User.query.filter(
        or_(User.license == license_key, User.username == username, User.email == email)
    ).first()
    if clash is not None:
        raise DuplicateError("A user with this license, username or email already exists")

    user = User(license=license_key, username=username, email=email, roles=roles)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateError(
            "A user with this license, username or email already exists"
        ) from exc

    current_app.logger.info("User %s created by %s", username, current_user().username)
    return jsonify(_serialize_user(user)), HTTPStatus.CREATED


@bp.put("/users/<int:user_id>/roles")
@require_user(admin=True)
def update_roles(user_id: int) -> tuple[object, int]:
    user = _get_user(user_id)
    payload = request.get_json(force=True, silent=True) or {}
    if "roles" not in payload:
        raise ValidationError("roles is required", field="roles")
    roles = _validate_roles(payload.get("roles"))

    actor = current_user()
    admin_set = admin_roles(current_app.config)
    if (
        user.id == actor.id
        and has_any_role(user.role_list(), admin_set)
        and not has_any_role(roles, admin_set)
    ):
        raise ForbiddenError("You cannot remove your own admin role")

    user.roles = roles
    db.session.commit()
    current_app.logger.info("Roles of %s set to %s by %s", user.username, roles, actor.username)
    return jsonify(_serialize_user(user)), HTTPStatus.OK


@bp.delete("/users/<int:user_id>")
@require_user(admin=True)
def delete_user(user_id: int) -> tuple[object, int]:
    user = _get_user(user_id)
    actor = current_user()
    if user.id == actor.id:
        raise ForbiddenError("You cannot delete your own account")
    if _is_referenced(user.id):
        raise InUseError("User is referenced by SharePoint records and cannot be deleted")

    db.session.delete(user)
    db.session.commit()
    current_app.logger.info("User %s deleted by %s", user.username, actor.username)
    return jsonify({"message": "User deleted successfully"}), HTTPStatus.OK


@bp.get("/roles")
@require_user()
def list_roles() -> tuple[object, int]:
    return jsonify({"roles": ALL_ROLES, "categories": ROLE_CATEGORIES}), HTTPStatus.OK


@bp.post("/users/<int:user_id>/tokens")
@require_user(admin=True)
@limiter.limit(lambda: current_app.config.get("TOKEN_ISSUE_RATE_LIMIT", "10 per minute"))
def create_token(user_id: int) -> tuple[object, int]:
    user = _get_user(user_id)
    payload = request.get_json(force=True, silent=True) or {}
    name = (payload.get("name") or "").strip()

    if not name:
        return jsonify({"error": "name is required", "field": "name"}), HTTPStatus.BAD_REQUEST

    plaintext = generate_token()
    token = ApiToken(user=user, name=name, token_hash=hash_token(plaintext))
    db.session.add(token)
    db.session.commit()

    response_payload = _serialize_token(token)
    response_payload["token"] = plaintext
    return jsonify(response_payload), HTTPStatus.CREATED


@bp.get("/users/<int:user_id>/tokens")
@require_user(admin=True)
def list_tokens(user_id: int) -> tuple[object, int]:
    user = _get_user(user_id)
    tokens = (
        ApiToken.query.filter_by(user_id=user.id)
        .order_by(ApiToken.created_at.desc(), ApiToken.id.desc())
        .all()
    )
    return jsonify([_serialize_token(token) for token in tokens]), HTTPStatus.OK


@bp.delete("/tokens/<int:token_id>")
@require_user(admin=True)
def revoke_token(token_id: int) -> tuple[object, int]:
    token = db.session.get(ApiToken, token_id)
    if token is None:
        raise NotFoundError("Token not found")
    if token.revoked_at is None:
        token.revoked_at = utcnow()
        db.session.commit()
    return "", HTTPStatus.NO_CONTENT
