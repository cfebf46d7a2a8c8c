from __future__ import annotations

import pathlib
import secrets
import sys
from collections.abc import Callable
from datetime import timedelta

import pytest
from sqlalchemy.pool import StaticPool

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_dependencies():
    from app import Config, create_app
    from backend.app.extensions import db, notifier

    return Config, create_app, db, notifier


ConfigBase, create_app, db, notifier = _load_dependencies()


class TestConfig(ConfigBase):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "poolclass": StaticPool,
        "connect_args": {"check_same_thread": False},
    }
    CORS_ALLOWED_ORIGINS = "http://localhost"
    MAIL_SERVER = None
    MAIL_CAPTURE = True
    NOTIFICATIONS_ASYNC = False
    FRONTEND_URL = "http://frontend.test"
    MANAGER_ROLES = None
    ADMIN_ROLES = None


@pytest.fixture(scope="module")
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def cleanup_database(app):
    from backend.app.models import (
        ApiToken,
        HistoryEntry,
        NotificationLog,
        SharePoint,
        SignerEntry,
        User,
    )
    from backend.app.models.sharepoint import sharepoint_managers

    notifier.clear_outbox()

    yield

    db.session.rollback()
    db.session.query(NotificationLog).delete()
    db.session.query(HistoryEntry).delete()
    db.session.query(SignerEntry).delete()
    db.session.execute(sharepoint_managers.delete())
    db.session.query(SharePoint).delete()
    db.session.query(ApiToken).delete()
    db.session.query(User).delete()
    db.session.commit()
    db.session.remove()
    notifier.clear_outbox()


@pytest.fixture()
def user_factory(app):
    from backend.app.models.auth import User

    def factory(username: str, roles: list[str] | None = None, license: str | None = None):
        user = User(
            license=license or f"LIC-{username.upper()}",
            username=username,
            email=f"{username}@example.com",
            roles=roles or ["User"],
        )
        db.session.add(user)
        db.session.commit()
        return user

    return factory


@pytest.fixture()
def users(user_factory):
    """Creator, manager M1, signers U1/U2, an admin and an unrelated user."""

    return {
        "creator": user_factory("creator", ["Engineering Staff"]),
        "m1": user_factory("m1", ["Manager"]),
        "m2": user_factory("m2", ["Quality Manager"]),
        "u1": user_factory("u1", ["Production Staff"]),
        "u2": user_factory("u2", ["Quality Staff"]),
        "admin": user_factory("admin", ["Admin"]),
        "outsider": user_factory("outsider", ["User"]),
    }


@pytest.fixture()
def auth_header_factory(app):
    from backend.app.models.auth import ApiToken
    from backend.app.utils.auth import hash_token

    def factory(user, name: str | None = None) -> dict[str, str]:
        token_value = secrets.token_urlsafe(16)
        token = ApiToken(
            user=user,
            name=name or f"Test token for {user.username}",
            token_hash=hash_token(token_value),
        )
        db.session.add(token)
        db.session.commit()
        return {"Authorization": f"Bearer {token_value}"}

    return factory


@pytest.fixture()
def headers(users, auth_header_factory: Callable[..., dict[str, str]]):
    return {key: auth_header_factory(user) for key, user in users.items()}


@pytest.fixture()
def outbox(app):
    return notifier.outbox


@pytest.fixture()
def future_deadline():
    from backend.app.utils.timestamps import serialize_timestamp, utcnow

    def factory(days: int = 7) -> str:
        return serialize_timestamp(utcnow() + timedelta(days=days))

    return factory


@pytest.fixture()
def create_sharepoint(client, users, headers, future_deadline):
    """Create a record through the API; M1 approves, U1 and U2 sign by default."""

    def factory(**overrides) -> dict:
        payload = {
            "title": "Quality handbook v2",
            "link": "https://files.example.com/handbook-v2.pdf",
            "comment": "Please review section 4",
            "deadline": future_deadline(),
            "managersToApprove": [users["m1"].id],
            "usersToSign": [users["u1"].id, users["u2"].id],
        }
        payload.update(overrides)
        response = client.post("/api/sharepoints", json=payload, headers=headers["creator"])
        assert response.status_code == 201, response.get_json()
        return response.get_json()["sharePoint"]

    return factory
