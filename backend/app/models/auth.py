"""Identity related database models."""

from __future__ import annotations

from ..extensions import db
from ..roles import DEFAULT_ROLES
from ..utils.timestamps import utcnow


class User(db.Model):
    """A principal known to the identity provider."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    license = db.Column(db.String(64), unique=True, nullable=False)
    username = db.Column(db.String(120), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    roles = db.Column(db.JSON, nullable=False, default=lambda: list(DEFAULT_ROLES))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    tokens = db.relationship(
        "ApiToken", back_populates="user", cascade="all, delete-orphan", lazy="selectin"
    )

    def role_list(self) -> list[str]:
        return list(self.roles or [])

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<User {self.username!r}>"


class ApiToken(db.Model):
    """Bearer token bound to a user, stored as a SHA-256 hash."""

    __tablename__ = "api_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(120), nullable=False)
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    revoked_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User", back_populates="tokens")

    def is_active(self) -> bool:
        """Return whether the token is still active."""

        return self.revoked_at is None
