"""Seed the database with demo users and print an admin API token."""
from __future__ import annotations

import pathlib
import sys
from typing import Iterable

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import create_app
from backend.app.extensions import db
from backend.app.models.auth import ApiToken, User
from backend.app.utils.auth import generate_token, hash_token

DEMO_USERS: tuple[dict[str, object], ...] = (
    {"license": "ADM-0001", "username": "admin", "email": "admin@example.com", "roles": ["Admin"]},
    {"license": "MGR-0001", "username": "manager", "email": "manager@example.com", "roles": ["Manager"]},
    {"license": "USR-0001", "username": "alice", "email": "alice@example.com", "roles": ["Engineering Staff"]},
    {"license": "USR-0002", "username": "bob", "email": "bob@example.com", "roles": ["Quality Staff"]},
)


def _ensure_users(definitions: Iterable[dict[str, object]]) -> tuple[int, int]:
    """Create missing users and refresh the roles of existing ones."""

    created = 0
    updated = 0
    for definition in definitions:
        user = User.query.filter_by(license=definition["license"]).first()
        if user is None:
            db.session.add(User(**definition))
            created += 1
        elif user.role_list() != definition["roles"]:
            user.roles = list(definition["roles"])
            updated += 1
    return created, updated


def _issue_admin_token() -> str:
    admin = User.query.filter_by(username="admin").one()
    plaintext = generate_token()
    db.session.add(ApiToken(user=admin, name="Seed admin token", token_hash=hash_token(plaintext)))
    return plaintext


def main() -> None:
    app = create_app()
    with app.app_context():
        created_users, updated_users = _ensure_users(DEMO_USERS)
        db.session.flush()
        token = _issue_admin_token()
        db.session.commit()

        print(
            "Seed completed",
            f"users created={created_users}",
            f"users updated={updated_users}",
        )
        print(f"Admin token (shown once): {token}")


if __name__ == "__main__":
    main()
