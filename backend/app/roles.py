"""Shared role enumeration used by authorization checks and the roles API."""

from __future__ import annotations

from collections.abc import Iterable

ADMIN_ROLE = "Admin"

ROLE_CATEGORIES: dict[str, list[str]] = {
    "Management": [
        ADMIN_ROLE,
        "Manager",
        "Project Manager",
        "Business Manager",
        "Department Manager",
        "Operations director",
        "Plant manager",
        "Engineering Manager",
        "Production Manager",
        "Controlling Manager",
        "Financial Manager",
        "Purchasing Manager",
        "Logistic Manager",
        "Quality Manager",
        "Human Resources Manager",
        "Maintenance Manager",
    ],
    "Staff": [
        "Direction Assistant",
        "Engineering Staff",
        "Business Staff",
        "Production Staff",
        "Controlling Staff",
        "Financial Staff",
        "Purchasing Staff",
        "Logistics Staff",
        "Quality Staff",
        "Human Resources Staff",
        "Maintenance Staff",
        "Health & Safety Staff",
        "Informatic Systems Staff",
    ],
    "Other": ["Customer", "User"],
}

ALL_ROLES: list[str] = [role for roles in ROLE_CATEGORIES.values() for role in roles]
DEFAULT_ROLES: list[str] = ["User"]
DEFAULT_MANAGER_ROLES: frozenset[str] = frozenset(ROLE_CATEGORIES["Management"])
DEFAULT_ADMIN_ROLES: frozenset[str] = frozenset({ADMIN_ROLE})


def is_valid_role(role: object) -> bool:
    return isinstance(role, str) and role in ALL_ROLES


def has_any_role(user_roles: Iterable[str], allowed: Iterable[str]) -> bool:
    """Return whether ``user_roles`` intersects ``allowed`` (case-insensitive)."""

    wanted = {role.upper() for role in allowed}
    return any(role.upper() in wanted for role in user_roles or ())


def manager_roles(config: dict) -> frozenset[str]:
    configured = config.get("MANAGER_ROLES")
    return frozenset(configured) if configured else DEFAULT_MANAGER_ROLES


def admin_roles(config: dict) -> frozenset[str]:
    configured = config.get("ADMIN_ROLES")
    return frozenset(configured) if configured else DEFAULT_ADMIN_ROLES
