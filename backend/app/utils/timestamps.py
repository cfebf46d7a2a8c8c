"""Timestamp helpers shared by models, the workflow engine and the API."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, matching the DB columns."""

    return datetime.now(UTC).replace(tzinfo=None)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO 8601 string into a naive UTC datetime.

    Returns ``None`` when the value cannot be interpreted as a timestamp.
    """

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def serialize_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    timestamp = value.isoformat()
    if timestamp.endswith("+00:00"):
        return timestamp.replace("+00:00", "Z")
    if not timestamp.endswith("Z"):
        return f"{timestamp}Z"
    return timestamp
