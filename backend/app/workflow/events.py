"""Typed audit payloads stored in the ``event`` column of history entries.

Each history action carries its own payload shape. The dataclasses below are
serialised with a ``type`` tag so the JSON column can be read back into the
matching class with :func:`load_event`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class AuditEvent:
    action: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.action
        return payload


@dataclass(frozen=True)
class Created(AuditEvent):
    action: ClassVar[str] = "created"

    managers: list[int] = field(default_factory=list)
    signers: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class Updated(AuditEvent):
    action: ClassVar[str] = "updated"

    previous_values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Signed(AuditEvent):
    action: ClassVar[str] = "signed"

    note: str | None = None


@dataclass(frozen=True)
class Approved(AuditEvent):
    action: ClassVar[str] = "approved"

    note: str | None = None


@dataclass(frozen=True)
class Rejected(AuditEvent):
    action: ClassVar[str] = "rejected"

    reason: str = ""


@dataclass(frozen=True)
class Disapproved(AuditEvent):
    action: ClassVar[str] = "disapproved"

    reason: str = ""


@dataclass(frozen=True)
class PreviousIssue:
    source: str
    username: str | None
    reason: str | None
    timestamp: str | None


@dataclass(frozen=True)
class Relaunched(AuditEvent):
    action: ClassVar[str] = "relaunched"

    previous_issues: list[PreviousIssue] = field(default_factory=list)
    comment: str | None = None


_EVENT_TYPES: dict[str, type[AuditEvent]] = {
    cls.action: cls
    for cls in (Created, Updated, Signed, Approved, Rejected, Disapproved, Relaunched)
}


def load_event(payload: dict[str, Any] | None) -> AuditEvent | None:
    """Rebuild an event from its stored JSON form."""

    if not isinstance(payload, dict):
        return None
    cls = _EVENT_TYPES.get(payload.get("type", ""))
    if cls is None:
        return None
    data = {key: value for key, value in payload.items() if key != "type"}
    if cls is Relaunched:
        data["previous_issues"] = [
            PreviousIssue(**issue) for issue in data.get("previous_issues", [])
        ]
    try:
        return cls(**data)
    except TypeError:
        return None
