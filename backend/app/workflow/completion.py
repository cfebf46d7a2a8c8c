"""Pure derivation of completion percentage and workflow status."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from ..models.sharepoint import (
    STATUS_COMPLETED,
    STATUS_DISAPPROVED,
    STATUS_EXPIRED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_PENDING_APPROVAL,
    STATUS_REJECTED,
)


class _Signer(Protocol):
    has_signed: bool
    has_disapproved: bool


class _Record(Protocol):
    manager_approved: bool
    status: str | None
    deadline: datetime | None
    signers: Iterable[_Signer]


@dataclass(frozen=True)
class CompletionData:
    completion_percentage: int
    status: str
    all_users_signed: bool
    has_disapprovals: bool
    signed_count: int
    total_signers: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "completionPercentage": self.completion_percentage,
            "status": self.status,
            "allUsersSigned": self.all_users_signed,
            "hasDisapprovals": self.has_disapprovals,
            "signedCount": self.signed_count,
            "totalSigners": self.total_signers,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def completion_percentage(manager_approved: bool, signed_count: int, total_signers: int) -> int:
    """Blend manager approval (50%) and the signature ratio (50%)."""

    if total_signers > 0:
        approval_progress = 1 if manager_approved else 0
        ratio = signed_count / total_signers
        return _round_half_up((approval_progress * 0.5 + ratio * 0.5) * 100)
    return 100 if manager_approved else 0


def derive_status(
    *,
    manager_approved: bool,
    stored_status: str | None,
    signed_count: int,
    total_signers: int,
    disapproved_count: int,
    deadline: datetime | None,
    now: datetime,
) -> str:
    """Return the workflow status; the first matching rule wins."""

    all_signed = total_signers > 0 and signed_count == total_signers

    if disapproved_count > 0:
        return STATUS_DISAPPROVED
    if stored_status == STATUS_REJECTED:
        return STATUS_REJECTED
    if not manager_approved and stored_status == STATUS_PENDING_APPROVAL:
        return STATUS_PENDING_APPROVAL
    if all_signed and manager_approved:
        return STATUS_COMPLETED
    if manager_approved and deadline is not None and now > deadline:
        return STATUS_EXPIRED
    if signed_count > 0 and manager_approved:
        return STATUS_IN_PROGRESS
    if manager_approved:
        return STATUS_PENDING
    return STATUS_PENDING_APPROVAL


def compute_completion(record: _Record, now: datetime) -> CompletionData:
    """Derive completion data for ``record`` as of ``now``."""

    signers = list(record.signers)
    total = len(signers)
    signed = sum(1 for signer in signers if signer.has_signed)
    disapproved = sum(1 for signer in signers if signer.has_disapproved)
    approved = bool(record.manager_approved)

    status = derive_status(
        manager_approved=approved,
        stored_status=record.status,
        signed_count=signed,
        total_signers=total,
        disapproved_count=disapproved,
        deadline=record.deadline,
        now=now,
    )
    return CompletionData(
        completion_percentage=completion_percentage(approved, signed, total),
        status=status,
        all_users_signed=total > 0 and signed == total,
        has_disapprovals=disapproved > 0,
        signed_count=signed,
        total_signers=total,
    )
