"""Persistence helpers for SharePoint records."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models.sharepoint import (
    STATUS_COMPLETED,
    STATUS_DISAPPROVED,
    STATUS_EXPIRED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_PENDING_APPROVAL,
    STATUS_REJECTED,
    SharePoint,
    SignerEntry,
    sharepoint_managers,
)
from .errors import StaleRecordError, ValidationError

SORTABLE_FIELDS: dict[str, Any] = {
    "title": SharePoint.title,
    "link": SharePoint.link,
    "comment": SharePoint.comment,
    "deadline": SharePoint.deadline,
    "creationDate": SharePoint.creation_date,
    "createdAt": SharePoint.creation_date,
    "updatedAt": SharePoint.updated_at,
    "managerApproved": SharePoint.manager_approved,
    "approvedAt": SharePoint.approved_at,
}


@dataclass
class SharePointFilter:
    status: str | None = None
    created_by: int | None = None
    assigned_to: int | None = None
    managed_by: int | None = None
    manager_approved: bool | None = None
    search: str | None = None


@dataclass
class Page:
    items: list[SharePoint]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict[str, Any]:
        return {
            "currentPage": self.page,
            "totalPages": self.total_pages,
            "totalItems": self.total,
            "itemsPerPage": self.limit,
            "hasNextPage": self.page < self.total_pages,
            "hasPrevPage": self.page > 1,
        }


def find_by_id(sharepoint_id: int) -> SharePoint | None:
    return db.session.get(SharePoint, sharepoint_id)


def _signer_exists(*conditions):
    return (
        select(SignerEntry.id)
        .where(SignerEntry.sharepoint_id == SharePoint.id, *conditions)
        .correlate(SharePoint)
        .exists()
    )


def derived_status(now: datetime):
    """SQL form of :func:`derive_status` evaluated at ``now``."""

    approved = SharePoint.manager_approved.is_(True)
    return case(
        (_signer_exists(SignerEntry.has_disapproved.is_(True)), STATUS_DISAPPROVED),
        (SharePoint.status == STATUS_REJECTED, STATUS_REJECTED),
        (
            and_(
                SharePoint.manager_approved.is_(False),
                SharePoint.status == STATUS_PENDING_APPROVAL,
            ),
            STATUS_PENDING_APPROVAL,
        ),
        (
            and_(
                approved,
                _signer_exists(),
                ~_signer_exists(SignerEntry.has_signed.is_(False)),
            ),
            STATUS_COMPLETED,
        ),
        (and_(approved, SharePoint.deadline < now), STATUS_EXPIRED),
        (and_(approved, _signer_exists(SignerEntry.has_signed.is_(True))), STATUS_IN_PROGRESS),
        (approved, STATUS_PENDING),
        else_=STATUS_PENDING_APPROVAL,
    )


def _apply_filter(query, criteria: SharePointFilter, now: datetime):
    if criteria.status:
        query = query.filter(derived_status(now) == criteria.status)
    if criteria.created_by is not None:
        query = query.filter(SharePoint.created_by_id == criteria.created_by)
    if criteria.assigned_to is not None:
        query = query.filter(
            SharePoint.signers.any(SignerEntry.user_id == criteria.assigned_to)
        )
    if criteria.managed_by is not None:
        manages = (
            db.session.query(sharepoint_managers.c.sharepoint_id)
            .filter(sharepoint_managers.c.user_id == criteria.managed_by)
        )
        query = query.filter(SharePoint.id.in_(manages))
    if criteria.manager_approved is not None:
        query = query.filter(SharePoint.manager_approved.is_(criteria.manager_approved))
    if criteria.search:
        pattern = f"%{criteria.search.lower()}%"
        query = query.filter(
            or_(
                func.lower(SharePoint.title).like(pattern),
                and_(
                    SharePoint.comment.isnot(None),
                    func.lower(SharePoint.comment).like(pattern),
                ),
            )
        )
    return query


def _order_clause(sort_by: str | None, sort_order: str | None, now: datetime):
    if sort_by == "status":
        column = derived_status(now)
    else:
        column = SORTABLE_FIELDS.get(sort_by or "creationDate")
    if column is None:
        choices = sorted([*SORTABLE_FIELDS, "status"])
        raise ValidationError(f"sortBy must be one of: {', '.join(choices)}", field="sortBy")
    order = (sort_order or "desc").lower()
    if order not in {"asc", "desc"}:
        raise ValidationError("sortOrder must be 'asc' or 'desc'", field="sortOrder")
    primary = column.asc() if order == "asc" else column.desc()
    tiebreak = SharePoint.id.asc() if order == "asc" else SharePoint.id.desc()
    return primary, tiebreak


def find_page(
    criteria: SharePointFilter,
    *,
    page: int,
    limit: int,
    sort_by: str | None = None,
    sort_order: str | None = None,
    now: datetime,
) -> Page:
    """Return one page of records matching ``criteria``.

    Status filters and status ordering use the status derived at ``now``, the
    same value every response reports, not the cached column.
    """

    ordering = _order_clause(sort_by, sort_order, now)
    query = _apply_filter(SharePoint.query, criteria, now)
    total = query.count()
    items = query.order_by(*ordering).offset((page - 1) * limit).limit(limit).all()
    return Page(items=items, page=page, limit=limit, total=total)


def insert(sharepoint: SharePoint) -> SharePoint:
    db.session.add(sharepoint)
    commit()
    return sharepoint


def delete(sharepoint: SharePoint) -> None:
    db.session.delete(sharepoint)
    commit()


def commit() -> None:
    """Commit the session, translating version mismatches into conflicts."""

    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise StaleRecordError(
            "the record was modified by another request; reload and retry"
        ) from exc
    except Exception:
        db.session.rollback()
        raise
