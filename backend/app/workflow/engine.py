"""State machine for SharePoint approval and signature workflows.

Every mutating operation follows the same sequence: load the record, check
authorization and preconditions, mutate, append the audit entry, recompute
the derived status, commit, then hand notifications to the dispatcher. Any
check that fails raises before the first mutation, so a rejected operation
never leaves partial state behind.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from flask import current_app

from ..extensions import db, notifier
from ..models.auth import User
from ..models.sharepoint import (
    COMMENT_MAX_LENGTH,
    DOCUMENT_NOTE_MAX_LENGTH,
    SIGNER_NOTE_MAX_LENGTH,
    STATUS_COMPLETED,
    STATUS_DISAPPROVED,
    STATUS_PENDING,
    STATUS_PENDING_APPROVAL,
    STATUS_REJECTED,
    STATUSES,
    TITLE_MAX_LENGTH,
    HistoryEntry,
    SharePoint,
    SignerEntry,
)
from ..notifications import (
    COMPLETION,
    DISAPPROVAL,
    MANAGER_CREATION,
    REJECTION,
    USER_ASSIGNMENT,
)
from ..roles import has_any_role, manager_roles
from ..utils.auth import is_admin, resolve_user
from ..utils.timestamps import parse_timestamp, serialize_timestamp, utcnow
from . import store
from .completion import CompletionData, compute_completion
from .errors import (
    ConflictError,
    ForbiddenError,
    ManagerApprovalRequired,
    NotFoundError,
    ValidationError,
)
from .events import (
    Approved,
    AuditEvent,
    Created,
    Disapproved,
    PreviousIssue,
    Rejected,
    Relaunched,
    Signed,
    Updated,
)
from .store import Page, SharePointFilter

RELAUNCHABLE_STATUSES = frozenset({STATUS_DISAPPROVED, STATUS_REJECTED})


def _text(
    value: object,
    field: str,
    *,
    required: bool = False,
    max_length: int | None = None,
    message: str | None = None,
) -> str | None:
    if value is None:
        text = ""
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValidationError(f"{field} must be a string", field=field)

    if not text:
        if required:
            raise ValidationError(message or f"{field} is required", field=field)
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters", field=field
        )
    return text


def _deadline(value: object, now: datetime) -> datetime:
    if value in (None, ""):
        raise ValidationError("deadline is required", field="deadline")
    deadline = parse_timestamp(value)
    if deadline is None:
        raise ValidationError("deadline must be an ISO 8601 timestamp", field="deadline")
    if deadline <= now:
        raise ValidationError("Deadline must be in the future", field="deadline")
    return deadline


def _resolve_users(values: object, field: str, *, empty_message: str) -> list[User]:
    if not isinstance(values, list) or not values:
        raise ValidationError(empty_message, field=field)

    users: list[User] = []
    seen: set[int] = set()
    for reference in values:
        user = resolve_user(reference)
        if user is None:
            raise ValidationError(
                "One or more selected users do not exist", field=field
            )
        if user.id in seen:
            raise ValidationError(f"{field} contains duplicate users", field=field)
        seen.add(user.id)
        users.append(user)
    return users


def _user_filter(reference: object, field: str) -> int | None:
    if reference in (None, ""):
        return None
    user = resolve_user(reference)
    if user is None:
        raise ValidationError(f"{field} does not match a known user", field=field)
    return user.id


def _load(sharepoint_id: int) -> SharePoint:
    sharepoint = store.find_by_id(sharepoint_id)
    if sharepoint is None:
        raise NotFoundError("SharePoint not found")
    return sharepoint


def _record(
    sharepoint: SharePoint,
    actor: User,
    event: AuditEvent,
    now: datetime,
    *,
    details: str,
    comment: str | None = None,
) -> None:
    sharepoint.history.append(
        HistoryEntry(
            action=event.action,
            performed_by=actor,
            timestamp=now,
            details=details,
            comment=comment,
            event=event.to_dict(),
        )
    )


def _persist(sharepoint: SharePoint, now: datetime) -> CompletionData:
    """Recompute the cached status and commit."""

    completion = compute_completion(sharepoint, now)
    sharepoint.status = completion.status
    sharepoint.updated_at = now
    store.commit()
    return completion


def _can_manage(actor: User, sharepoint: SharePoint) -> bool:
    return sharepoint.created_by_id == actor.id or is_admin(actor)


def _document_params(sharepoint: SharePoint) -> dict[str, Any]:
    return {
        "documentId": sharepoint.id,
        "documentTitle": sharepoint.title,
        "documentLink": sharepoint.link,
        "deadline": serialize_timestamp(sharepoint.deadline),
        "comment": sharepoint.comment,
        "createdBy": sharepoint.created_by.username if sharepoint.created_by else "",
    }


def _notify(kind: str, recipients: Iterable[User], base: Mapping[str, Any]) -> None:
    items: list[dict[str, Any]] = []
    seen: set[int] = set()
    for user in recipients:
        if user.id in seen:
            continue
        seen.add(user.id)
        items.append({**base, "to": user.email, "username": user.username})
    try:
        notifier.dispatch(kind, items)
    except Exception:
        current_app.logger.exception("Could not dispatch %s notifications", kind)


def create_sharepoint(actor: User, payload: Mapping[str, Any]) -> SharePoint:
    now = utcnow()
    title = _text(payload.get("title"), "title", required=True, max_length=TITLE_MAX_LENGTH)
    link = _text(payload.get("link"), "link", required=True)
    comment = _text(payload.get("comment"), "comment", max_length=COMMENT_MAX_LENGTH)
    deadline = _deadline(payload.get("deadline"), now)

    managers = _resolve_users(
        payload.get("managersToApprove"),
        "managersToApprove",
        empty_message="At least one manager must be selected",
    )
    signers = _resolve_users(
        payload.get("usersToSign"),
        "usersToSign",
        empty_message="At least one signer must be selected",
    )

    allowed = manager_roles(current_app.config)
    for manager in managers:
        if not has_any_role(manager.role_list(), allowed):
            raise ValidationError(
                f"User {manager.username} does not hold a manager role",
                field="managersToApprove",
            )

    sharepoint = SharePoint(
        title=title,
        link=link,
        comment=comment,
        deadline=deadline,
        creation_date=now,
        updated_at=now,
        created_by=actor,
        manager_approved=False,
        status=STATUS_PENDING_APPROVAL,
    )
    sharepoint.managers = managers
    sharepoint.signers = [
        SignerEntry(user=user, position=position) for position, user in enumerate(signers)
    ]
    _record(
        sharepoint,
        actor,
        Created(managers=[m.id for m in managers], signers=[s.id for s in signers]),
        now,
        details=f"SharePoint created with title: {title}. Waiting for manager approval.",
        comment=comment,
    )
    sharepoint.status = compute_completion(sharepoint, now).status
    store.insert(sharepoint)

    current_app.logger.info("SharePoint %s created by %s", sharepoint.id, actor.username)
    _notify(MANAGER_CREATION, sharepoint.managers, _document_params(sharepoint))
    return sharepoint


def approve_sharepoint(
    actor: User, sharepoint_id: int, approved: bool, approval_note: object = None
) -> SharePoint:
    sharepoint = _load(sharepoint_id)
    if actor.id not in sharepoint.manager_ids():
        raise ForbiddenError("You are not a designated approver for this SharePoint")

    note = _text(approval_note, "approvalNote", max_length=DOCUMENT_NOTE_MAX_LENGTH)
    if not approved and not note:
        raise ValidationError("comment required for rejection", field="approvalNote")

    now = utcnow()
    sharepoint.manager_approved = approved
    sharepoint.approved_by = actor
    sharepoint.approved_at = now
    if approved:
        sharepoint.status = STATUS_PENDING
        _record(
            sharepoint,
            actor,
            Approved(note=note),
            now,
            details="SharePoint approved by manager. Users can now sign the document.",
            comment=note,
        )
    else:
        sharepoint.status = STATUS_REJECTED
        sharepoint.disapproval_note = note
        _record(
            sharepoint,
            actor,
            Rejected(reason=note or ""),
            now,
            details=f"SharePoint rejected by manager: {note}",
            comment=note,
        )
    _persist(sharepoint, now)

    current_app.logger.info(
        "SharePoint %s %s by %s",
        sharepoint.id,
        "approved" if approved else "rejected",
        actor.username,
    )
    params = _document_params(sharepoint)
    if approved:
        _notify(
            USER_ASSIGNMENT,
            [signer.user for signer in sharepoint.signers],
            {**params, "approvedBy": actor.username},
        )
    else:
        _notify(
            REJECTION,
            [sharepoint.created_by],
            {**params, "actor": actor.username, "reason": note},
        )
    return sharepoint


def sign_sharepoint(
    actor: User, sharepoint_id: int, signature_note: object = None
) -> SharePoint:
    sharepoint = _load(sharepoint_id)
    if not sharepoint.manager_approved:
        raise ManagerApprovalRequired(
            "Document must be approved by a manager before users can sign it"
        )

    signer = sharepoint.find_signer(actor.id)
    if signer is None:
        raise ForbiddenError("You are not authorized to sign this SharePoint")
    # A prior disapproval by this signer does not block signing.
    if signer.has_signed:
        raise ConflictError("You have already signed this SharePoint", code="ALREADY_SIGNED")

    note = _text(signature_note, "signatureNote", max_length=SIGNER_NOTE_MAX_LENGTH)
    now = utcnow()
    previous_status = compute_completion(sharepoint, now).status

    signer.has_signed = True
    signer.signed_at = now
    signer.signature_note = note
    _record(
        sharepoint,
        actor,
        Signed(note=note),
        now,
        details=f"Signed with note: {note}" if note else "Signed",
        comment=note,
    )
    completion = _persist(sharepoint, now)

    current_app.logger.info(
        "SharePoint %s signed by %s (%s/%s)",
        sharepoint.id,
        actor.username,
        completion.signed_count,
        completion.total_signers,
    )
    if completion.status == STATUS_COMPLETED and previous_status != STATUS_COMPLETED:
        _notify(
            COMPLETION,
            [sharepoint.created_by, *sharepoint.managers],
            _document_params(sharepoint),
        )
    return sharepoint


def disapprove_sharepoint(
    actor: User, sharepoint_id: int, disapproval_note: object
) -> SharePoint:
    sharepoint = _load(sharepoint_id)
    if not sharepoint.manager_approved:
        raise ManagerApprovalRequired(
            "Document must be approved by a manager before users can disapprove it"
        )

    signer = sharepoint.find_signer(actor.id)
    if signer is None:
        raise ForbiddenError("You are not authorized to disapprove this SharePoint")
    if signer.has_signed:
        raise ConflictError(
            "You have already signed this SharePoint and cannot disapprove it",
            code="ALREADY_SIGNED",
        )
    if signer.has_disapproved:
        raise ConflictError(
            "You have already disapproved this SharePoint", code="ALREADY_DISAPPROVED"
        )
    note = _text(
        disapproval_note,
        "disapprovalNote",
        required=True,
        max_length=SIGNER_NOTE_MAX_LENGTH,
        message="A reason is required to disapprove a document",
    )

    now = utcnow()
    signer.has_disapproved = True
    signer.disapproved_at = now
    signer.disapproval_note = note
    sharepoint.status = STATUS_DISAPPROVED
    sharepoint.disapproval_note = note
    _record(
        sharepoint,
        actor,
        Disapproved(reason=note or ""),
        now,
        details=f"Disapproved by {actor.username}: {note}",
        comment=note,
    )
    _persist(sharepoint, now)

    current_app.logger.info("SharePoint %s disapproved by %s", sharepoint.id, actor.username)
    _notify(
        DISAPPROVAL,
        [sharepoint.created_by],
        {**_document_params(sharepoint), "actor": actor.username, "reason": note},
    )
    return sharepoint


def _previous_issues(sharepoint: SharePoint) -> list[PreviousIssue]:
    issues = [
        PreviousIssue(
            source="disapproval",
            username=signer.user.username if signer.user else None,
            reason=signer.disapproval_note,
            timestamp=serialize_timestamp(signer.disapproved_at),
        )
        for signer in sharepoint.signers
        if signer.has_disapproved
    ]
    issues.extend(
        PreviousIssue(
            source="rejection",
            username=entry.performed_by.username if entry.performed_by else None,
            reason=entry.comment,
            timestamp=serialize_timestamp(entry.timestamp),
        )
        for entry in sharepoint.history
        if entry.action == "rejected"
    )
    return issues


def relaunch_sharepoint(
    actor: User, sharepoint_id: int, relaunch_comment: object = None
) -> SharePoint:
    sharepoint = _load(sharepoint_id)
    if sharepoint.created_by_id != actor.id:
        raise ForbiddenError("Only the creator can relaunch this SharePoint")

    now = utcnow()
    current_status = compute_completion(sharepoint, now).status
    if current_status not in RELAUNCHABLE_STATUSES:
        raise ConflictError(
            f"Only disapproved or rejected SharePoints can be relaunched (current status: {current_status})",
            code="INVALID_STATUS",
        )
    comment = _text(relaunch_comment, "relaunchComment", max_length=COMMENT_MAX_LENGTH)

    issues = _previous_issues(sharepoint)
    sharepoint.status = STATUS_PENDING_APPROVAL
    sharepoint.manager_approved = False
    sharepoint.approved_by = None
    sharepoint.approved_at = None
    sharepoint.disapproval_note = None
    # Signatures survive a relaunch; only disapprovals are cleared.
    for signer in sharepoint.signers:
        signer.has_disapproved = False
        signer.disapproved_at = None
        signer.disapproval_note = None

    summary = "; ".join(f"{issue.username}: {issue.reason}" for issue in issues)
    _record(
        sharepoint,
        actor,
        Relaunched(previous_issues=issues, comment=comment),
        now,
        details=(
            f"SharePoint relaunched for approval. Previous issues: {summary}"
            if summary
            else "SharePoint relaunched for approval."
        ),
        comment=comment,
    )
    _persist(sharepoint, now)

    current_app.logger.info(
        "SharePoint %s relaunched by %s after %s issue(s)",
        sharepoint.id,
        actor.username,
        len(issues),
    )
    _notify(MANAGER_CREATION, sharepoint.managers, _document_params(sharepoint))
    return sharepoint


def _signer_snapshot(signers: Iterable[SignerEntry]) -> list[dict[str, Any]]:
    return [
        {
            "user": signer.user_id,
            "hasSigned": signer.has_signed,
            "signedAt": serialize_timestamp(signer.signed_at),
            "hasDisapproved": signer.has_disapproved,
        }
        for signer in signers
    ]


def update_sharepoint(
    actor: User, sharepoint_id: int, payload: Mapping[str, Any]
) -> SharePoint:
    sharepoint = _load(sharepoint_id)
    if not _can_manage(actor, sharepoint):
        raise ForbiddenError("You don't have permission to update this SharePoint")
    if "managersToApprove" in payload:
        raise ValidationError(
            "managersToApprove cannot be changed after creation", field="managersToApprove"
        )

    now = utcnow()
    changes: dict[str, Any] = {}
    if payload.get("title") is not None:
        changes["title"] = _text(
            payload["title"], "title", required=True, max_length=TITLE_MAX_LENGTH
        )
    if payload.get("link") is not None:
        changes["link"] = _text(payload["link"], "link", required=True)
    if "comment" in payload:
        changes["comment"] = _text(
            payload["comment"], "comment", max_length=COMMENT_MAX_LENGTH
        )
    if payload.get("deadline") is not None:
        changes["deadline"] = _deadline(payload["deadline"], now)
    new_signers: list[User] | None = None
    if payload.get("usersToSign") is not None:
        new_signers = _resolve_users(
            payload["usersToSign"],
            "usersToSign",
            empty_message="At least one signer must be selected",
        )

    if not changes and new_signers is None:
        raise ValidationError("No updatable fields were provided")

    previous: dict[str, Any] = {}
    if new_signers is not None:
        previous["usersToSign"] = _signer_snapshot(sharepoint.signers)
        # Flush the removals first so re-added users don't hit the unique constraint.
        sharepoint.signers.clear()
        db.session.flush()
        sharepoint.signers = [
            SignerEntry(user=user, position=position)
            for position, user in enumerate(new_signers)
        ]
    for field, value in changes.items():
        current = getattr(sharepoint, field)
        previous[field] = serialize_timestamp(current) if isinstance(current, datetime) else current
        setattr(sharepoint, field, value)

    changed_fields = sorted(previous)
    _record(
        sharepoint,
        actor,
        Updated(previous_values=previous),
        now,
        details=f"SharePoint updated: {', '.join(changed_fields)}",
    )
    _persist(sharepoint, now)

    current_app.logger.info(
        "SharePoint %s updated by %s (%s)", sharepoint.id, actor.username, changed_fields
    )
    return sharepoint


def delete_sharepoint(actor: User, sharepoint_id: int) -> None:
    sharepoint = _load(sharepoint_id)
    if not _can_manage(actor, sharepoint):
        raise ForbiddenError("You don't have permission to delete this SharePoint")
    store.delete(sharepoint)
    current_app.logger.info("SharePoint %s deleted by %s", sharepoint_id, actor.username)


def get_sharepoint(sharepoint_id: int) -> SharePoint:
    return _load(sharepoint_id)


def list_sharepoints(
    criteria: SharePointFilter,
    *,
    page: int = 1,
    limit: int | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> Page:
    config = current_app.config
    max_limit = int(config.get("MAX_PAGE_SIZE", 100))
    limit = limit or int(config.get("DEFAULT_PAGE_SIZE", 10))
    if page < 1:
        raise ValidationError("page must be a positive integer", field="page")
    if limit < 1:
        raise ValidationError("limit must be a positive integer", field="limit")
    if criteria.status and criteria.status not in STATUSES:
        raise ValidationError(f"Unknown status: {criteria.status}", field="status")
    return store.find_page(
        criteria,
        page=page,
        limit=min(limit, max_limit),
        sort_by=sort_by,
        sort_order=sort_order,
        now=utcnow(),
    )


def build_filter(args: Mapping[str, Any]) -> SharePointFilter:
    """Translate request filters into store criteria."""

    search = args.get("search")
    return SharePointFilter(
        status=args.get("status") or None,
        created_by=_user_filter(args.get("createdBy"), "createdBy"),
        assigned_to=_user_filter(args.get("assignedTo"), "assignedTo"),
        search=search.strip() if isinstance(search, str) and search.strip() else None,
    )


def assigned_filter(actor: User, status: str | None = None) -> SharePointFilter:
    return SharePointFilter(status=status, assigned_to=actor.id)


def created_filter(actor: User, status: str | None = None) -> SharePointFilter:
    return SharePointFilter(status=status, created_by=actor.id)


def approvals_filter(actor: User) -> SharePointFilter:
    return SharePointFilter(
        status=STATUS_PENDING_APPROVAL, managed_by=actor.id, manager_approved=False
    )


def can_user_sign(actor: User, sharepoint_id: int, user_reference: object = None) -> dict[str, Any]:
    sharepoint = _load(sharepoint_id)
    if user_reference in (None, ""):
        user: User | None = actor
    else:
        user = resolve_user(user_reference)
        if user is None:
            raise NotFoundError("User not found")

    manager_approved = bool(sharepoint.manager_approved)
    is_assigned = sharepoint.find_signer(user.id) is not None
    if not manager_approved:
        reason = "Manager approval required before signing"
    elif not is_assigned:
        reason = "User not assigned to sign this document"
    else:
        reason = "User can sign"
    return {
        "canSign": manager_approved and is_assigned,
        "managerApproved": manager_approved,
        "isAssignedSigner": is_assigned,
        "reason": reason,
    }
