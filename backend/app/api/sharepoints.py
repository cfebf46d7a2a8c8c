"""REST endpoints for the SharePoint approval and signature workflow."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from flask import Blueprint, jsonify, request

from ..models.auth import User
from ..models.sharepoint import HistoryEntry, SharePoint, SignerEntry
from ..utils.auth import current_user, require_user
from ..utils.timestamps import serialize_timestamp, utcnow
from ..workflow import engine
from ..workflow.completion import compute_completion
from ..workflow.errors import ValidationError
from ..workflow.events import load_event
from ..workflow.store import Page, SharePointFilter

bp = Blueprint("sharepoints", __name__)


def _serialize_user(user: User | None) -> dict[str, object] | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "license": user.license,
        "username": user.username,
        "email": user.email,
    }


def _serialize_signer(signer: SignerEntry) -> dict[str, object]:
    return {
        "user": _serialize_user(signer.user),
        "state": signer.state,
        "hasSigned": signer.has_signed,
        "signedAt": serialize_timestamp(signer.signed_at),
        "signatureNote": signer.signature_note,
        "hasDisapproved": signer.has_disapproved,
        "disapprovedAt": serialize_timestamp(signer.disapproved_at),
        "disapprovalNote": signer.disapproval_note,
    }


def _serialize_history(entry: HistoryEntry) -> dict[str, object]:
    event = load_event(entry.event)
    return {
        "id": entry.id,
        "action": entry.action,
        "performedBy": _serialize_user(entry.performed_by),
        "timestamp": serialize_timestamp(entry.timestamp),
        "details": entry.details,
        "comment": entry.comment,
        "event": event.to_dict() if event is not None else entry.event,
    }


def _serialize_sharepoint(sharepoint: SharePoint) -> dict[str, Any]:
    """Render a record with freshly derived completion data.

    The response status always comes from the calculator, so a stored status
    that went stale (for example after the deadline passed) is never exposed.
    """

    completion = compute_completion(sharepoint, utcnow())
    return {
        "id": sharepoint.id,
        "title": sharepoint.title,
        "link": sharepoint.link,
        "comment": sharepoint.comment,
        "deadline": serialize_timestamp(sharepoint.deadline),
        "creationDate": serialize_timestamp(sharepoint.creation_date),
        "updatedAt": serialize_timestamp(sharepoint.updated_at),
        "createdBy": _serialize_user(sharepoint.created_by),
        "managersToApprove": [_serialize_user(manager) for manager in sharepoint.managers],
        "managerApproved": bool(sharepoint.manager_approved),
        "approvedBy": _serialize_user(sharepoint.approved_by),
        "approvedAt": serialize_timestamp(sharepoint.approved_at),
        "disapprovalNote": sharepoint.disapproval_note,
        "usersToSign": [_serialize_signer(signer) for signer in sharepoint.signers],
        "updateHistory": [_serialize_history(entry) for entry in sharepoint.history],
        "version": sharepoint.version_id,
        **completion.to_dict(),
    }


def _json_body() -> dict[str, Any]:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _page_args() -> dict[str, Any]:
    return {
        "page": request.args.get("page", default=1, type=int) or 1,
        "limit": request.args.get("limit", type=int),
        "sort_by": request.args.get("sortBy"),
        "sort_order": request.args.get("sortOrder"),
    }


def _page_response(result: Page) -> tuple[object, int]:
    return (
        jsonify(
            {
                "sharePoints": [_serialize_sharepoint(item) for item in result.items],
                "pagination": result.pagination(),
            }
        ),
        HTTPStatus.OK,
    )


def _mutation_response(message: str, sharepoint: SharePoint, status: int = HTTPStatus.OK):
    return jsonify({"message": message, "sharePoint": _serialize_sharepoint(sharepoint)}), status


def _list(criteria: SharePointFilter) -> tuple[object, int]:
    return _page_response(engine.list_sharepoints(criteria, **_page_args()))


@bp.post("/sharepoints")
@require_user()
def create_sharepoint() -> tuple[object, int]:
    sharepoint = engine.create_sharepoint(current_user(), _json_body())
    return _mutation_response(
        "SharePoint created successfully. Waiting for manager approval.",
        sharepoint,
        HTTPStatus.CREATED,
    )


@bp.get("/sharepoints")
@require_user()
def list_sharepoints() -> tuple[object, int]:
    return _list(engine.build_filter(request.args))


@bp.get("/sharepoints/my-assigned")
@require_user()
def my_assigned() -> tuple[object, int]:
    return _list(engine.assigned_filter(current_user(), request.args.get("status") or None))


@bp.get("/sharepoints/my-created")
@require_user()
def my_created() -> tuple[object, int]:
    return _list(engine.created_filter(current_user(), request.args.get("status") or None))


@bp.get("/sharepoints/my-approvals")
@require_user()
def my_approvals() -> tuple[object, int]:
    return _list(engine.approvals_filter(current_user()))


@bp.get("/sharepoints/<int:sharepoint_id>")
@require_user()
def get_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    sharepoint = engine.get_sharepoint(sharepoint_id)
    return jsonify(_serialize_sharepoint(sharepoint)), HTTPStatus.OK


@bp.put("/sharepoints/<int:sharepoint_id>")
@require_user()
def update_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    sharepoint = engine.update_sharepoint(current_user(), sharepoint_id, _json_body())
    return _mutation_response("SharePoint updated successfully", sharepoint)


@bp.delete("/sharepoints/<int:sharepoint_id>")
@require_user()
def delete_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    engine.delete_sharepoint(current_user(), sharepoint_id)
    return jsonify({"message": "SharePoint deleted successfully"}), HTTPStatus.OK


@bp.post("/sharepoints/<int:sharepoint_id>/sign")
@require_user()
def sign_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    payload = _json_body()
    sharepoint = engine.sign_sharepoint(
        current_user(), sharepoint_id, payload.get("signatureNote")
    )
    return _mutation_response("SharePoint signed successfully", sharepoint)


@bp.post("/sharepoints/<int:sharepoint_id>/disapprove")
@require_user()
def disapprove_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    payload = _json_body()
    sharepoint = engine.disapprove_sharepoint(
        current_user(), sharepoint_id, payload.get("disapprovalNote")
    )
    return _mutation_response("SharePoint disapproved", sharepoint)


@bp.post("/sharepoints/<int:sharepoint_id>/approve")
@require_user()
def approve_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    payload = _json_body()
    approved = payload.get("approved")
    if not isinstance(approved, bool):
        raise ValidationError("approved must be a boolean", field="approved")
    sharepoint = engine.approve_sharepoint(
        current_user(), sharepoint_id, approved, payload.get("approvalNote")
    )
    message = "SharePoint approved successfully" if approved else "SharePoint rejected"
    return _mutation_response(message, sharepoint)


@bp.post("/sharepoints/<int:sharepoint_id>/relaunch")
@require_user()
def relaunch_sharepoint(sharepoint_id: int) -> tuple[object, int]:
    payload = _json_body()
    sharepoint = engine.relaunch_sharepoint(
        current_user(), sharepoint_id, payload.get("relaunchComment")
    )
    return _mutation_response("SharePoint relaunched for approval", sharepoint)


@bp.get("/sharepoints/<int:sharepoint_id>/can-sign")
@bp.get("/sharepoints/<int:sharepoint_id>/can-sign/<user_ref>")
@require_user()
def can_sign(sharepoint_id: int, user_ref: str | None = None) -> tuple[object, int]:
    result = engine.can_user_sign(current_user(), sharepoint_id, user_ref)
    return jsonify(result), HTTPStatus.OK
