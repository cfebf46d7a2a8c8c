"""API endpoints exposing notification delivery log entries."""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from ..models.logs import DELIVERY_STATUSES, NotificationLog
from ..notifications import KINDS
from ..utils.auth import require_user
from ..utils.timestamps import serialize_timestamp

bp = Blueprint("logs", __name__)


def _serialize_entry(entry: NotificationLog) -> dict[str, object]:
    return {
        "id": entry.id,
        "kind": entry.kind,
        "recipient": entry.recipient,
        "sharepointId": entry.sharepoint_id,
        "status": entry.status,
        "error": entry.error,
        "createdAt": serialize_timestamp(entry.created_at),
    }


@bp.get("/notifications/logs")
@require_user(admin=True)
def get_logs() -> tuple[object, int]:
    status = request.args.get("status")
    kind = request.args.get("kind")
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 200))

    query = NotificationLog.query
    if status:
        if status not in DELIVERY_STATUSES:
            return jsonify({"error": "invalid status", "field": "status"}), HTTPStatus.BAD_REQUEST
        query = query.filter_by(status=status)
    if kind:
        if kind not in KINDS:
            return jsonify({"error": "invalid kind", "field": "kind"}), HTTPStatus.BAD_REQUEST
        query = query.filter_by(kind=kind)

    entries = query.order_by(NotificationLog.id.desc()).limit(limit).all()
    return jsonify([_serialize_entry(entry) for entry in entries]), HTTPStatus.OK
