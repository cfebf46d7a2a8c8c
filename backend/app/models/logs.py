"""Notification delivery log model definition."""

from __future__ import annotations

from ..extensions import db
from ..utils.timestamps import utcnow

DELIVERY_STATUSES = ("sent", "logged", "failed")


class NotificationLog(db.Model):
    """One row per attempted email notification."""

    __tablename__ = "notification_logs"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False, index=True)
    recipient = db.Column(db.String(255), nullable=False)
    sharepoint_id = db.Column(db.Integer, nullable=True, index=True)
    status = db.Column(
        db.Enum(*DELIVERY_STATUSES, name="notification_status"), nullable=False
    )
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<NotificationLog {self.id} {self.kind} to {self.recipient} {self.status}>"
