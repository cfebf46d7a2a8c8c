"""Utility helpers for persisting notification delivery attempts."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:  # pragma: no cover
    from .dispatcher import DeliveryOutcome


def persist_delivery(app: Flask, outcome: DeliveryOutcome, sharepoint_id: object = None) -> None:
    """Persist a delivery log entry without raising exceptions."""

    from ..extensions import db
    from ..models.logs import NotificationLog

    def _log() -> None:
        entry = NotificationLog(
            kind=outcome.kind,
            recipient=outcome.recipient or "-",
            sharepoint_id=sharepoint_id if isinstance(sharepoint_id, int) else None,
            status=outcome.status,
            error=outcome.error,
        )
        db.session.add(entry)
        db.session.commit()

    _run_in_app_context(app, _log)


def _run_in_app_context(app: Flask, func: Callable[[], None]) -> None:
    from ..extensions import db

    try:
        with app.app_context():
            func()
    except Exception:  # pragma: no cover - logging helper
        app.logger.exception("Failed to persist notification log entry")
        with app.app_context():
            db.session.rollback()
