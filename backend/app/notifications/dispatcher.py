"""Best-effort email fan-out for workflow notifications.

Every recipient is attempted independently. Failures are reported as
:class:`DeliveryOutcome` entries instead of exceptions so callers can log them
without aborting the workflow operation that triggered the notification.
"""

from __future__ import annotations

import smtplib
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any

from flask import Flask, current_app

from .logging import persist_delivery
from .templates import KINDS, render


@dataclass(frozen=True)
class DeliveryOutcome:
    kind: str
    recipient: str
    success: bool
    status: str
    error: str | None = None


@dataclass
class BatchResult:
    kind: str
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful


class NotificationDispatcher:
    """Render and deliver notification emails."""

    def __init__(self, app: Flask | None = None) -> None:
        self.outbox: list[EmailMessage] = []
        self._outbox_lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["notifications"] = self

    def send(self, kind: str, params: Mapping[str, Any]) -> DeliveryOutcome:
        """Deliver one notification; never raises."""

        app = current_app._get_current_object()
        recipient = str(params.get("to") or "")
        if kind not in KINDS:
            outcome = DeliveryOutcome(kind, recipient, False, "failed", "unknown notification kind")
        elif not recipient:
            outcome = DeliveryOutcome(kind, recipient, False, "failed", "recipient has no email")
        else:
            try:
                message = render(
                    kind,
                    params,
                    sender=app.config.get("MAIL_DEFAULT_SENDER", "noreply@localhost"),
                    frontend_url=app.config.get("FRONTEND_URL", ""),
                )
                status = self._deliver(app, message)
            except Exception as exc:
                app.logger.warning("Notification %s to %s failed: %s", kind, recipient, exc)
                outcome = DeliveryOutcome(kind, recipient, False, "failed", str(exc)[:1000])
            else:
                outcome = DeliveryOutcome(kind, recipient, True, status)

        persist_delivery(app, outcome, params.get("documentId"))
        return outcome

    def send_batch(self, kind: str, items: Iterable[Mapping[str, Any]]) -> BatchResult:
        """Deliver ``kind`` to every item, isolating each recipient."""

        result = BatchResult(kind=kind)
        for params in items:
            result.outcomes.append(self.send(kind, params))

        logger = current_app.logger
        logger.info(
            "Notification batch %s: %s successful, %s failed",
            kind,
            result.successful,
            result.failed,
        )
        for outcome in result.outcomes:
            if not outcome.success:
                logger.error("Failed to notify %s (%s): %s", outcome.recipient, kind, outcome.error)
        return result

    def dispatch(
        self, kind: str, items: Iterable[Mapping[str, Any]]
    ) -> BatchResult | None:
        """Fire-and-forget entry point used by the workflow engine.

        With ``NOTIFICATIONS_ASYNC`` enabled the batch runs on a daemon thread
        and ``None`` is returned; otherwise it runs inline.
        """

        app = current_app._get_current_object()
        payload = [dict(item) for item in items]
        if not payload:
            return None

        if not app.config.get("NOTIFICATIONS_ASYNC", True):
            return self.send_batch(kind, payload)

        thread = threading.Thread(
            target=self._run_batch,
            args=(app, kind, payload),
            name=f"notify-{kind}",
            daemon=True,
        )
        thread.start()
        return None

    def clear_outbox(self) -> None:
        with self._outbox_lock:
            self.outbox.clear()

    def _run_batch(self, app: Flask, kind: str, payload: list[dict[str, Any]]) -> None:
        try:
            with app.app_context():
                self.send_batch(kind, payload)
        except Exception:  # pragma: no cover - background thread guard
            app.logger.exception("Notification batch %s crashed", kind)

    def _deliver(self, app: Flask, message: EmailMessage) -> str:
        config = app.config
        if config.get("MAIL_CAPTURE"):
            with self._outbox_lock:
                self.outbox.append(message)
            return "sent"

        server = config.get("MAIL_SERVER")
        if not server:
            app.logger.info(
                "Email (log only): to=%s subject=%r", message["To"], message["Subject"]
            )
            return "logged"

        with smtplib.SMTP(
            server, config.get("MAIL_PORT", 587), timeout=config.get("MAIL_TIMEOUT", 30)
        ) as smtp:
            if config.get("MAIL_USE_TLS", True):
                smtp.starttls()
            username = config.get("MAIL_USERNAME")
            password = config.get("MAIL_PASSWORD")
            if username and password:
                smtp.login(username, password)
            smtp.send_message(message)
        app.logger.info("Email sent: to=%s subject=%r", message["To"], message["Subject"])
        return "sent"
