"""SharePoint workflow record and its child tables."""

from __future__ import annotations

from ..extensions import db
from ..utils.timestamps import utcnow

TITLE_MAX_LENGTH = 200
COMMENT_MAX_LENGTH = 1000
SIGNER_NOTE_MAX_LENGTH = 500
DOCUMENT_NOTE_MAX_LENGTH = 1000

STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"
STATUS_REJECTED = "rejected"
STATUS_DISAPPROVED = "disapproved"

STATUSES = (
    STATUS_PENDING_APPROVAL,
    STATUS_PENDING,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    STATUS_CANCELLED,
    STATUS_REJECTED,
    STATUS_DISAPPROVED,
)

ACTIONS = (
    "created",
    "updated",
    "signed",
    "approved",
    "rejected",
    "disapproved",
    "relaunched",
)


sharepoint_managers = db.Table(
    "sharepoint_managers",
    db.Column(
        "sharepoint_id",
        db.Integer,
        db.ForeignKey("sharepoints.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
)


class SharePoint(db.Model):
    """A document tracked through manager approval and user signatures."""

    __tablename__ = "sharepoints"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(TITLE_MAX_LENGTH), nullable=False)
    link = db.Column(db.Text, nullable=False)
    comment = db.Column(db.Text, nullable=True)
    deadline = db.Column(db.DateTime, nullable=False, index=True)
    creation_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    manager_approved = db.Column(db.Boolean, nullable=False, default=False, index=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    disapproval_note = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(*STATUSES, name="sharepoint_status"),
        nullable=False,
        default=STATUS_PENDING_APPROVAL,
        index=True,
    )
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    created_by = db.relationship("User", foreign_keys=[created_by_id], lazy="joined")
    approved_by = db.relationship("User", foreign_keys=[approved_by_id], lazy="joined")
    managers = db.relationship(
        "User",
        secondary=sharepoint_managers,
        order_by="User.id",
        lazy="selectin",
    )
    signers = db.relationship(
        "SignerEntry",
        back_populates="sharepoint",
        order_by="SignerEntry.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history = db.relationship(
        "HistoryEntry",
        back_populates="sharepoint",
        order_by="HistoryEntry.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def manager_ids(self) -> set[int]:
        return {manager.id for manager in self.managers}

    def find_signer(self, user_id: int) -> SignerEntry | None:
        for signer in self.signers:
            if signer.user_id == user_id:
                return signer
        return None

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<SharePoint {self.id} {self.title!r} {self.status}>"


class SignerEntry(db.Model):
    """Signature state of one assigned user on a SharePoint."""

    __tablename__ = "sharepoint_signers"
    __table_args__ = (
        db.UniqueConstraint("sharepoint_id", "user_id", name="uq_sharepoint_signer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sharepoint_id = db.Column(
        db.Integer, db.ForeignKey("sharepoints.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    has_signed = db.Column(db.Boolean, nullable=False, default=False)
    signed_at = db.Column(db.DateTime, nullable=True)
    signature_note = db.Column(db.String(SIGNER_NOTE_MAX_LENGTH), nullable=True)
    has_disapproved = db.Column(db.Boolean, nullable=False, default=False)
    disapproved_at = db.Column(db.DateTime, nullable=True)
    disapproval_note = db.Column(db.String(SIGNER_NOTE_MAX_LENGTH), nullable=True)

    sharepoint = db.relationship("SharePoint", back_populates="signers")
    user = db.relationship("User", lazy="joined")

    @property
    def state(self) -> str:
        if self.has_disapproved:
            return "disapproved"
        if self.has_signed:
            return "signed"
        return "unsigned"


class HistoryEntry(db.Model):
    """Append-only audit entry; ``event`` holds the action specific payload."""

    __tablename__ = "sharepoint_history"

    id = db.Column(db.Integer, primary_key=True)
    sharepoint_id = db.Column(
        db.Integer,
        db.ForeignKey("sharepoints.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = db.Column(db.Enum(*ACTIONS, name="history_action"), nullable=False)
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    details = db.Column(db.Text, nullable=True)
    comment = db.Column(db.Text, nullable=True)
    event = db.Column(db.JSON, nullable=True)

    sharepoint = db.relationship("SharePoint", back_populates="history")
    performed_by = db.relationship("User", lazy="joined")
