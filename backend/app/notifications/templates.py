"""Email templates for workflow notifications."""

from __future__ import annotations

import html
from collections.abc import Mapping
from email.message import EmailMessage
from typing import Any

from ..utils.timestamps import parse_timestamp

MANAGER_CREATION = "managerCreation"
USER_ASSIGNMENT = "userAssignment"
DISAPPROVAL = "disapproval"
REJECTION = "rejection"
COMPLETION = "completion"

KINDS = frozenset({MANAGER_CREATION, USER_ASSIGNMENT, DISAPPROVAL, REJECTION, COMPLETION})

_FOOTER_TEXT = (
    "---\n"
    "This is an automated notification from the SharePoint Document Management System.\n"
    "Please do not reply to this email."
)

_TEMPLATES: dict[str, dict[str, str]] = {
    MANAGER_CREATION: {
        "subject": 'Approval Required: "{documentTitle}" - Due {deadline}',
        "text": (
            "Dear {username},\n\n"
            "{createdBy} submitted a document that needs your approval before it can be signed.\n\n"
            "Title: {documentTitle}\n"
            "Document: {documentLink}\n"
            "Deadline: {deadline}\n"
            "{commentLine}\n"
            "Review it here: {taskUrl}\n"
        ),
        "html": (
            "<h2>Approval Required</h2>"
            "<p>Dear <strong>{username}</strong>,</p>"
            "<p>{createdBy} submitted <strong>{documentTitle}</strong> for your approval.</p>"
            "<p>Document: <a href=\"{documentLink}\">{documentLink}</a><br>"
            "Deadline: <strong>{deadline}</strong></p>"
            "{commentHtml}"
            "<p><a href=\"{taskUrl}\">Review document</a></p>"
        ),
    },
    USER_ASSIGNMENT: {
        "subject": 'Document Approved: "{documentTitle}" - Ready for Signature',
        "text": (
            "Dear {username},\n\n"
            'The document "{documentTitle}" has been approved by {approvedBy} '
            "and is now ready for your signature.\n\n"
            "Document: {documentLink}\n"
            "Deadline: {deadline}\n\n"
            "Sign it here: {taskUrl}\n"
        ),
        "html": (
            "<h2>Document Approved</h2>"
            "<p>Dear <strong>{username}</strong>,</p>"
            "<p>The document <strong>{documentTitle}</strong> has been approved by "
            "{approvedBy} and is now ready for your signature.</p>"
            "<p>Deadline: <strong>{deadline}</strong></p>"
            "<p><a href=\"{taskUrl}\">Sign document now</a></p>"
        ),
    },
    DISAPPROVAL: {
        "subject": 'Document Disapproved: "{documentTitle}"',
        "text": (
            "Dear {username},\n\n"
            '{actor} disapproved the document "{documentTitle}".\n\n'
            "Reason: {reason}\n\n"
            "You can update and relaunch it here: {taskUrl}\n"
        ),
        "html": (
            "<h2>Document Disapproved</h2>"
            "<p>Dear <strong>{username}</strong>,</p>"
            "<p>{actor} disapproved <strong>{documentTitle}</strong>.</p>"
            "<blockquote>{reason}</blockquote>"
            "<p><a href=\"{taskUrl}\">Open document</a></p>"
        ),
    },
    REJECTION: {
        "subject": 'Document Rejected: "{documentTitle}"',
        "text": (
            "Dear {username},\n\n"
            '{actor} rejected the document "{documentTitle}".\n\n'
            "Reason: {reason}\n\n"
            "You can update and relaunch it here: {taskUrl}\n"
        ),
        "html": (
            "<h2>Document Rejected</h2>"
            "<p>Dear <strong>{username}</strong>,</p>"
            "<p>{actor} rejected <strong>{documentTitle}</strong>.</p>"
            "<blockquote>{reason}</blockquote>"
            "<p><a href=\"{taskUrl}\">Open document</a></p>"
        ),
    },
    COMPLETION: {
        "subject": 'Document Completed: "{documentTitle}"',
        "text": (
            "Dear {username},\n\n"
            'All required signatures have been collected for "{documentTitle}".\n\n'
            "View it here: {taskUrl}\n"
        ),
        "html": (
            "<h2>Document Completed</h2>"
            "<p>Dear <strong>{username}</strong>,</p>"
            "<p>All required signatures have been collected for "
            "<strong>{documentTitle}</strong>.</p>"
            "<p><a href=\"{taskUrl}\">View completed document</a></p>"
        ),
    },
}


class _SafeDict(dict):
    """Dict that renders unknown placeholders as empty strings."""

    def __missing__(self, key: str) -> str:
        return ""


def format_deadline(value: object) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return str(value or "")
    return parsed.strftime("%A, %B %d, %Y %H:%M UTC")


def _context(params: Mapping[str, Any], frontend_url: str) -> dict[str, str]:
    context = {key: "" if value is None else str(value) for key, value in params.items()}
    context["deadline"] = format_deadline(params.get("deadline"))
    context["taskUrl"] = f"{frontend_url.rstrip('/')}/sharepoint/{params.get('documentId', '')}"
    comment = context.get("comment", "")
    context["commentLine"] = f"Notes: {comment}\n" if comment else ""
    return context


def render(
    kind: str, params: Mapping[str, Any], *, sender: str, frontend_url: str
) -> EmailMessage:
    """Build the email for ``kind`` addressed to ``params['to']``."""

    template = _TEMPLATES.get(kind)
    if template is None:
        raise ValueError(f"unknown notification kind: {kind}")

    context = _context(params, frontend_url)
    escaped = {key: html.escape(value) for key, value in context.items()}
    comment = escaped.get("comment", "")
    escaped["commentHtml"] = f"<p>Notes: {comment}</p>" if comment else ""

    message = EmailMessage()
    message["Subject"] = template["subject"].format_map(_SafeDict(context))
    message["From"] = sender
    message["To"] = context.get("to", "")
    message.set_content(
        template["text"].format_map(_SafeDict(context)) + "\n" + _FOOTER_TEXT
    )
    message.add_alternative(template["html"].format_map(_SafeDict(escaped)), subtype="html")
    return message
