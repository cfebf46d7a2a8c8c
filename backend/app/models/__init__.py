"""Database models for the SharePoint workflow backend."""

from .auth import ApiToken, User
from .logs import NotificationLog
from .sharepoint import HistoryEntry, SharePoint, SignerEntry

__all__ = ["ApiToken", "User", "NotificationLog", "SharePoint", "SignerEntry", "HistoryEntry"]
