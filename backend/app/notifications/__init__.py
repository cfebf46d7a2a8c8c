"""Email notifications for the SharePoint workflow."""

from .dispatcher import BatchResult, DeliveryOutcome, NotificationDispatcher
from .templates import (
    COMPLETION,
    DISAPPROVAL,
    KINDS,
    MANAGER_CREATION,
    REJECTION,
    USER_ASSIGNMENT,
)

__all__ = [
    "BatchResult",
    "DeliveryOutcome",
    "NotificationDispatcher",
    "KINDS",
    "MANAGER_CREATION",
    "USER_ASSIGNMENT",
    "DISAPPROVAL",
    "REJECTION",
    "COMPLETION",
]
