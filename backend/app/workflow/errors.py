"""Exceptions raised by the workflow engine and the identity layer."""

from __future__ import annotations

from http import HTTPStatus


class WorkflowError(Exception):
    """Base class for errors rendered to API clients."""

    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    default_code: str | None = None

    def __init__(self, message: str, *, code: str | None = None, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field

    def to_dict(self) -> dict[str, str]:
        payload = {"error": self.message}
        if self.code:
            payload["code"] = self.code
        if self.field:
            payload["field"] = self.field
        return payload


class ValidationError(WorkflowError):
    """Malformed or missing input; raised before any mutation."""

    status_code = HTTPStatus.BAD_REQUEST
    default_code = "VALIDATION_ERROR"


class NotFoundError(WorkflowError):
    status_code = HTTPStatus.NOT_FOUND
    default_code = "NOT_FOUND"


class ForbiddenError(WorkflowError):
    status_code = HTTPStatus.FORBIDDEN
    default_code = "FORBIDDEN"


class UnauthenticatedError(WorkflowError):
    status_code = HTTPStatus.UNAUTHORIZED
    default_code = "UNAUTHENTICATED"


class ConflictError(WorkflowError):
    """The record is not in a state that allows the operation."""

    status_code = HTTPStatus.BAD_REQUEST
    default_code = "INVALID_STATE"


class ManagerApprovalRequired(ConflictError):
    status_code = HTTPStatus.FORBIDDEN
    default_code = "MANAGER_APPROVAL_REQUIRED"


class StaleRecordError(ConflictError):
    """Another request modified the record between load and commit."""

    status_code = HTTPStatus.CONFLICT
    default_code = "STALE_RECORD"


class DuplicateError(ConflictError):
    status_code = HTTPStatus.CONFLICT
    default_code = "DUPLICATE"


class InUseError(ConflictError):
    """The entity is still referenced and cannot be removed."""

    status_code = HTTPStatus.CONFLICT
    default_code = "IN_USE"
