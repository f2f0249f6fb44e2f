from __future__ import annotations

from http import HTTPStatus


class WorkflowError(Exception):
    code = "workflow_error"
    status_code = HTTPStatus.BAD_REQUEST

    def __init__(
        self,
        message: str,
        *,
        group_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.group_id = group_id
        self.details = dict(details or {})
        if group_id and "group_id" not in self.details:
            self.details["group_id"] = group_id

    def __str__(self) -> str:
        return self.message


class ValidationError(WorkflowError):
    code = "validation_error"
    status_code = HTTPStatus.BAD_REQUEST


class NotFoundError(WorkflowError):
    code = "not_found"
    status_code = HTTPStatus.NOT_FOUND


class ActiveApplicationExistsError(WorkflowError):
    code = "active_application_exists"
    status_code = HTTPStatus.CONFLICT


class OfficerNotAssignedError(WorkflowError):
    code = "officer_not_assigned"
    status_code = HTTPStatus.PRECONDITION_FAILED


class LockedError(WorkflowError):
    code = "locked"
    status_code = HTTPStatus.CONFLICT


class InvalidOfficerError(WorkflowError):
    code = "invalid_officer"
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


class InvalidTransitionError(WorkflowError):
    code = "invalid_transition"
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


class ConflictError(WorkflowError):
    """Optimistic write kept losing to concurrent writers."""

    code = "conflict"
    status_code = HTTPStatus.CONFLICT


class DeliveryError(WorkflowError):
    code = "delivery_failed"
    status_code = HTTPStatus.BAD_GATEWAY


class ConfigurationError(WorkflowError):
    code = "configuration_error"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
