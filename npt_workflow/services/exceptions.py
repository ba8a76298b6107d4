"""Exceptions raised by the workflow services.

Only ``ConcurrencyConflictError`` is safe to retry; everything else is a
definite answer about the request.
"""


class WorkflowError(Exception):
    """Base exception for workflow operations."""

    code = "workflow_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(WorkflowError):
    """Report, period report or delegation does not exist."""

    code = "not_found"


class InvalidTransitionError(WorkflowError):
    """Action not allowed from the current status."""

    code = "invalid_transition"


class UnauthorizedError(WorkflowError):
    """Caller is not the effective holder of the required role."""

    code = "unauthorized"


class WorkflowValidationError(WorkflowError):
    """Malformed input, or no approver can be resolved for the next step."""

    code = "validation_error"


class ConcurrencyConflictError(WorkflowError):
    """Concurrent modification detected. The caller may retry."""

    code = "concurrency_conflict"
