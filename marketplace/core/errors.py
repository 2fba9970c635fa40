from fastapi import status


class WorkflowError(Exception):
    """
    Base class for failures surfaced to the caller by the workflow engine.
    Each subclass maps to exactly one HTTP status code.
    """
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(WorkflowError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT


class ForbiddenError(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN


class NotAvailableError(WorkflowError):
    status_code = status.HTTP_400_BAD_REQUEST


class ValidationError(WorkflowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class TransactionAborted(WorkflowError):
    # Raised when a transaction times out or is cancelled before commit
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
