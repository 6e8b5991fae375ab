"""Custom exceptions."""
from typing import Optional
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Resource not found exception."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail or "Resource not found")


class UnauthorizedError(HTTPException):
    """Unauthorized exception."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail or "Not authenticated")


class ForbiddenError(HTTPException):
    """Forbidden exception."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail or "Permission denied")


class ValidationError(HTTPException):
    """Validation exception."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail or "Validation error")


class ConflictError(HTTPException):
    """Conflict exception."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail or "Resource conflict")


class InvalidTransitionError(ConflictError):
    """Requested task lifecycle action is not allowed from the current state."""


class PamImportError(Exception):
    """Base class for failures of the weekly task import pipeline."""


class MalformedDocumentError(PamImportError):
    """The ingested document is structurally unusable."""


class DocumentFetchError(PamImportError):
    """The task sheet could not be downloaded."""


class PersistenceFailure(PamImportError):
    """Reconciliation failed while writing a period's task set."""


class SheetWriteError(Exception):
    """A manual task change could not be mirrored to the Google Sheet."""
