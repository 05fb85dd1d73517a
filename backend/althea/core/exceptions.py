"""
Exception hierarchy for the Althea backend.

Each class carries the HTTP status it maps to; the API layer renders every
AltheaError through one exception handler.
"""

from typing import Any, Dict, List, Optional


class AltheaError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": type(self).__name__, **self.details}


class ValidationError(AltheaError):
    """Input rejected before any network or storage call."""
    status_code = 422


class NotFoundError(AltheaError):
    """Row missing, or owned by another user."""
    status_code = 404


class InvalidTransitionError(AltheaError):
    """Requested session stage is not reachable from the current one."""
    status_code = 409


class StoreError(AltheaError):
    """The relational store could not be read or written."""
    status_code = 500


class PatternDetectionError(AltheaError):
    """Family members could not be loaded for analysis."""
    status_code = 500


class ExternalServiceError(AltheaError):
    """An AI service or storage backend failed; the caller may retry."""
    status_code = 502


class ExtractionError(ExternalServiceError):
    pass


class InsightGenerationError(ExternalServiceError):
    pass


class ReportGenerationError(ExternalServiceError):
    pass


class ReportServiceUnavailable(ReportGenerationError):
    """The rendering service could not be reached at all (network level)."""
    status_code = 503


class UploadError(ExternalServiceError):
    """
    Sequential upload stopped partway.

    Files stored before the failure stay in place; ``uploaded_files`` lists
    them so a client can retry only what is missing.
    """

    def __init__(
        self,
        message: str,
        session_id: str,
        uploaded_files: Optional[List[str]] = None,
        failed_file: Optional[str] = None,
    ):
        super().__init__(
            message,
            session_id=session_id,
            uploaded_files=uploaded_files or [],
            failed_file=failed_file,
        )
        self.session_id = session_id
        self.uploaded_files = uploaded_files or []
        self.failed_file = failed_file
