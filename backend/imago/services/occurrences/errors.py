"""
Occurrence Engine Errors

Taxonomy raised by the core services. Routers translate these into HTTP
responses; nothing below knows about HTTP.
"""
from typing import Dict, List, Optional


class OccurrenceError(Exception):
    """Base class for all occurrence engine failures."""
    pass


class ValidationError(OccurrenceError):
    """Bad input. Carries one entry per invalid field."""

    def __init__(self, fields: List[Dict[str, str]]):
        self.fields = fields
        summary = "; ".join(f"{f['field']}: {f['message']}" for f in fields)
        super().__init__(f"Validation failed - {summary}")


class InvalidTransition(OccurrenceError):
    """Raised when a status change is not an edge of the workflow graph."""
    pass


class InvalidState(InvalidTransition):
    """Raised when an operation's precondition on the current status fails."""
    pass


class ExternalCollaboratorError(OccurrenceError):
    """Analysis webhook unreachable, non-2xx, or returned a malformed body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        # Occurrence row after the rollback, when one was performed
        self.occurrence = None
        super().__init__(message)


class StorageError(OccurrenceError):
    """Persistence layer (database or document store) unavailable."""
    pass


class RollbackFailedError(StorageError):
    """The analysis failed and reverting the occurrence to open failed too."""

    def __init__(self, analysis_error: Exception, rollback_error: Exception):
        self.analysis_error = analysis_error
        self.rollback_error = rollback_error
        super().__init__(
            f"Analysis failed ({analysis_error}) and status rollback failed ({rollback_error})"
        )


class NotFound(OccurrenceError):
    """Unknown occurrence id."""
    pass
