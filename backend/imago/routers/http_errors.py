"""
Translation of occurrence engine errors into HTTP responses.
"""
import logging

from fastapi import HTTPException, status

from ..services.occurrences import (
    OccurrenceError, ValidationError, InvalidTransition, ExternalCollaboratorError,
    StorageError, RollbackFailedError, NotFound,
)
from ..models.schemas import OccurrenceResponse

logger = logging.getLogger(__name__)


def to_http_exception(error: OccurrenceError) -> HTTPException:
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "validation_error", "message": str(error), "fields": error.fields},
        )
    if isinstance(error, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InvalidTransition):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "invalid_state", "message": str(error)},
        )
    if isinstance(error, ExternalCollaboratorError):
        detail = {"error": "analysis_failed", "message": str(error), "retryable": True}
        if error.occurrence is not None:
            detail["occurrence"] = OccurrenceResponse.model_validate(error.occurrence).model_dump(mode="json")
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    if isinstance(error, RollbackFailedError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "rollback_failed",
                "message": str(error),
                "analysis_error": str(error.analysis_error),
                "rollback_error": str(error.rollback_error),
            },
        )
    if isinstance(error, StorageError):
        logger.error(f"Storage failure: {error}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "storage_unavailable", "message": str(error)},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
