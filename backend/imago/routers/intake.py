"""
Imago Occurrences - Intake Router
Entry point for the reporting collaborator (form or chat flow).
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import require_intake_secret
from ..database import get_db
from ..models.schemas import CreateOccurrenceRequest, CreateOccurrenceResponse
from ..services.occurrences import OccurrenceStore, OccurrenceError
from .http_errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/occurrences", tags=["intake"])


@router.post("", response_model=CreateOccurrenceResponse, status_code=status.HTTP_201_CREATED)
def create_occurrence(
    request: CreateOccurrenceRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_intake_secret),
):
    """
    Register a new occurrence in status open.

    Field validation happens in the core so every invalid field is reported
    at once.
    """
    store = OccurrenceStore(db)
    try:
        occurrence = store.create(request.model_dump())
    except OccurrenceError as e:
        raise to_http_exception(e)

    return CreateOccurrenceResponse(
        occurrence_id=occurrence.id,
        message="Occurrence created successfully",
    )
