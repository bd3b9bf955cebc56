"""
Imago Occurrences - Admin Router
Operator console: query, annotate, analyze and finalize occurrences.
Every route requires an operator token.
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..database import get_db
from ..models.schemas import (
    OccurrenceResponse, OccurrenceListResponse, SubmitForAnalysisRequest,
    FinalizeResponse, OccurrenceEventResponse, DashboardStatsResponse,
)
from ..services.occurrences import (
    OccurrenceStore, AIAnalysisCoordinator, FinalizationService, DashboardStatsService,
    AnalysisClient, DocumentStorage, default_storage, OccurrenceError,
)
from .http_errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# =============================================================================
# COLLABORATORS
# =============================================================================

def get_analysis_client() -> AnalysisClient:
    return AnalysisClient()


def get_document_storage() -> DocumentStorage:
    return default_storage()


# =============================================================================
# QUERIES
# =============================================================================

@router.get("/occurrences", response_model=OccurrenceListResponse)
def list_occurrences(
    status: Optional[str] = Query(None, description="Status filter, or 'all'"),
    category: Optional[str] = Query(None, description="Category filter, or 'all'"),
    db: Session = Depends(get_db),
):
    """List occurrences, newest first."""
    try:
        occurrences = OccurrenceStore(db).list(status=status, category=category)
    except OccurrenceError as e:
        raise to_http_exception(e)
    return OccurrenceListResponse(
        occurrences=[OccurrenceResponse.model_validate(o) for o in occurrences]
    )


@router.get("/occurrences/{occurrence_id}", response_model=OccurrenceResponse)
def get_occurrence(occurrence_id: str, db: Session = Depends(get_db)):
    try:
        occurrence = OccurrenceStore(db).get(occurrence_id)
    except OccurrenceError as e:
        raise to_http_exception(e)
    return OccurrenceResponse.model_validate(occurrence)


@router.get("/occurrences/{occurrence_id}/history", response_model=List[OccurrenceEventResponse])
def get_occurrence_history(occurrence_id: str, db: Session = Depends(get_db)):
    """Transition trail, oldest first."""
    try:
        events = OccurrenceStore(db).history(occurrence_id)
    except OccurrenceError as e:
        raise to_http_exception(e)
    return [OccurrenceEventResponse.model_validate(e) for e in events]


@router.get("/stats", response_model=DashboardStatsResponse)
def dashboard_stats(
    period: str = Query("30d", description="7d, 30d or 90d"),
    db: Session = Depends(get_db),
):
    try:
        stats = DashboardStatsService(db).dashboard_stats(period)
    except OccurrenceError as e:
        raise to_http_exception(e)
    return DashboardStatsResponse(**stats)


# =============================================================================
# MUTATIONS
# =============================================================================

@router.patch("/occurrences/{occurrence_id}", response_model=OccurrenceResponse)
def update_occurrence(
    occurrence_id: str,
    fields: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    """
    Partial update of operator-writable fields.

    Unknown or immutable fields are rejected, and protocol_number and
    document_url are left to finalization. Status changes must follow the
    workflow.
    """
    try:
        occurrence = OccurrenceStore(db).update(occurrence_id, fields)
    except OccurrenceError as e:
        raise to_http_exception(e)
    return OccurrenceResponse.model_validate(occurrence)


@router.post("/occurrences/{occurrence_id}/analysis", response_model=OccurrenceResponse)
def submit_for_analysis(
    occurrence_id: str,
    request: SubmitForAnalysisRequest,
    db: Session = Depends(get_db),
    client: AnalysisClient = Depends(get_analysis_client),
):
    """
    Save the operator note and run the AI analysis.

    Blocks on the collaborator call. On failure the occurrence is back in
    open and the response is a retryable 502 carrying the reverted row.
    """
    coordinator = AIAnalysisCoordinator(db, client=client)
    try:
        occurrence = coordinator.submit_for_analysis(occurrence_id, request.admin_note)
    except OccurrenceError as e:
        raise to_http_exception(e)
    return OccurrenceResponse.model_validate(occurrence)


@router.post("/occurrences/{occurrence_id}/finalize", response_model=FinalizeResponse)
def finalize_occurrence(
    occurrence_id: str,
    db: Session = Depends(get_db),
    storage: DocumentStorage = Depends(get_document_storage),
):
    """Stamp the protocol number and produce the PDF record."""
    service = FinalizationService(db, storage=storage)
    try:
        result = service.finalize(occurrence_id)
    except OccurrenceError as e:
        raise to_http_exception(e)

    return FinalizeResponse(
        occurrence=OccurrenceResponse.model_validate(result["occurrence"]),
        protocol_number=result["protocol_number"],
        document_url=result["document_url"],
    )
