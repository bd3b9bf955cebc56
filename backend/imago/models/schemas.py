"""
Imago Occurrences - API Schemas
Pydantic request/response models shared by the routers
"""
from datetime import date, datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field

from .db_models import OccurrenceStatus, OccurrenceCategory, OccurrenceEventType


# =============================================================================
# REQUESTS
# =============================================================================

class CreateOccurrenceRequest(BaseModel):
    """Intake payload from the reporting collaborator (form/chat)."""
    reporter_name: Any = Field(None, description="Reporter full name (min 3 chars)")
    reporter_phone: Any = Field(None, description="Reporter phone (min 10 chars)")
    reporter_birthdate: Any = Field(None, description="Birthdate, YYYY-MM-DD")
    category: Any = Field(None, description="Occurrence category")
    reason: Any = Field(None, description="Free-text reason (min 10 chars)")


class SubmitForAnalysisRequest(BaseModel):
    """Operator note attached before sending to the analysis collaborator."""
    admin_note: str = Field("", description="Operator context for the analysis")


class LoginRequest(BaseModel):
    password: str


# =============================================================================
# RESPONSES
# =============================================================================

class OccurrenceResponse(BaseModel):
    """Full occurrence row."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    reporter_name: str
    reporter_phone: str
    reporter_birthdate: date
    category: OccurrenceCategory
    reason: str
    admin_note: Optional[str] = None
    status: OccurrenceStatus
    ai_summary: str = ""
    ai_classification: str = ""
    ai_conclusion: str = ""
    protocol_number: Optional[str] = None
    document_url: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class CreateOccurrenceResponse(BaseModel):
    success: bool = True
    occurrence_id: str
    message: str


class OccurrenceListResponse(BaseModel):
    occurrences: List[OccurrenceResponse]


class FinalizeResponse(BaseModel):
    occurrence: OccurrenceResponse
    protocol_number: str
    document_url: str


class OccurrenceEventResponse(BaseModel):
    """Transition trail entry."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_type: OccurrenceEventType
    from_status: Optional[OccurrenceStatus] = None
    to_status: Optional[OccurrenceStatus] = None
    detail: Optional[Dict[str, Any]] = None
    created_at: datetime


class NameValue(BaseModel):
    name: str
    value: int


class DateCount(BaseModel):
    date: str
    count: int


class DashboardStatsResponse(BaseModel):
    """Aggregated counters for the operator dashboard."""
    period: str
    total: int
    open: int
    in_analysis: int
    awaiting_confirmation: int
    finalized: int
    by_category: List[NameValue]
    by_status: List[NameValue]
    by_date: List[DateCount]


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
