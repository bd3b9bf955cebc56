"""
AI Analysis Webhook Client

Talks to the external analysis collaborator: one JSON POST per call, bounded
timeout, no retries. The collaborator is untrusted, so its response is
validated and coerced into AnalysisResult before anything is persisted.
"""
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from ... import config
from ...models.db_models import OccurrenceDB, OccurrenceStatus
from .errors import ExternalCollaboratorError

logger = logging.getLogger(__name__)

# Statuses the collaborator may request; anything else falls back to the default
ALLOWED_STATUS_OVERRIDES = {
    OccurrenceStatus.AWAITING_CONFIRMATION,
    OccurrenceStatus.OPEN,
}
DEFAULT_RESULT_STATUS = OccurrenceStatus.AWAITING_CONFIRMATION


def _coerce_scalar(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return str(value)
    raise ValueError("must be a string")


class AnalysisResult(BaseModel):
    """Coerced collaborator response. Every field is optional."""
    model_config = ConfigDict(extra="ignore")

    summary: str = ""
    classification: str = ""
    conclusion: str = ""
    status: Optional[str] = None

    @field_validator("summary", "classification", "conclusion", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return _coerce_scalar(value)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return _coerce_scalar(value)

    def resolved_status(self) -> OccurrenceStatus:
        """Requested status if it is a legal outcome of analysis, else the default."""
        if not self.status:
            return DEFAULT_RESULT_STATUS
        try:
            requested = OccurrenceStatus(self.status.strip().lower())
        except ValueError:
            requested = None
        if requested not in ALLOWED_STATUS_OVERRIDES:
            logger.warning(
                f"Ignoring status override '{self.status}' from analysis collaborator; "
                f"using {DEFAULT_RESULT_STATUS.value}"
            )
            return DEFAULT_RESULT_STATUS
        return requested


def build_payload(occurrence: OccurrenceDB) -> Dict[str, Any]:
    """Fixed-shape request body for the collaborator."""
    return {
        "occurrence_id": occurrence.id,
        "category": occurrence.category.value if occurrence.category else "",
        "reason": occurrence.reason or "",
        "admin_note": occurrence.admin_note or "",
        "reporter_name": occurrence.reporter_name or "",
        "reporter_phone": occurrence.reporter_phone or "",
        "reporter_birthdate": occurrence.reporter_birthdate.isoformat() if occurrence.reporter_birthdate else "",
        "created_at": occurrence.created_at.isoformat() if occurrence.created_at else "",
    }


def parse_response(body: Any) -> AnalysisResult:
    """
    Validate a decoded JSON body.

    Raises:
        ExternalCollaboratorError: If the body is not an object or a field has
            the wrong shape
    """
    if not isinstance(body, dict):
        raise ExternalCollaboratorError("Analysis response is not a JSON object")
    try:
        return AnalysisResult.model_validate(body)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ExternalCollaboratorError(f"Analysis response has invalid fields: {fields}") from e


class AnalysisClient:
    """Thin wrapper around requests for simpler mocking in tests."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = webhook_url or config.AI_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else config.AI_WEBHOOK_TIMEOUT

    def analyze(self, payload: Dict[str, Any]) -> AnalysisResult:
        """
        POST the payload and return the coerced result.

        Raises:
            ExternalCollaboratorError: On transport failure, non-2xx status,
                non-JSON body or malformed response
        """
        if not self.webhook_url:
            raise ExternalCollaboratorError("AI_WEBHOOK_URL is not configured")

        logger.info(f"Sending occurrence {payload.get('occurrence_id')} to analysis webhook")
        try:
            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.exceptions.RequestException as e:
            raise ExternalCollaboratorError(f"Analysis webhook unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ExternalCollaboratorError(
                f"Analysis webhook returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalCollaboratorError("Analysis webhook response is not valid JSON") from e

        return parse_response(body)
