"""
AI Analysis Coordinator

Runs one occurrence through the external analysis collaborator:

1. Persist the operator note and move to IN_ANALYSIS (committed before the
   call so other readers see the occurrence as processing).
2. POST the fixed-shape payload to the collaborator (single attempt, bounded
   timeout).
3. Success: write the AI fields and the resulting status in one update.
4. Any failure: revert to OPEN, keeping the saved note and the previous AI
   fields, then surface the failure as retryable. If the revert itself fails,
   both errors are surfaced together.

Only the occurrence being analyzed is locked while waiting on the network.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...models.db_models import OccurrenceDB
from .analysis_client import AnalysisClient, build_payload
from .errors import (
    ValidationError, ExternalCollaboratorError, StorageError, InvalidState, RollbackFailedError,
)
from .locks import occurrence_locks
from .occurrence_store import OccurrenceStore
from .state_machine import SUBMIT_FOR_ANALYSIS, ANALYSIS_SUCCEEDED, ANALYSIS_FAILED

logger = logging.getLogger(__name__)


class AIAnalysisCoordinator:
    """Orchestrates the IN_ANALYSIS window and its rollback."""

    def __init__(
        self,
        db_session: Session,
        client: Optional[AnalysisClient] = None,
        store: Optional[OccurrenceStore] = None,
    ):
        self.db = db_session
        self.client = client or AnalysisClient()
        self.store = store or OccurrenceStore(db_session)

    def submit_for_analysis(self, occurrence_id: str, admin_note: Optional[str]) -> OccurrenceDB:
        """
        Send an occurrence to the analysis collaborator.

        Returns:
            The occurrence after the analysis result was stored

        Raises:
            NotFound: Unknown occurrence id
            InvalidTransition: Occurrence is not OPEN or IN_ANALYSIS
            ValidationError: Empty admin note (status left unchanged)
            ExternalCollaboratorError: Analysis failed; the occurrence was
                reverted to OPEN and is available as ``error.occurrence``
            RollbackFailedError: Analysis failed and the revert failed too
            StorageError: The occurrence could not be written
        """
        note = (admin_note or "").strip()

        with occurrence_locks.hold(occurrence_id):
            occurrence = self.store.get(occurrence_id)
            self.store.state_machine.transition(occurrence.status, SUBMIT_FOR_ANALYSIS)
            if not note:
                raise ValidationError([
                    {"field": "admin_note", "message": "is required to submit for analysis"}
                ])

            occurrence = self.store.transition(
                occurrence,
                SUBMIT_FOR_ANALYSIS,
                values={"admin_note": note},
            )

            try:
                result = self.client.analyze(build_payload(occurrence))
            except ExternalCollaboratorError as e:
                logger.warning(f"Analysis failed for occurrence {occurrence_id}: {e}")
                e.occurrence = self._rollback(occurrence, e)
                raise

            target = result.resolved_status()
            try:
                analyzed = self.store.transition(
                    occurrence,
                    ANALYSIS_SUCCEEDED,
                    values={
                        "ai_summary": result.summary,
                        "ai_classification": result.classification,
                        "ai_conclusion": result.conclusion,
                    },
                    target=target,
                    detail={"classification": result.classification},
                )
            except StorageError as e:
                logger.error(f"Could not store analysis result for occurrence {occurrence_id}: {e}")
                self._rollback(occurrence, e)
                raise

        logger.info(
            f"Analysis stored for occurrence {occurrence_id}: "
            f"status={analyzed.status.value}, classification='{analyzed.ai_classification}'"
        )
        return analyzed

    def _rollback(self, occurrence: OccurrenceDB, error: Exception) -> OccurrenceDB:
        """Revert IN_ANALYSIS -> OPEN, preserving the saved note and AI fields."""
        try:
            reverted = self.store.transition(
                occurrence,
                ANALYSIS_FAILED,
                values={"admin_note": occurrence.admin_note},
                detail={"error": str(error)},
            )
        except (StorageError, InvalidState) as rollback_error:
            logger.error(
                f"Could not revert occurrence {occurrence.id} to open after analysis failure: {rollback_error}"
            )
            raise RollbackFailedError(error, rollback_error) from rollback_error

        logger.warning(f"Occurrence {occurrence.id} reverted to open")
        return reverted
