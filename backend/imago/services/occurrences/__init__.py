"""
Occurrence Engine Services

Lifecycle state machine and protocol-numbering engine:
- OccurrenceStore: persistence and update-shape rules
- ProtocolCounter: unique daily protocol numbers
- AIAnalysisCoordinator: IN_ANALYSIS window with rollback on failure
- FinalizationService: protocol stamping and durable document
"""

from .errors import (
    OccurrenceError,
    ValidationError,
    InvalidTransition,
    InvalidState,
    ExternalCollaboratorError,
    StorageError,
    RollbackFailedError,
    NotFound,
)
from .state_machine import OccurrenceStateMachine
from .protocol_counter import ProtocolCounter, format_protocol
from .occurrence_store import OccurrenceStore, validate_intake
from .analysis_client import AnalysisClient, AnalysisResult
from .analysis_coordinator import AIAnalysisCoordinator
from .document_storage import DocumentStorage, LocalDocumentStorage, HttpDocumentStorage, default_storage
from .finalization_service import FinalizationService
from .stats import DashboardStatsService

__all__ = [
    # Errors
    'OccurrenceError',
    'ValidationError',
    'InvalidTransition',
    'InvalidState',
    'ExternalCollaboratorError',
    'StorageError',
    'RollbackFailedError',
    'NotFound',
    # Core
    'OccurrenceStateMachine',
    'ProtocolCounter',
    'format_protocol',
    'OccurrenceStore',
    'validate_intake',
    'AnalysisClient',
    'AnalysisResult',
    'AIAnalysisCoordinator',
    'FinalizationService',
    # Collaborators
    'DocumentStorage',
    'LocalDocumentStorage',
    'HttpDocumentStorage',
    'default_storage',
    'DashboardStatsService',
]
