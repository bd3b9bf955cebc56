"""Imago Occurrences - Data Models"""
from .db_models import (
    # Enums
    OccurrenceStatus, OccurrenceCategory, OccurrenceEventType,
    # Tables
    OccurrenceDB, OccurrenceEventDB, ProtocolCounterDB,
)

__all__ = [
    "OccurrenceStatus", "OccurrenceCategory", "OccurrenceEventType",
    "OccurrenceDB", "OccurrenceEventDB", "ProtocolCounterDB",
]
