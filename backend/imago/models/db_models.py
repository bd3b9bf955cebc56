"""
Imago Occurrences - SQLAlchemy ORM Models
Persistent storage for occurrences, their transition trail and protocol counters
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, ForeignKey, Date, Enum as SQLEnum
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class OccurrenceStatus(str, Enum):
    """Workflow status of an occurrence."""
    OPEN = "open"
    IN_ANALYSIS = "in_analysis"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    FINALIZED = "finalized"


class OccurrenceCategory(str, Enum):
    """Classification chosen by the reporter at intake."""
    ADMINISTRATIVE = "Administrative"


class OccurrenceEventType(str, Enum):
    """Transition trail event types."""
    CREATED = "created"
    SUBMITTED_FOR_ANALYSIS = "submitted_for_analysis"
    ANALYSIS_SUCCEEDED = "analysis_succeeded"
    ANALYSIS_FAILED = "analysis_failed"
    FINALIZED = "finalized"
    ADMIN_UPDATE = "admin_update"


def _enum_column(enum_cls, **kwargs):
    # Store the lowercase enum values, not member names
    return Column(
        SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
        **kwargs,
    )


# =============================================================================
# TABLES
# =============================================================================

class OccurrenceDB(Base):
    """A complaint/incident ticket from intake to finalized record."""
    __tablename__ = "occurrences"

    id = Column(String(36), primary_key=True)  # UUID

    # Reporter identity - immutable after intake
    reporter_name = Column(String(255), nullable=False)
    reporter_phone = Column(String(50), nullable=False)
    reporter_birthdate = Column(Date, nullable=False)
    category = _enum_column(OccurrenceCategory, nullable=False, index=True)
    reason = Column(Text, nullable=False)

    # Operator context sent along to the analysis collaborator
    admin_note = Column(Text, nullable=True)

    status = _enum_column(OccurrenceStatus, nullable=False, default=OccurrenceStatus.OPEN, index=True)

    # Written only from the analysis collaborator's response
    ai_summary = Column(Text, nullable=False, default="")
    ai_classification = Column(String(255), nullable=False, default="")
    ai_conclusion = Column(Text, nullable=False, default="")

    # Written once, together, at finalization
    protocol_number = Column(String(64), nullable=True, unique=True)
    document_url = Column(String(1024), nullable=True)
    # Protocol reserved by an unfinished finalization; reused on retry
    pending_protocol_number = Column(String(64), nullable=True)

    # Incremented on every write
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    events = relationship(
        "OccurrenceEventDB",
        back_populates="occurrence",
        cascade="all, delete-orphan",
        order_by="OccurrenceEventDB.occurrence_version",
    )


class OccurrenceEventDB(Base):
    """Append-only trail of occurrence state changes."""
    __tablename__ = "occurrence_events"

    id = Column(String(36), primary_key=True)  # UUID
    occurrence_id = Column(String(36), ForeignKey("occurrences.id", ondelete="CASCADE"), nullable=False, index=True)

    event_type = _enum_column(OccurrenceEventType, nullable=False)
    from_status = _enum_column(OccurrenceStatus, nullable=True)
    to_status = _enum_column(OccurrenceStatus, nullable=True)
    detail = Column(JSON, nullable=True)
    # Occurrence version produced by this change; orders the trail
    occurrence_version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    occurrence = relationship("OccurrenceDB", back_populates="events")


class ProtocolCounterDB(Base):
    """Per-day protocol counter. Created lazily, never deleted."""
    __tablename__ = "protocol_counters"

    date_key = Column(String(8), primary_key=True)  # YYYYMMDD
    counter = Column(Integer, nullable=False)
