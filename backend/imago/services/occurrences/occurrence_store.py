"""
Occurrence Store

Persistent record of every occurrence and the only component that writes to
the occurrences table.

Write rules:
- Identity fields, category, reason and created_at are set at intake and never
  change afterward.
- Every write is a compare-and-set on the row version (optimistic
  concurrency). A write based on a stale read matches no row and is rejected,
  so two writers can never interleave into an inconsistent status.
- Every status change appends an OccurrenceEventDB row in the same
  transaction.
- A FINALIZED occurrence is read-only.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    OccurrenceDB, OccurrenceEventDB, OccurrenceStatus, OccurrenceCategory,
    OccurrenceEventType,
)
from .errors import ValidationError, InvalidTransition, InvalidState, StorageError, NotFound
from .locks import occurrence_locks
from .state_machine import (
    OccurrenceStateMachine, SUBMIT_FOR_ANALYSIS, ANALYSIS_SUCCEEDED, ANALYSIS_FAILED, FINALIZE,
)

logger = logging.getLogger(__name__)


# =============================================================================
# INTAKE RULES
# =============================================================================

MIN_NAME_LENGTH = 3
MIN_PHONE_LENGTH = 10
MIN_REASON_LENGTH = 10
EARLIEST_BIRTHDATE = date(1900, 1, 1)

# Keys update() recognizes. protocol_number and document_url are refused
# there; only finalization writes them.
MUTABLE_FIELDS = {
    "admin_note",
    "ai_summary",
    "ai_classification",
    "ai_conclusion",
    "status",
    "protocol_number",
    "document_url",
}

ACTION_EVENTS = {
    SUBMIT_FOR_ANALYSIS: OccurrenceEventType.SUBMITTED_FOR_ANALYSIS,
    ANALYSIS_SUCCEEDED: OccurrenceEventType.ANALYSIS_SUCCEEDED,
    ANALYSIS_FAILED: OccurrenceEventType.ANALYSIS_FAILED,
    FINALIZE: OccurrenceEventType.FINALIZED,
}


def _text_field(
    data: Dict[str, Any],
    field: str,
    errors: List[Dict[str, str]],
    min_length: int = 0,
) -> Optional[str]:
    """Trimmed text value of a field, recording an error if it is missing or invalid."""
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        errors.append({"field": field, "message": "must be a string"})
        return None
    value = (value or "").strip()
    if not value:
        errors.append({"field": field, "message": "is required"})
        return None
    if len(value) < min_length:
        errors.append({"field": field, "message": f"must have at least {min_length} characters"})
    return value


def _parse_birthdate(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def validate_intake(data: Dict[str, Any], today: date) -> Dict[str, Any]:
    """
    Validate and normalize an intake payload.

    Returns the cleaned fields. Raises ValidationError listing every invalid
    field, not just the first one found.
    """
    errors = []

    name = _text_field(data, "reporter_name", errors, MIN_NAME_LENGTH)
    phone = _text_field(data, "reporter_phone", errors, MIN_PHONE_LENGTH)

    raw_birthdate = data.get("reporter_birthdate")
    birthdate = _parse_birthdate(raw_birthdate)
    if raw_birthdate is None or raw_birthdate == "":
        errors.append({"field": "reporter_birthdate", "message": "is required"})
    elif birthdate is None:
        errors.append({"field": "reporter_birthdate", "message": "must be a valid date in YYYY-MM-DD format"})
    elif birthdate > today:
        errors.append({"field": "reporter_birthdate", "message": "cannot be in the future"})
    elif birthdate < EARLIEST_BIRTHDATE:
        errors.append({"field": "reporter_birthdate", "message": "cannot be before 1900-01-01"})

    category = None
    raw_category = _text_field(data, "category", errors)
    if raw_category:
        try:
            category = OccurrenceCategory(raw_category)
        except ValueError:
            accepted = ", ".join(c.value for c in OccurrenceCategory)
            errors.append({"field": "category", "message": f"must be one of: {accepted}"})

    reason = _text_field(data, "reason", errors, MIN_REASON_LENGTH)

    if errors:
        raise ValidationError(errors)

    return {
        "reporter_name": name,
        "reporter_phone": phone,
        "reporter_birthdate": birthdate,
        "category": category,
        "reason": reason,
    }


# =============================================================================
# OCCURRENCE STORE
# =============================================================================

class OccurrenceStore:
    """
    Data access and update-shape rules for occurrences.

    All mutations go through create(), transition() or update().
    """

    def __init__(
        self,
        db_session: Session,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.state_machine = OccurrenceStateMachine()

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, occurrence_id: str, for_update: bool = False) -> OccurrenceDB:
        """
        Fetch an occurrence by id.

        With for_update the row stays locked (on databases that support row
        locks) until the session commits or rolls back.
        """
        try:
            query = self.db.query(OccurrenceDB).filter(OccurrenceDB.id == occurrence_id)
            if for_update:
                query = query.with_for_update()
            occurrence = query.populate_existing().first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not load occurrence {occurrence_id}") from e

        if occurrence is None:
            raise NotFound(f"Occurrence not found: {occurrence_id}")
        return occurrence

    def list(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[OccurrenceDB]:
        """
        List occurrences, newest created first.

        A filter of None or "all" does not filter.
        """
        errors = []
        status_filter = None
        category_filter = None
        if status and status != "all":
            try:
                status_filter = OccurrenceStatus(status)
            except ValueError:
                errors.append({"field": "status", "message": f"unknown status '{status}'"})
        if category and category != "all":
            try:
                category_filter = OccurrenceCategory(category)
            except ValueError:
                errors.append({"field": "category", "message": f"unknown category '{category}'"})
        if errors:
            raise ValidationError(errors)

        try:
            query = self.db.query(OccurrenceDB)
            if status_filter is not None:
                query = query.filter(OccurrenceDB.status == status_filter)
            if category_filter is not None:
                query = query.filter(OccurrenceDB.category == category_filter)
            return query.order_by(OccurrenceDB.created_at.desc(), OccurrenceDB.id.desc()).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Could not list occurrences") from e

    def protocol_in_use(self, protocol_number: str, exclude_id: Optional[str] = None) -> bool:
        """True if another occurrence holds the protocol, stamped or pending."""
        try:
            query = self.db.query(OccurrenceDB.id).filter(
                (OccurrenceDB.protocol_number == protocol_number)
                | (OccurrenceDB.pending_protocol_number == protocol_number)
            )
            if exclude_id is not None:
                query = query.filter(OccurrenceDB.id != exclude_id)
            return query.first() is not None
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not look up protocol {protocol_number}") from e

    def history(self, occurrence_id: str) -> List[OccurrenceEventDB]:
        """Transition trail, oldest first."""
        self.get(occurrence_id)
        try:
            return self.db.query(OccurrenceEventDB).filter(
                OccurrenceEventDB.occurrence_id == occurrence_id
            ).order_by(OccurrenceEventDB.occurrence_version.asc()).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not load history of {occurrence_id}") from e

    # =========================================================================
    # CREATE
    # =========================================================================

    def create(self, data: Dict[str, Any]) -> OccurrenceDB:
        """
        Validate an intake payload and persist a new OPEN occurrence.

        Raises:
            ValidationError: With one entry per invalid field
            StorageError: If the row could not be written
        """
        now = self.clock()
        fields = validate_intake(data, today=now.date())

        occurrence = OccurrenceDB(
            id=str(uuid4()),
            status=OccurrenceStatus.OPEN,
            admin_note=None,
            ai_summary="",
            ai_classification="",
            ai_conclusion="",
            protocol_number=None,
            document_url=None,
            version=1,
            created_at=now,
            updated_at=now,
            **fields,
        )
        event = OccurrenceEventDB(
            id=str(uuid4()),
            occurrence_id=occurrence.id,
            event_type=OccurrenceEventType.CREATED,
            from_status=None,
            to_status=OccurrenceStatus.OPEN,
            detail={"category": fields["category"].value},
            occurrence_version=1,
            created_at=now,
        )

        try:
            self.db.add(occurrence)
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create occurrence: {e}")
            raise StorageError("Could not create occurrence") from e

        logger.info(f"Occurrence created: {occurrence.id} ({occurrence.category.value})")
        return occurrence

    # =========================================================================
    # STATE CHANGES
    # =========================================================================

    def transition(
        self,
        occurrence: OccurrenceDB,
        action: str,
        values: Optional[Dict[str, Any]] = None,
        detail: Optional[Dict[str, Any]] = None,
        target: Optional[OccurrenceStatus] = None,
    ) -> OccurrenceDB:
        """
        Apply a workflow action to an occurrence that was just read.

        Args:
            occurrence: Row as last read by the caller (its version is the
                compare-and-set token)
            action: State machine action
            values: Other mutable fields to write in the same update
            detail: Extra data for the trail entry
            target: Override of the action's default target state; must still
                be an edge from the current state

        Raises:
            InvalidTransition: If the action is not allowed from the current state
            InvalidState: If the row changed since it was read
            StorageError: If the write failed
        """
        new_status = self.state_machine.transition(occurrence.status, action)
        if target is not None and target != new_status:
            if not self.state_machine.is_edge(occurrence.status, target):
                raise InvalidTransition(
                    f"Invalid transition: {occurrence.status.value} -> {target.value}"
                )
            new_status = target

        update = dict(values or {})
        update["status"] = new_status
        return self._write(occurrence, update, ACTION_EVENTS[action], detail)

    def reserve_protocol(self, occurrence: OccurrenceDB, protocol_number: str) -> OccurrenceDB:
        """
        Record a minted protocol as pending on the occurrence.

        Commits everything else pending in the session along with it (the
        protocol counter increment), so the reservation and the counter move
        together or not at all.
        """
        return self._write(occurrence, {"pending_protocol_number": protocol_number}, None)

    def update(self, occurrence_id: str, fields: Dict[str, Any]) -> OccurrenceDB:
        """
        Operator partial update.

        Only MUTABLE_FIELDS may be written. Status changes must follow the
        workflow graph. FINALIZED, protocol_number and document_url are reachable
        only through finalization.
        """
        with occurrence_locks.hold(occurrence_id):
            return self._update(occurrence_id, fields)

    def _update(self, occurrence_id: str, fields: Dict[str, Any]) -> OccurrenceDB:
        unknown = sorted(set(fields) - MUTABLE_FIELDS)
        if unknown:
            raise ValidationError([
                {"field": name, "message": "is not a mutable field"} for name in unknown
            ])

        occurrence = self.get(occurrence_id)
        if self.state_machine.is_terminal(occurrence.status):
            raise InvalidState(f"Occurrence {occurrence_id} is finalized and cannot be changed")

        update = {}
        errors = []

        for name in ("admin_note", "ai_summary", "ai_classification", "ai_conclusion"):
            if name in fields:
                value = fields[name]
                if value is None:
                    value = None if name == "admin_note" else ""
                elif not isinstance(value, str):
                    errors.append({"field": name, "message": "must be a string"})
                    continue
                update[name] = value

        # Written only by finalization, from a protocol the counter minted
        for name in ("protocol_number", "document_url"):
            if name in fields:
                errors.append({"field": name, "message": "is set only by finalization"})

        new_status = None
        if "status" in fields and fields["status"] is not None:
            try:
                new_status = OccurrenceStatus(fields["status"])
            except ValueError:
                errors.append({"field": "status", "message": f"unknown status '{fields['status']}'"})

        if errors:
            raise ValidationError(errors)

        event_type = OccurrenceEventType.ADMIN_UPDATE
        if new_status is not None and new_status != occurrence.status:
            if new_status == OccurrenceStatus.FINALIZED:
                raise InvalidTransition("Occurrences are finalized only through finalization")
            if not self.state_machine.is_edge(occurrence.status, new_status):
                raise InvalidTransition(
                    f"Invalid transition: {occurrence.status.value} -> {new_status.value}"
                )
            if new_status == OccurrenceStatus.IN_ANALYSIS:
                note = update.get("admin_note", occurrence.admin_note)
                if not note or not note.strip():
                    raise ValidationError([{"field": "admin_note", "message": "is required to submit for analysis"}])
            update["status"] = new_status

        return self._write(occurrence, update, event_type, {"fields": sorted(update)})

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _write(
        self,
        occurrence: OccurrenceDB,
        values: Dict[str, Any],
        event_type: Optional[OccurrenceEventType],
        detail: Optional[Dict[str, Any]] = None,
    ) -> OccurrenceDB:
        """Compare-and-set on version, append the trail entry (if any), commit."""
        occurrence_id = occurrence.id
        version = occurrence.version
        from_status = occurrence.status
        now = self.clock()

        update = dict(values)
        update["version"] = version + 1
        update["updated_at"] = now

        try:
            matched = self.db.query(OccurrenceDB).filter(
                OccurrenceDB.id == occurrence_id,
                OccurrenceDB.version == version,
            ).update(update, synchronize_session=False)

            if matched == 0:
                self.db.rollback()
                # Distinguish a vanished row from a concurrent writer
                self.get(occurrence_id)
                raise InvalidState(
                    f"Occurrence {occurrence_id} was modified concurrently; reload and retry"
                )

            if event_type is not None:
                self.db.add(OccurrenceEventDB(
                    id=str(uuid4()),
                    occurrence_id=occurrence_id,
                    event_type=event_type,
                    from_status=from_status,
                    to_status=update.get("status", from_status),
                    detail=detail,
                    occurrence_version=version + 1,
                    created_at=now,
                ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to write occurrence {occurrence_id}: {e}")
            raise StorageError(f"Could not update occurrence {occurrence_id}") from e

        refreshed = self.get(occurrence_id)
        if "status" in values and values["status"] != from_status:
            logger.info(
                f"Occurrence {occurrence_id}: {from_status.value} -> {refreshed.status.value}"
            )
        return refreshed
