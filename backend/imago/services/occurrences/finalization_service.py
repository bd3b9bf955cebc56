"""
Finalization Service

Turns an AWAITING_CONFIRMATION occurrence into a FINALIZED, numbered and
documented record.

Sequence (per occurrence, serialized):
1. Lock the row and check the precondition.
2. Reserve a protocol: mint one from the ProtocolCounter and record it as
   pending in the same transaction. A pending protocol from an earlier
   interrupted attempt is reused instead of minting again, and so is the
   protocol named by a stored document_url when the counter issued it and
   the document still exists.
3. Render the PDF and store it under "<protocol>.pdf". A document already in
   storage for a reused protocol is reused as-is.
4. Write status, protocol_number and document_url in one compare-and-set
   update.

Known gap: a crash between steps 3 and 4 leaves the document stored and the
occurrence AWAITING_CONFIRMATION with a pending protocol. Nothing reconciles
it in the background; the next finalize() call picks the pending protocol up.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ...models.db_models import OccurrenceDB, OccurrenceStatus
from .document_renderer import PDF_CONTENT_TYPE, build_pdf, document_name
from .document_storage import DocumentStorage, default_storage
from .errors import InvalidState, StorageError
from .locks import occurrence_locks
from .occurrence_store import OccurrenceStore
from .protocol_counter import ProtocolCounter
from .state_machine import FINALIZE

logger = logging.getLogger(__name__)

PDF_SUFFIX = ".pdf"


class FinalizationService:
    """Stamps the terminal protocol number and produces the durable document."""

    def __init__(
        self,
        db_session: Session,
        storage: Optional[DocumentStorage] = None,
        counter: Optional[ProtocolCounter] = None,
        store: Optional[OccurrenceStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db_session
        self.clock = clock or datetime.now
        self.storage = storage or default_storage()
        self.counter = counter or ProtocolCounter(db_session, clock=self.clock)
        self.store = store or OccurrenceStore(db_session)

    def finalize(self, occurrence_id: str) -> Dict[str, Any]:
        """
        Finalize an occurrence.

        Returns:
            Dict with occurrence, protocol_number, document_url

        Raises:
            NotFound: Unknown occurrence id
            InvalidState: Occurrence is not AWAITING_CONFIRMATION (including a
                second finalize after the first committed)
            StorageError: Database, counter or document store unavailable
        """
        with occurrence_locks.hold(occurrence_id):
            occurrence = self.store.get(occurrence_id, for_update=True)
            if occurrence.status != OccurrenceStatus.AWAITING_CONFIRMATION:
                self.db.rollback()
                raise InvalidState(
                    f"Occurrence {occurrence_id} is {occurrence.status.value}; "
                    f"only {OccurrenceStatus.AWAITING_CONFIRMATION.value} occurrences can be finalized"
                )

            occurrence, protocol_number, repaired = self._reserve_protocol(occurrence)
            document_url = self._store_document(occurrence, protocol_number, reuse=repaired)

            finalized = self.store.transition(
                occurrence,
                FINALIZE,
                values={
                    "protocol_number": protocol_number,
                    "document_url": document_url,
                    "pending_protocol_number": None,
                },
                detail={"protocol_number": protocol_number, "repaired": repaired},
            )

        logger.info(f"Occurrence {occurrence_id} finalized with protocol {protocol_number}")
        return {
            "occurrence": finalized,
            "protocol_number": protocol_number,
            "document_url": document_url,
        }

    def _reserve_protocol(self, occurrence: OccurrenceDB):
        """
        Returns (occurrence, protocol_number, repaired).

        The occurrence row is locked on entry; the reservation commit releases it.
        """
        if occurrence.pending_protocol_number:
            logger.warning(
                f"Occurrence {occurrence.id} has an unfinished finalization; "
                f"reusing protocol {occurrence.pending_protocol_number}"
            )
            self.db.commit()
            return occurrence, occurrence.pending_protocol_number, True

        if occurrence.document_url:
            recovered = self._protocol_from_document(occurrence)
            if recovered:
                logger.warning(
                    f"Occurrence {occurrence.id} has a document but no protocol; "
                    f"recovered protocol {recovered} from {occurrence.document_url}"
                )
                reserved = self.store.reserve_protocol(occurrence, recovered)
                return reserved, recovered, True
            logger.warning(
                f"Occurrence {occurrence.id} has a document but no protocol and it could not be "
                f"matched to an issued protocol; minting a new protocol"
            )

        protocol_number = self.counter.next_protocol(today=self.clock().date(), commit=False)
        reserved = self.store.reserve_protocol(occurrence, protocol_number)
        return reserved, protocol_number, False

    def _protocol_from_document(self, occurrence: OccurrenceDB) -> Optional[str]:
        """
        Protocol named by the occurrence's document URL, if the counter issued
        it, no other occurrence holds it and the document is still stored.
        """
        name = occurrence.document_url.rstrip("/").rsplit("/", 1)[-1]
        if not name.endswith(PDF_SUFFIX):
            return None
        protocol_number = name[:-len(PDF_SUFFIX)]
        if not self.counter.issued(protocol_number):
            return None
        if self.store.protocol_in_use(protocol_number, exclude_id=occurrence.id):
            return None
        try:
            return protocol_number if self.storage.exists(document_name(protocol_number)) else None
        except ValueError:
            return None

    def _store_document(self, occurrence: OccurrenceDB, protocol_number: str, reuse: bool) -> str:
        name = document_name(protocol_number)
        try:
            if reuse and self.storage.exists(name):
                logger.info(f"Reusing stored document {name}")
                return self.storage.url_for(name)

            content = build_pdf(
                occurrence=occurrence,
                protocol_number=protocol_number,
                generated_at=self.clock(),
            )
            return self.storage.store(name, content, PDF_CONTENT_TYPE)
        except ValueError as e:
            raise StorageError(f"Cannot store document for protocol {protocol_number!r}: {e}") from e
