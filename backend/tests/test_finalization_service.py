"""
Tests for finalization: protocol stamping, PDF storage and the repair path
after an interrupted attempt.
"""
import threading
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest

from imago.models.db_models import OccurrenceStatus, OccurrenceEventType
from imago.services.occurrences import (
    FinalizationService, OccurrenceStore, ProtocolCounter, DocumentStorage,
    InvalidState, StorageError, NotFound,
)
from imago.services.occurrences.locks import occurrence_locks
from imago.services.occurrences.state_machine import (
    SUBMIT_FOR_ANALYSIS, ANALYSIS_SUCCEEDED, FINALIZE,
)


TODAY = date(2025, 1, 15)
PROTOCOL_1 = "IMAGO-20250115-0001"


def local_clock():
    return datetime(2025, 1, 15, 10, 30)


def make_service(db, storage, store=None):
    return FinalizationService(
        db,
        storage=storage,
        counter=ProtocolCounter(db, prefix="IMAGO", clock=local_clock),
        store=store or OccurrenceStore(db),
        clock=local_clock,
    )


@pytest.fixture
def awaiting(store, make_occurrence):
    """An occurrence that went through a successful analysis."""
    def _make(**intake):
        occurrence = make_occurrence(**intake)
        occurrence = store.transition(occurrence, SUBMIT_FOR_ANALYSIS, values={"admin_note": "Please prioritize"})
        return store.transition(occurrence, ANALYSIS_SUCCEEDED, values={
            "ai_summary": "Processing delay",
            "ai_classification": "Administrative delay",
        })
    return _make


class TestFinalize:

    def test_first_finalization_of_the_day(self, db, storage, store, awaiting):
        occurrence = awaiting()
        result = make_service(db, storage).finalize(occurrence.id)

        assert result["protocol_number"] == PROTOCOL_1
        assert result["document_url"] == f"http://testserver/documents/{PROTOCOL_1}.pdf"

        finalized = result["occurrence"]
        assert finalized.status == OccurrenceStatus.FINALIZED
        assert finalized.protocol_number == PROTOCOL_1
        assert finalized.document_url == result["document_url"]
        assert finalized.pending_protocol_number is None
        assert finalized.ai_summary == "Processing delay"

        assert storage.get(f"{PROTOCOL_1}.pdf").startswith(b"%PDF")

        last_event = store.history(occurrence.id)[-1]
        assert last_event.event_type == OccurrenceEventType.FINALIZED
        assert last_event.detail == {"protocol_number": PROTOCOL_1, "repaired": False}
        assert occurrence_locks.active_keys() == 0

    def test_protocols_increase_within_the_day(self, db, storage, awaiting):
        first, second = awaiting(), awaiting(reporter_name="João Pereira")
        service = make_service(db, storage)

        assert service.finalize(first.id)["protocol_number"] == PROTOCOL_1
        first_pdf = storage.get(f"{PROTOCOL_1}.pdf")
        assert service.finalize(second.id)["protocol_number"] == "IMAGO-20250115-0002"
        assert storage.get(f"{PROTOCOL_1}.pdf") == first_pdf

    def test_open_occurrence_rejected_without_side_effects(self, db, storage, store, make_occurrence):
        occurrence = make_occurrence()

        with pytest.raises(InvalidState):
            make_service(db, storage).finalize(occurrence.id)

        current = store.get(occurrence.id)
        assert current.status == OccurrenceStatus.OPEN
        assert current.protocol_number is None
        assert current.pending_protocol_number is None
        assert ProtocolCounter(db).peek(TODAY) == 0
        assert not storage.exists(f"{PROTOCOL_1}.pdf")

    def test_second_finalize_rejected(self, db, storage, awaiting):
        occurrence = awaiting()
        service = make_service(db, storage)
        service.finalize(occurrence.id)

        with pytest.raises(InvalidState):
            service.finalize(occurrence.id)
        assert ProtocolCounter(db).peek(TODAY) == 1

    def test_unknown_occurrence(self, db, storage):
        with pytest.raises(NotFound):
            make_service(db, storage).finalize("missing")


class FailingFinalizeStore(OccurrenceStore):
    """Fails the final FINALIZE write, as if the process died right before it."""

    def transition(self, occurrence, action, **kwargs):
        if action == FINALIZE:
            raise StorageError("connection reset")
        return super().transition(occurrence, action, **kwargs)


class TestRepair:

    def test_interrupted_finalization_reuses_protocol_and_document(self, db, storage, store, awaiting):
        occurrence = awaiting()

        with pytest.raises(StorageError):
            make_service(db, storage, store=FailingFinalizeStore(db)).finalize(occurrence.id)

        stuck = store.get(occurrence.id)
        assert stuck.status == OccurrenceStatus.AWAITING_CONFIRMATION
        assert stuck.pending_protocol_number == PROTOCOL_1
        assert storage.exists(f"{PROTOCOL_1}.pdf")

        with patch("imago.services.occurrences.finalization_service.build_pdf") as mock_build:
            result = make_service(db, storage).finalize(occurrence.id)

        mock_build.assert_not_called()
        assert result["protocol_number"] == PROTOCOL_1
        assert result["occurrence"].status == OccurrenceStatus.FINALIZED
        assert result["occurrence"].pending_protocol_number is None
        assert ProtocolCounter(db).peek(TODAY) == 1
        assert store.history(occurrence.id)[-1].detail["repaired"] is True

    def test_document_store_failure_keeps_reservation(self, db, store, awaiting):
        occurrence = awaiting()
        broken_storage = MagicMock(spec=DocumentStorage)
        broken_storage.store.side_effect = StorageError("bucket unavailable")

        with pytest.raises(StorageError):
            make_service(db, broken_storage).finalize(occurrence.id)

        current = store.get(occurrence.id)
        assert current.status == OccurrenceStatus.AWAITING_CONFIRMATION
        assert current.pending_protocol_number == PROTOCOL_1
        assert current.protocol_number is None

    def test_retry_after_storage_failure_renders_missing_document(self, db, storage, store, awaiting):
        occurrence = awaiting()
        broken_storage = MagicMock(spec=DocumentStorage)
        broken_storage.store.side_effect = StorageError("bucket unavailable")
        with pytest.raises(StorageError):
            make_service(db, broken_storage).finalize(occurrence.id)

        result = make_service(db, storage).finalize(occurrence.id)

        assert result["protocol_number"] == PROTOCOL_1
        assert storage.get(f"{PROTOCOL_1}.pdf").startswith(b"%PDF")
        assert ProtocolCounter(db).peek(TODAY) == 1

    def test_document_url_without_protocol_recovers_the_named_protocol(self, db, storage, store, awaiting):
        occurrence = awaiting()
        minted = ProtocolCounter(db, prefix="IMAGO").next_protocol(today=TODAY)
        url = storage.store(f"{minted}.pdf", b"%PDF-1.4 earlier attempt", "application/pdf")
        occurrence = store._write(occurrence, {"document_url": url}, None)

        with patch("imago.services.occurrences.finalization_service.build_pdf") as mock_build:
            result = make_service(db, storage).finalize(occurrence.id)

        mock_build.assert_not_called()
        assert result["protocol_number"] == PROTOCOL_1
        assert result["document_url"] == url
        assert result["occurrence"].protocol_number == PROTOCOL_1
        assert ProtocolCounter(db).peek(TODAY) == 1
        assert storage.get(f"{PROTOCOL_1}.pdf") == b"%PDF-1.4 earlier attempt"
        assert store.history(occurrence.id)[-1].detail == {"protocol_number": PROTOCOL_1, "repaired": True}

    def test_document_url_naming_an_unissued_protocol_is_not_trusted(self, db, storage, store, awaiting):
        occurrence = awaiting()
        url = storage.store("IMAGO-20250115-0007.pdf", b"%PDF-1.4 stray", "application/pdf")
        occurrence = store._write(occurrence, {"document_url": url}, None)

        result = make_service(db, storage).finalize(occurrence.id)

        assert result["protocol_number"] == PROTOCOL_1
        assert result["document_url"] == f"http://testserver/documents/{PROTOCOL_1}.pdf"
        assert ProtocolCounter(db).peek(TODAY) == 1
        assert store.history(occurrence.id)[-1].detail["repaired"] is False

    def test_document_url_of_another_occurrence_is_not_reused(self, db, storage, store, awaiting):
        first, second = awaiting(), awaiting(reporter_name="João Pereira")
        service = make_service(db, storage)
        first_url = service.finalize(first.id)["document_url"]
        first_pdf = storage.get(f"{PROTOCOL_1}.pdf")
        second = store._write(store.get(second.id), {"document_url": first_url}, None)

        result = service.finalize(second.id)

        assert result["protocol_number"] == "IMAGO-20250115-0002"
        assert storage.get(f"{PROTOCOL_1}.pdf") == first_pdf
        assert store.get(first.id).document_url == first_url

    def test_document_url_with_missing_document_mints_a_new_protocol(self, db, storage, store, awaiting):
        occurrence = awaiting()
        minted = ProtocolCounter(db, prefix="IMAGO").next_protocol(today=TODAY)
        occurrence = store._write(
            occurrence, {"document_url": f"http://testserver/documents/{minted}.pdf"}, None
        )

        result = make_service(db, storage).finalize(occurrence.id)

        assert result["protocol_number"] == "IMAGO-20250115-0002"
        assert storage.exists("IMAGO-20250115-0002.pdf")

    def test_unusable_pending_protocol_raises_storage_error(self, db, storage, store, awaiting):
        occurrence = store.reserve_protocol(awaiting(), "a/b")

        with pytest.raises(StorageError):
            make_service(db, storage).finalize(occurrence.id)

        current = store.get(occurrence.id)
        assert current.status == OccurrenceStatus.AWAITING_CONFIRMATION
        assert current.protocol_number is None
        assert current.document_url is None
        assert occurrence_locks.active_keys() == 0


class TestConcurrentFinalize:

    def test_only_one_of_two_parallel_calls_wins(self, session_factory, storage, awaiting):
        occurrence_id = awaiting().id
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            session = session_factory()
            try:
                result = make_service(session, storage).finalize(occurrence_id)
                outcome = result["protocol_number"]
            except InvalidState:
                outcome = "rejected"
            finally:
                session.close()
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == [PROTOCOL_1, "rejected"]

        check = session_factory()
        try:
            assert ProtocolCounter(check).peek(TODAY) == 1
        finally:
            check.close()
