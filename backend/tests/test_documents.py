"""
Tests for PDF rendering and the document storage backends.
"""
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from imago import config
from imago.services.occurrences import (
    HttpDocumentStorage, LocalDocumentStorage, StorageError, NotFound,
)
from imago.services.occurrences.document_renderer import build_pdf, document_name, PDF_CONTENT_TYPE
from imago.services.occurrences.state_machine import SUBMIT_FOR_ANALYSIS


# =============================================================================
# RENDERER
# =============================================================================

class TestBuildPdf:

    def test_renders_pdf_bytes(self, make_occurrence):
        occurrence = make_occurrence()
        content = build_pdf(
            occurrence=occurrence,
            protocol_number="IMAGO-20250115-0001",
            generated_at=datetime(2025, 1, 15, 10, 30),
        )
        assert content.startswith(b"%PDF")

    def test_markup_in_user_text_is_escaped(self, store, make_occurrence):
        occurrence = make_occurrence(reason="<b>Unclosed & <i>broken markup in reason")
        occurrence = store.transition(occurrence, SUBMIT_FOR_ANALYSIS, values={"admin_note": "<note> & more"})

        content = build_pdf(
            occurrence=occurrence,
            protocol_number="IMAGO-20250115-0002",
            generated_at=datetime(2025, 1, 15, 10, 30),
        )
        assert content.startswith(b"%PDF")

    def test_document_name(self):
        assert document_name("IMAGO-20250115-0001") == "IMAGO-20250115-0001.pdf"


# =============================================================================
# LOCAL STORAGE
# =============================================================================

class TestLocalDocumentStorage:

    def test_store_and_get(self, storage):
        url = storage.store("IMAGO-20250115-0001.pdf", b"%PDF-1.4 test", PDF_CONTENT_TYPE)

        assert url == "http://testserver/documents/IMAGO-20250115-0001.pdf"
        assert storage.exists("IMAGO-20250115-0001.pdf")
        assert storage.get("IMAGO-20250115-0001.pdf") == b"%PDF-1.4 test"

    def test_store_overwrites(self, storage):
        storage.store("doc.pdf", b"first", PDF_CONTENT_TYPE)
        storage.store("doc.pdf", b"second", PDF_CONTENT_TYPE)
        assert storage.get("doc.pdf") == b"second"

    def test_missing_document(self, storage):
        assert not storage.exists("missing.pdf")
        with pytest.raises(NotFound):
            storage.get("missing.pdf")

    @pytest.mark.parametrize("name", ["../escape.pdf", "nested/doc.pdf", "..", ""])
    def test_path_names_rejected(self, storage, name):
        with pytest.raises(ValueError):
            storage.store(name, b"x", PDF_CONTENT_TYPE)

    def test_write_failure_is_storage_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file where the directory should be")
        storage = LocalDocumentStorage(base_dir=str(blocker), base_url="/documents")

        with pytest.raises(StorageError):
            storage.store("doc.pdf", b"x", PDF_CONTENT_TYPE)


# =============================================================================
# HTTP STORAGE
# =============================================================================

def _response(status_code, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    return response


REQUEST = "imago.services.occurrences.document_storage.requests.request"


class TestHttpDocumentStorage:

    @pytest.fixture
    def remote(self):
        return HttpDocumentStorage(base_url="http://store.test/docs/", timeout=3)

    def test_store_puts_content(self, remote):
        with patch(REQUEST, return_value=_response(201)) as mock_request:
            url = remote.store("doc.pdf", b"%PDF", PDF_CONTENT_TYPE)

        assert url == "http://store.test/docs/doc.pdf"
        args, kwargs = mock_request.call_args
        assert args == ("PUT", "http://store.test/docs/doc.pdf")
        assert kwargs["data"] == b"%PDF"
        assert kwargs["timeout"] == 3
        assert kwargs["headers"]["Content-Type"] == PDF_CONTENT_TYPE

    def test_store_rejected(self, remote):
        with patch(REQUEST, return_value=_response(500)):
            with pytest.raises(StorageError):
                remote.store("doc.pdf", b"%PDF", PDF_CONTENT_TYPE)

    def test_unreachable(self, remote):
        with patch(REQUEST, side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(StorageError):
                remote.get("doc.pdf")

    def test_exists(self, remote):
        with patch(REQUEST, return_value=_response(200)):
            assert remote.exists("doc.pdf") is True
        with patch(REQUEST, return_value=_response(404)):
            assert remote.exists("doc.pdf") is False

    def test_get(self, remote):
        with patch(REQUEST, return_value=_response(200, b"%PDF")):
            assert remote.get("doc.pdf") == b"%PDF"
        with patch(REQUEST, return_value=_response(404)):
            with pytest.raises(NotFound):
                remote.get("doc.pdf")

    def test_requires_base_url(self, monkeypatch):
        monkeypatch.setattr(config, "DOCUMENT_STORAGE_URL", None)
        with pytest.raises(ValueError):
            HttpDocumentStorage()
