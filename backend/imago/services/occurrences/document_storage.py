"""
Document Storage

Durable home of finalized occurrence documents. Names are protocol-addressed
("<protocol>.pdf") and writes are upserts, so storing the same document twice
is harmless.

Backends:
- LocalDocumentStorage: a directory on disk, served by the /documents router
- HttpDocumentStorage: an HTTP object store (PUT/GET/HEAD), bounded timeout
"""
import logging
import os
from pathlib import Path
from typing import Optional

import requests

from ... import config
from .errors import StorageError, NotFound

logger = logging.getLogger(__name__)


def _check_name(name: str) -> str:
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise ValueError(f"Invalid document name: {name!r}")
    return name


class DocumentStorage:
    """Interface of the document storage collaborator."""

    def store(self, name: str, content: bytes, content_type: str) -> str:
        """Store (or overwrite) a document and return its retrievable URL."""
        raise NotImplementedError

    def get(self, name: str) -> bytes:
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        raise NotImplementedError

    def url_for(self, name: str) -> str:
        raise NotImplementedError


class LocalDocumentStorage(DocumentStorage):
    """Documents as files under base_dir, published under base_url."""

    def __init__(self, base_dir: Optional[str] = None, base_url: Optional[str] = None):
        self.base_dir = Path(base_dir or config.DOCUMENT_STORAGE_DIR)
        self.base_url = (base_url if base_url is not None else config.DOCUMENT_BASE_URL).rstrip("/")

    def _path(self, name: str) -> Path:
        return self.base_dir / _check_name(name)

    def store(self, name: str, content: bytes, content_type: str) -> str:
        path = self._path(name)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(content)
            # Readers never see a half-written document
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to store document {name}: {e}")
            raise StorageError(f"Could not store document {name}") from e
        logger.info(f"Stored document {name} ({len(content)} bytes, {content_type})")
        return self.url_for(name)

    def get(self, name: str) -> bytes:
        path = self._path(name)
        if not path.is_file():
            raise NotFound(f"Document not found: {name}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Could not read document {name}") from e

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{_check_name(name)}"


class HttpDocumentStorage(DocumentStorage):
    """Documents in an HTTP object store addressed as base_url/name."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        base_url = base_url or config.DOCUMENT_STORAGE_URL
        if not base_url:
            raise ValueError("DOCUMENT_STORAGE_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else config.DOCUMENT_STORAGE_TIMEOUT

    def _request(self, method: str, name: str, **kwargs) -> requests.Response:
        try:
            return requests.request(method, self.url_for(name), timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Document store unreachable ({method} {name}): {e}")
            raise StorageError(f"Document store unreachable: {e}") from e

    def store(self, name: str, content: bytes, content_type: str) -> str:
        response = self._request("PUT", name, data=content, headers={"Content-Type": content_type})
        if not 200 <= response.status_code < 300:
            raise StorageError(f"Document store rejected {name}: HTTP {response.status_code}")
        logger.info(f"Stored document {name} ({len(content)} bytes, {content_type})")
        return self.url_for(name)

    def get(self, name: str) -> bytes:
        response = self._request("GET", name)
        if response.status_code == 404:
            raise NotFound(f"Document not found: {name}")
        if not 200 <= response.status_code < 300:
            raise StorageError(f"Document store returned HTTP {response.status_code} for {name}")
        return response.content

    def exists(self, name: str) -> bool:
        response = self._request("HEAD", name)
        if response.status_code == 404:
            return False
        if not 200 <= response.status_code < 300:
            raise StorageError(f"Document store returned HTTP {response.status_code} for {name}")
        return True

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{_check_name(name)}"


def default_storage() -> DocumentStorage:
    """Backend selected by configuration."""
    if config.DOCUMENT_STORAGE_URL:
        return HttpDocumentStorage()
    return LocalDocumentStorage()
