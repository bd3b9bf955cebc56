"""
Shared fixtures for the occurrence engine tests.

Every test gets its own SQLite file database, so sessions on different
threads see each other's commits the way they would against PostgreSQL.
"""
import os

# The module-level engine must not need a PostgreSQL driver during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import sessionmaker

from imago.database import build_engine, init_db
from imago.services.occurrences import LocalDocumentStorage, OccurrenceStore


VALID_INTAKE = {
    "reporter_name": "Maria Silva",
    "reporter_phone": "11987654321",
    "reporter_birthdate": "1985-03-12",
    "category": "Administrative",
    "reason": "Delay in processing my request",
}

FIXED_NOW = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'imago.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalDocumentStorage(
        base_dir=str(tmp_path / "documents"),
        base_url="http://testserver/documents",
    )


@pytest.fixture
def store(db):
    return OccurrenceStore(db, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_occurrence(store):
    """Create an OPEN occurrence from VALID_INTAKE with optional overrides."""
    def _make(**overrides):
        data = dict(VALID_INTAKE)
        data.update(overrides)
        return store.create(data)
    return _make


def webhook_response(status_code=200, body=None, invalid_json=False):
    """Stand-in for a requests.Response returned by the analysis webhook."""
    response = MagicMock()
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body if body is not None else {}
    return response
