"""Common test fixtures for notegraph."""

import tempfile
from pathlib import Path

import pytest

from notegraph.config import config
from notegraph.models.db_models import DBCollection, DBNoteType, get_session_factory, init_db
from notegraph.observability import metrics
from notegraph.services.link_service import LinkService
from notegraph.services.note_sync_service import NoteSyncService
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.meta_repository import MetaRepository
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.tag_repository import TagRepository
from tests.fakes import RecordingNotifier


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, log_dir = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_notegraph.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "log_dir", log_dir)
    monkeypatch.setattr(config, "auto_resolve_backlinks", False)
    yield config


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector independent between tests."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def engine(test_config):
    """File-backed engine with the schema created and seeded."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def note_repository(session_factory):
    return NoteRepository(session_factory)


@pytest.fixture
def link_repository(session_factory):
    return LinkRepository(session_factory)


@pytest.fixture
def tag_repository(session_factory):
    return TagRepository(session_factory)


@pytest.fixture
def meta_repository(session_factory):
    return MetaRepository(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sync_service(session_factory, notifier):
    """NoteSyncService wired to a recording notifier."""
    return NoteSyncService(session_factory=session_factory, notifier=notifier)


@pytest.fixture
def link_service(session_factory):
    return LinkService(session_factory=session_factory)


@pytest.fixture
def second_collection(session_factory):
    """A second collection, for title-uniqueness and global lookup tests."""
    with session_factory() as session:
        collection = DBCollection(name="Projects", path="projects")
        session.add(collection)
        session.commit()
        return collection.id


@pytest.fixture
def note_type(session_factory):
    """A note type row notes can reference."""
    with session_factory() as session:
        db_type = DBNoteType(type="meeting", name="Meeting")
        session.add(db_type)
        session.commit()
        return db_type.id
