"""Common test fixtures for the NotePlan MCP server."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tests.fakes import FakeClock, FakeRipgrep
from noteplan_mcp.config import config
from noteplan_mcp.models.db_models import init_db
from noteplan_mcp.services.confirmation import ConfirmationGate
from noteplan_mcp.services.listing_cache import ListingCache
from noteplan_mcp.services.note_service import NoteService
from noteplan_mcp.services.note_store import NoteStore
from noteplan_mcp.services.resolver import ReferenceResolver
from noteplan_mcp.services.search_service import RipgrepBackend, ScanBackend, SearchService
from noteplan_mcp.storage.local_store import LocalNoteStore
from noteplan_mcp.storage.space_store import SpaceStore


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the NotePlan tree and database."""
    with tempfile.TemporaryDirectory() as storage_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(storage_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    storage_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "storage_path", storage_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_spaces.db")
    monkeypatch.setattr(config, "dash_is_todo", False)
    monkeypatch.setattr(config, "asterisk_is_todo", True)
    yield config


@pytest.fixture
def fake_clock():
    """Deterministic clock starting at 2024-01-15 12:00 UTC."""
    return FakeClock(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def local_store(test_config):
    """Local NotePlan tree rooted in a temp directory."""
    return LocalNoteStore(test_config.storage_path)


@pytest.fixture
def engine():
    """In-memory SQLite engine with the spaces schema and FTS5 index."""
    engine = init_db(in_memory=True)
    yield engine
    engine.dispose()


@pytest.fixture
def space_store(engine):
    return SpaceStore(engine)


@pytest.fixture
def listing_cache(fake_clock):
    return ListingCache(clock=fake_clock)


@pytest.fixture
def note_store(local_store, space_store, listing_cache):
    return NoteStore(local_store, space_store, listing_cache)


@pytest.fixture
def resolver(note_store):
    return ReferenceResolver(note_store)


@pytest.fixture
def fake_ripgrep():
    """A ripgrep stand-in that reports itself as not installed."""
    return FakeRipgrep(mode="missing")


@pytest.fixture
def search_service(note_store, fake_ripgrep):
    """Search over ripgrep (fake) with the naive scan as fallback."""
    return SearchService(
        note_store,
        backends=[RipgrepBackend(note_store, fake_ripgrep), ScanBackend(note_store)],
    )


@pytest.fixture
def gate(fake_clock):
    return ConfirmationGate(ttl_seconds=600, clock=fake_clock)


@pytest.fixture
def note_service(note_store, gate, resolver):
    return NoteService(note_store, gate, resolver)


@pytest.fixture
def space_id(space_store):
    """A space named "Team" with a known id."""
    return space_store.create_space("Team", space_id="space-team").id
