"""Shared pytest fixtures for all tests.

These fixtures properly clean up resources to prevent file descriptor leaks.
"""

import gc
from datetime import datetime, timedelta, UTC

import pytest

from notewise.config import load_settings
from notewise.db.connection import Database
from notewise.db.migrations import run_migrations
from notewise.notes.schemas import Note, NoteCreate
from notewise.notes.service import NotesService

PROVIDER_ENV_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
    "ACTIVE_PROVIDER",
    "ACTIVE_MODEL",
    "EMBEDDING_MODEL",
    "FALLBACK_PROVIDER",
    "FALLBACK_MODEL",
)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temporary data dir with no provider keys.

    Also garbage-collects afterwards to release lingering SQLite handles.
    """
    monkeypatch.setenv("NOTEWISE_DATA_DIR", str(tmp_path / "data"))
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()
    gc.collect()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database with the full schema applied."""
    db = Database(tmp_path / "test.db")
    run_migrations(db)
    yield db
    db.close()


@pytest.fixture
def notes_service(temp_db):
    return NotesService(temp_db)


@pytest.fixture
def make_note(notes_service):
    """Factory creating notes for an owner (alice by default)."""

    def _make(title: str, content: str = "", tags: list[str] | None = None, owner_id: str = "alice") -> Note:
        return notes_service.create(owner_id, NoteCreate(title=title, content=content, tags=tags or []))

    return _make


def build_note(
    note_id: int,
    title: str,
    content: str = "",
    tags: list[str] | None = None,
    age_days: float = 0,
    owner_id: str = "alice",
) -> Note:
    """In-memory note, for tests that do not need the database."""
    updated = datetime.now(UTC) - timedelta(days=age_days)
    return Note(
        id=note_id,
        owner_id=owner_id,
        title=title,
        content=content,
        tags=tags or [],
        created_at=updated,
        updated_at=updated,
    )
