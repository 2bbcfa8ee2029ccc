"""Notes service: persistence for the note records."""

import json
import logging
import sqlite3
from datetime import datetime, UTC
from typing import Any, Optional

from notewise.db.connection import Database
from notewise.notes.schemas import Note, NoteCreate, NoteUpdate

logger = logging.getLogger(__name__)

NOTE_COLUMNS = "id, owner_id, title, content, tags, created_at, updated_at, is_deleted"


class NoteNotFoundError(LookupError):
    """Raised when a note is missing, deleted, or not owned by the caller."""

    def __init__(self, note_id: int, owner_id: Optional[str] = None) -> None:
        self.note_id = note_id
        self.owner_id = owner_id
        super().__init__(f"Note not found: {note_id}")


def row_to_note(row: sqlite3.Row | dict[str, Any]) -> Note:
    """Build a Note from a notes table row."""
    return Note(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        content=row["content"] or "",
        tags=json.loads(row["tags"] or "[]"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        is_deleted=bool(row["is_deleted"]),
    )


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so terms match literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class NotesService:
    """CRUD over notes, always scoped to an owner."""

    def __init__(self, db: Database) -> None:
        """Initialize notes service.

        Args:
            db: Database connection.
        """
        self._db = db

    def create(self, owner_id: str, data: NoteCreate) -> Note:
        """Create a note."""
        now = datetime.now(UTC).isoformat()
        cursor = self._db.execute(
            """
            INSERT INTO notes (owner_id, title, content, tags, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (owner_id, data.title, data.content, json.dumps(data.tags), now, now),
        )
        self._db.commit()
        note_id = cursor.lastrowid
        if note_id is None:
            raise RuntimeError("Failed to get note id after insert")
        return self.get(note_id, owner_id)

    def get(self, note_id: int, owner_id: str, include_deleted: bool = False) -> Note:
        """Get a note owned by owner_id.

        Raises:
            NoteNotFoundError: If the note is missing, soft-deleted or owned by someone else.
        """
        sql = f"SELECT {NOTE_COLUMNS} FROM notes WHERE id = ? AND owner_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        row = self._db.execute(sql, (note_id, owner_id)).fetchone()
        if not row:
            raise NoteNotFoundError(note_id, owner_id)
        return row_to_note(row)

    def get_many(self, note_ids: list[int]) -> dict[int, Note]:
        """Fetch live notes by id regardless of owner, keyed by id."""
        if not note_ids:
            return {}
        placeholders = ",".join("?" for _ in note_ids)
        cursor = self._db.execute(
            f"SELECT {NOTE_COLUMNS} FROM notes WHERE is_deleted = 0 AND id IN ({placeholders})",
            tuple(note_ids),
        )
        return {row["id"]: row_to_note(row) for row in cursor.fetchall()}

    def update(self, note_id: int, owner_id: str, data: NoteUpdate) -> Note:
        """Apply a partial update to a note."""
        note = self.get(note_id, owner_id)
        title = data.title if data.title is not None else note.title
        content = data.content if data.content is not None else note.content
        tags = data.tags if data.tags is not None else note.tags
        self._db.execute(
            """
            UPDATE notes SET title = ?, content = ?, tags = ?, updated_at = ?
            WHERE id = ?
            """,
            (title, content, json.dumps(tags), datetime.now(UTC).isoformat(), note_id),
        )
        self._db.commit()
        return self.get(note_id, owner_id)

    def soft_delete(self, note_id: int, owner_id: str) -> None:
        """Mark a note deleted without removing its row."""
        self.get(note_id, owner_id)
        self._db.execute(
            "UPDATE notes SET is_deleted = 1, updated_at = ? WHERE id = ?",
            (datetime.now(UTC).isoformat(), note_id),
        )
        self._db.commit()

    def list_for_owner(
        self,
        owner_id: str,
        limit: int = 500,
        order_by: str = "created_at",
        exclude_id: Optional[int] = None,
    ) -> list[Note]:
        """List live notes for an owner, newest first.

        Args:
            owner_id: Owner whose notes to list.
            limit: Maximum notes returned.
            order_by: 'created_at' or 'updated_at'.
            exclude_id: Optional note id to leave out.
        """
        if order_by not in ("created_at", "updated_at"):
            raise ValueError(f"Unsupported order: {order_by}")
        sql = f"SELECT {NOTE_COLUMNS} FROM notes WHERE owner_id = ? AND is_deleted = 0"
        params: list[Any] = [owner_id]
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += f" ORDER BY {order_by} DESC, id DESC LIMIT ?"
        params.append(limit)
        return [row_to_note(row) for row in self._db.execute(sql, tuple(params)).fetchall()]

    def find_candidates(
        self,
        owner_id: str,
        query: str,
        keywords: list[str],
        limit: int,
    ) -> list[Note]:
        """Find notes that could match a query lexically.

        A note qualifies when the phrase or any keyword appears in its title,
        body or tags. Returns an empty list for an empty query.
        """
        terms = [t for t in [query.strip(), *keywords] if t]
        if not terms:
            return []

        clauses: list[str] = []
        params: list[Any] = [owner_id]
        for term in dict.fromkeys(t.lower() for t in terms):
            pattern = f"%{escape_like(term)}%"
            clauses.append(
                "(lower(title) LIKE ? ESCAPE '\\' OR lower(content) LIKE ? ESCAPE '\\'"
                " OR lower(tags) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])

        sql = (
            f"SELECT {NOTE_COLUMNS} FROM notes WHERE owner_id = ? AND is_deleted = 0 "
            f"AND ({' OR '.join(clauses)}) ORDER BY updated_at DESC, id DESC LIMIT ?"
        )
        params.append(limit)
        return [row_to_note(row) for row in self._db.execute(sql, tuple(params)).fetchall()]

    def all_tags(self, owner_id: str, limit: int = 1000) -> list[list[str]]:
        """Tag sets of an owner's live notes."""
        cursor = self._db.execute(
            "SELECT tags FROM notes WHERE owner_id = ? AND is_deleted = 0 LIMIT ?",
            (owner_id, limit),
        )
        return [json.loads(row["tags"] or "[]") for row in cursor.fetchall()]

    def owner_ids(self) -> list[str]:
        """Owners with at least one live note."""
        cursor = self._db.execute("SELECT DISTINCT owner_id FROM notes WHERE is_deleted = 0 ORDER BY owner_id")
        return [row["owner_id"] for row in cursor.fetchall()]
