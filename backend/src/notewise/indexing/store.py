"""Index store: persisted chunks and ranking feedback records."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Optional

from notewise.db.connection import Database
from notewise.indexing.chunking import Chunk
from notewise.notes.service import escape_like

logger = logging.getLogger(__name__)

CHUNK_COLUMNS = "c.id, c.note_id, c.chunk_index, c.heading, c.content, c.embedding, c.embedding_model"


@dataclass
class IndexedChunk:
    """A stored chunk together with the title of its note."""

    chunk: Chunk
    note_title: str


@dataclass
class RankingRecord:
    """Last score a note earned for a query."""

    note_id: int
    query: str
    score: float
    factors: dict[str, Any]
    updated_at: datetime


def _row_to_chunk(row: Any) -> Chunk:
    return Chunk(
        id=row["id"],
        note_id=row["note_id"],
        index=row["chunk_index"],
        content=row["content"],
        heading=row["heading"],
        embedding=json.loads(row["embedding"] or "[]"),
        embedding_model=row["embedding_model"],
    )


class IndexStore:
    """Chunk and ranking persistence.

    Every mutation is keyed by a natural identifier (chunk id, note id, or
    (note, query)) so that concurrent identical jobs converge to the same
    state instead of needing locks.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_note_chunks(self, note_id: int, owner_id: str, chunks: list[Chunk]) -> None:
        """Swap a note's chunk set for a new one in a single transaction.

        Readers see either the old set or the new set, never a mix.
        """
        now = datetime.now(UTC).isoformat()
        rows = [
            (
                chunk.id,
                note_id,
                owner_id,
                chunk.index,
                chunk.heading,
                chunk.content,
                json.dumps(chunk.embedding),
                chunk.embedding_model if chunk.embedding else None,
                now,
            )
            for chunk in chunks
        ]
        with self._db.transaction() as db:
            db.execute("DELETE FROM chunks WHERE note_id = ?", (note_id,))
            if rows:
                db.executemany(
                    """
                    INSERT INTO chunks
                        (id, note_id, owner_id, chunk_index, heading, content,
                         embedding, embedding_model, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        logger.debug(f"Replaced chunks for note {note_id}: {len(rows)} chunks")

    def get_note_chunks(self, note_id: int) -> list[Chunk]:
        """Chunks of one note in ordinal order."""
        cursor = self._db.execute(
            f"SELECT {CHUNK_COLUMNS} FROM chunks c WHERE c.note_id = ? ORDER BY c.chunk_index",
            (note_id,),
        )
        return [_row_to_chunk(row) for row in cursor.fetchall()]

    def chunks_for_notes(self, note_ids: list[int]) -> dict[int, list[Chunk]]:
        """Chunks grouped by note for a set of notes."""
        if not note_ids:
            return {}
        placeholders = ",".join("?" for _ in note_ids)
        cursor = self._db.execute(
            f"SELECT {CHUNK_COLUMNS} FROM chunks c WHERE c.note_id IN ({placeholders}) "
            "ORDER BY c.note_id, c.chunk_index",
            tuple(note_ids),
        )
        grouped: dict[int, list[Chunk]] = {}
        for row in cursor.fetchall():
            grouped.setdefault(row["note_id"], []).append(_row_to_chunk(row))
        return grouped

    def owner_chunks(self, owner_id: str, embedded_only: bool = False) -> list[IndexedChunk]:
        """All chunks of an owner's live notes, with note titles."""
        sql = (
            f"SELECT {CHUNK_COLUMNS}, n.title AS note_title FROM chunks c "
            "JOIN notes n ON n.id = c.note_id "
            "WHERE c.owner_id = ? AND n.is_deleted = 0"
        )
        if embedded_only:
            sql += " AND c.embedding != '[]'"
        sql += " ORDER BY n.updated_at DESC, c.note_id, c.chunk_index"
        cursor = self._db.execute(sql, (owner_id,))
        return [
            IndexedChunk(chunk=_row_to_chunk(row), note_title=row["note_title"])
            for row in cursor.fetchall()
        ]

    def delete_orphan_chunks(self) -> int:
        """Remove chunks belonging to soft-deleted notes."""
        with self._db.transaction() as db:
            cursor = db.execute(
                "DELETE FROM chunks WHERE note_id IN (SELECT id FROM notes WHERE is_deleted = 1)"
            )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Ranking records
    # ------------------------------------------------------------------

    def upsert_ranking(
        self,
        note_id: int,
        query: str,
        score: float,
        factors: dict[str, Any],
    ) -> None:
        """Insert or overwrite the ranking record for (note, query)."""
        now = datetime.now(UTC).isoformat()
        with self._db.transaction() as db:
            db.execute(
                """
                INSERT INTO search_rankings (note_id, query, score, factors, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(note_id, query) DO UPDATE SET
                    score = excluded.score,
                    factors = excluded.factors,
                    updated_at = excluded.updated_at
                """,
                (note_id, query, score, json.dumps(factors), now, now),
            )

    def get_ranking(self, note_id: int, query: str) -> Optional[RankingRecord]:
        """Ranking record for an exact (note, query) pair."""
        row = self._db.execute(
            "SELECT note_id, query, score, factors, updated_at FROM search_rankings "
            "WHERE note_id = ? AND query = ?",
            (note_id, query),
        ).fetchone()
        if not row:
            return None
        return RankingRecord(
            note_id=row["note_id"],
            query=row["query"],
            score=row["score"],
            factors=json.loads(row["factors"] or "{}"),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def count_rankings(self, note_id: Optional[int] = None) -> int:
        """Number of ranking records, optionally for one note."""
        if note_id is None:
            row = self._db.execute("SELECT COUNT(*) FROM search_rankings").fetchone()
        else:
            row = self._db.execute(
                "SELECT COUNT(*) FROM search_rankings WHERE note_id = ?", (note_id,)
            ).fetchone()
        return row[0]

    def latest_scores(self, note_ids: list[int], query: str) -> dict[int, float]:
        """Most recent past score per note for queries containing this one.

        A stored query matches when it contains the current query
        (case-insensitive), so "roadmap" picks up feedback recorded for
        "project roadmap".
        """
        query = query.strip().lower()
        if not note_ids or not query:
            return {}
        placeholders = ",".join("?" for _ in note_ids)
        pattern = f"%{escape_like(query)}%"
        cursor = self._db.execute(
            f"""
            SELECT note_id, score FROM search_rankings
            WHERE note_id IN ({placeholders}) AND lower(query) LIKE ? ESCAPE '\\'
            ORDER BY updated_at DESC, id DESC
            """,
            (*note_ids, pattern),
        )
        scores: dict[int, float] = {}
        for row in cursor.fetchall():
            scores.setdefault(row["note_id"], row["score"])
        return scores

    def delete_rankings_older_than(self, days: int) -> int:
        """Remove ranking records not updated within the retention window."""
        cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()
        with self._db.transaction() as db:
            cursor = db.execute("DELETE FROM search_rankings WHERE updated_at < ?", (cutoff,))
        return cursor.rowcount

    def delete_orphan_rankings(self) -> int:
        """Remove ranking records for deleted or missing notes."""
        with self._db.transaction() as db:
            cursor = db.execute(
                """
                DELETE FROM search_rankings
                WHERE note_id NOT IN (SELECT id FROM notes WHERE is_deleted = 0)
                """
            )
        return cursor.rowcount
