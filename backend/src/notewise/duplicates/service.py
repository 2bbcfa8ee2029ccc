"""Duplicate detection, reports and merging."""

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, UTC
from typing import Any, Optional

from notewise.config import settings_or_defaults
from notewise.constants.duplicates import MERGE_SEPARATOR
from notewise.db.connection import Database
from notewise.duplicates.detector import DuplicateDetector, pair_key
from notewise.duplicates.schemas import (
    DuplicateReport,
    DuplicateResult,
    DuplicateStats,
    MergeResult,
    NoteRef,
    ReportStatus,
    SimilarityType,
)
from notewise.indexing.chunking import Chunk
from notewise.indexing.service import IndexingService
from notewise.indexing.store import IndexStore
from notewise.notes.schemas import Note
from notewise.notes.service import NotesService

logger = logging.getLogger(__name__)

REPORT_SELECT = """
    SELECT r.id, r.owner_id, r.original_note_id, r.duplicate_note_id, r.similarity, r.type, r.status,
           r.created_at, r.resolved_at, o.title AS original_title, d.title AS duplicate_title
    FROM duplicate_reports r
    JOIN notes o ON o.id = r.original_note_id
    JOIN notes d ON d.id = r.duplicate_note_id
"""


class ReportNotFoundError(LookupError):
    """Raised when a report is missing or owned by someone else."""

    def __init__(self, report_id: int) -> None:
        self.report_id = report_id
        super().__init__(f"Duplicate report not found: {report_id}")


def _row_to_report(row: Any) -> DuplicateReport:
    return DuplicateReport(
        id=row["id"],
        original_note=NoteRef(id=row["original_note_id"], title=row["original_title"]),
        duplicate_note=NoteRef(id=row["duplicate_note_id"], title=row["duplicate_title"]),
        similarity=row["similarity"],
        type=SimilarityType(row["type"]),
        status=ReportStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
    )


class DuplicateService:
    """Finds duplicate notes and manages their reports."""

    def __init__(
        self,
        db: Database,
        indexing: Optional[IndexingService] = None,
        detector: Optional[DuplicateDetector] = None,
    ) -> None:
        """Initialize duplicate service.

        Args:
            db: Database connection.
            indexing: Used to regenerate a merged note's chunks; skipped when None.
            detector: Pair scorer; built from settings when omitted.
        """
        self._db = db
        self._notes = NotesService(db)
        self._store = IndexStore(db)
        self._indexing = indexing
        self._detector = detector or DuplicateDetector()
        self._config = settings_or_defaults().duplicates

    def _chunk_lookup(self, notes: list[Note]) -> Callable[[int], list[Chunk]]:
        grouped = self._store.chunks_for_notes([note.id for note in notes])
        return lambda note_id: grouped.get(note_id, [])

    def find_duplicates(
        self,
        owner_id: str,
        note_id: Optional[int] = None,
        threshold: Optional[float] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_result: Optional[Callable[[DuplicateResult], None]] = None,
    ) -> list[DuplicateResult]:
        """Find duplicate pairs among an owner's notes.

        With note_id, compares that note against the owner's most recently
        updated notes; otherwise compares the most recently created notes
        with each other.

        Args:
            owner_id: Owner whose notes to scan.
            note_id: Optional single note to check.
            threshold: Minimum similarity reported.
            on_progress: Called with (notes checked, notes to check).
            on_result: Called with each match as soon as it is found.

        Raises:
            NoteNotFoundError: If note_id is given but not found for the owner.
        """
        if note_id is not None:
            targets = [self._notes.get(note_id, owner_id)]
            candidates = self._notes.list_for_owner(
                owner_id,
                limit=self._config.comparison_limit,
                order_by="updated_at",
                exclude_id=note_id,
            )
        else:
            targets = self._notes.list_for_owner(
                owner_id, limit=self._config.corpus_scan_limit, order_by="created_at"
            )
            candidates = targets

        if not targets:
            return []

        total = len(targets)
        return self._detector.find(
            targets,
            candidates,
            threshold,
            chunks=self._chunk_lookup(targets + candidates),
            on_note_done=(lambda done: on_progress(done, total)) if on_progress else None,
            on_result=on_result,
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def create_report(self, owner_id: str, result: DuplicateResult) -> Optional[DuplicateReport]:
        """File a report for a pair, unless the pair already has one.

        Returns:
            The new report, or None when a report for the pair exists.

        Raises:
            NoteNotFoundError: If either note is not a live note of the owner.
        """
        self._notes.get(result.original_note_id, owner_id)
        self._notes.get(result.duplicate_note_id, owner_id)
        original_id, duplicate_id = sorted((result.original_note_id, result.duplicate_note_id))
        with self._db.transaction() as db:
            cursor = db.execute(
                """
                INSERT INTO duplicate_reports
                    (owner_id, original_note_id, duplicate_note_id, pair_key, similarity, type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(pair_key) DO NOTHING
                """,
                (
                    owner_id,
                    original_id,
                    duplicate_id,
                    pair_key(original_id, duplicate_id),
                    result.similarity,
                    result.type.value,
                    datetime.now(UTC).isoformat(),
                ),
            )
        if cursor.rowcount == 0:
            logger.debug(f"Report for pair {original_id}:{duplicate_id} already exists")
            return None
        return self.get_report(owner_id, cursor.lastrowid)

    def get_report(self, owner_id: str, report_id: int) -> DuplicateReport:
        """Get one report.

        Raises:
            ReportNotFoundError: If it is missing or owned by someone else.
        """
        row = self._db.execute(
            REPORT_SELECT + " WHERE r.id = ? AND r.owner_id = ?", (report_id, owner_id)
        ).fetchone()
        if not row:
            raise ReportNotFoundError(report_id)
        return _row_to_report(row)

    def list_reports(self, owner_id: str, status: Optional[ReportStatus] = None) -> list[DuplicateReport]:
        """Reports for an owner, most similar first."""
        sql = REPORT_SELECT + " WHERE r.owner_id = ?"
        params: list[Any] = [owner_id]
        if status is not None:
            sql += " AND r.status = ?"
            params.append(status.value)
        sql += " ORDER BY r.similarity DESC, r.id"
        return [_row_to_report(row) for row in self._db.execute(sql, tuple(params)).fetchall()]

    def update_report(self, owner_id: str, report_id: int, status: ReportStatus) -> DuplicateReport:
        """Resolve a report, stamping the resolution time."""
        self.get_report(owner_id, report_id)
        resolved_at = None if status == ReportStatus.PENDING else datetime.now(UTC).isoformat()
        with self._db.transaction() as db:
            db.execute(
                "UPDATE duplicate_reports SET status = ?, resolved_at = ? WHERE id = ?",
                (status.value, resolved_at, report_id),
            )
        return self.get_report(owner_id, report_id)

    def pending_reports_above(
        self,
        min_similarity: float,
        owner_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[tuple[str, DuplicateReport]]:
        """Pending reports between live notes at or above a similarity, as (owner_id, report) pairs."""
        sql = (
            REPORT_SELECT
            + " WHERE r.status = 'pending' AND r.similarity >= ?"
            + " AND o.is_deleted = 0 AND d.is_deleted = 0"
        )
        params: list[Any] = [min_similarity]
        if owner_id is not None:
            sql += " AND r.owner_id = ?"
            params.append(owner_id)
        sql += " ORDER BY r.similarity DESC, r.id LIMIT ?"
        params.append(limit or self._config.auto_merge_batch)
        rows = self._db.execute(sql, tuple(params)).fetchall()
        return [(row["owner_id"], _row_to_report(row)) for row in rows]

    def delete_dismissed_older_than(self, days: int) -> int:
        """Delete dismissed reports resolved before the retention window."""
        cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()
        with self._db.transaction() as db:
            cursor = db.execute(
                "DELETE FROM duplicate_reports WHERE status = 'dismissed' AND resolved_at < ?",
                (cutoff,),
            )
        return cursor.rowcount

    def stats(self, owner_id: str) -> DuplicateStats:
        """Report counts by status."""
        cursor = self._db.execute(
            "SELECT status, COUNT(*) AS n FROM duplicate_reports WHERE owner_id = ? GROUP BY status",
            (owner_id,),
        )
        counts = {row["status"]: row["n"] for row in cursor.fetchall()}
        return DuplicateStats(total=sum(counts.values()), **counts)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    async def merge_notes(self, owner_id: str, original_id: int, duplicate_id: int) -> MergeResult:
        """Fold one note into another.

        The duplicate's body is appended to the original's, tags are unioned,
        the duplicate is soft-deleted, every report for the pair is marked
        merged and other pending reports naming the duplicate are dismissed,
        all in one transaction. The merged note is then reindexed.

        Raises:
            NoteNotFoundError: If either note is not a live note of the owner.
            ValueError: If both ids name the same note.
        """
        if original_id == duplicate_id:
            raise ValueError("Cannot merge a note into itself")
        original = self._notes.get(original_id, owner_id)
        duplicate = self._notes.get(duplicate_id, owner_id)

        content = f"{original.content}{MERGE_SEPARATOR}{duplicate.content}"
        tags = list(dict.fromkeys([*original.tags, *duplicate.tags]))
        now = datetime.now(UTC).isoformat()

        with self._db.transaction() as db:
            db.execute(
                "UPDATE notes SET content = ?, tags = ?, updated_at = ? WHERE id = ?",
                (content, json.dumps(tags), now, original.id),
            )
            db.execute(
                "UPDATE notes SET is_deleted = 1, updated_at = ? WHERE id = ?",
                (now, duplicate.id),
            )
            db.execute("DELETE FROM chunks WHERE note_id = ?", (duplicate.id,))
            db.execute(
                """
                UPDATE duplicate_reports SET status = 'merged', resolved_at = ?
                WHERE pair_key = ? AND owner_id = ?
                """,
                (now, pair_key(original.id, duplicate.id), owner_id),
            )
            # The deleted note can no longer be merged with anything else
            db.execute(
                """
                UPDATE duplicate_reports SET status = 'dismissed', resolved_at = ?
                WHERE status = 'pending' AND owner_id = ?
                  AND (original_note_id = ? OR duplicate_note_id = ?)
                """,
                (now, owner_id, duplicate.id, duplicate.id),
            )
        logger.info(f"Merged note {duplicate.id} into {original.id} for {owner_id}")

        chunk_count = 0
        if self._indexing is not None:
            chunk_count = (await self._indexing.process_note(original.id, owner_id)).chunk_count
        return MergeResult(merged_note_id=original.id, deleted_note_id=duplicate.id, chunk_count=chunk_count)


