"""Handler table for background jobs.

Every handler is idempotent with respect to its natural key (note id,
(note, query), note pair), so at-least-once delivery is safe.
"""

import logging
import sqlite3
from datetime import datetime, UTC
from typing import Optional

from notewise.config import settings_or_defaults
from notewise.db.connection import Database
from notewise.duplicates.schemas import DuplicateResult, ReportStatus
from notewise.duplicates.service import DuplicateService
from notewise.indexing.service import IndexingService
from notewise.indexing.store import IndexStore
from notewise.jobs.queue import JobContext, JobHandler
from notewise.jobs.schemas import (
    AutoMergePayload,
    AutoMergeResult,
    BatchCheckResult,
    BatchDuplicateCheckPayload,
    BatchItemOutcome,
    CleanupPayload,
    CleanupResult,
    DetectDuplicatesPayload,
    DuplicateScanResult,
    ItemFailure,
    JobKind,
    RankingUpdateResult,
    RebuildResult,
    RebuildSearchIndexPayload,
    UpdateRankingsPayload,
)
from notewise.notes.service import NotesService

logger = logging.getLogger(__name__)

# Per-item errors a batch records and moves past
ITEM_ERRORS = (LookupError, ValueError, sqlite3.Error)

# Progress band of a duplicate scan spent comparing notes and filing reports
SCAN_PROGRESS_START = 10
SCAN_PROGRESS_END = 95


class JobHandlers:
    """Runs each job kind against the index store and duplicate service."""

    def __init__(self, db: Database, indexing: Optional[IndexingService] = None) -> None:
        self._store = IndexStore(db)
        self._notes = NotesService(db)
        self._indexing = indexing
        self._duplicates = DuplicateService(db, indexing=indexing)
        self._settings = settings_or_defaults()

    def table(self) -> dict[JobKind, JobHandler]:
        """Handler per job kind, for JobQueue."""
        return {
            JobKind.UPDATE_SEARCH_RANKINGS: self.update_search_rankings,
            JobKind.DETECT_DUPLICATES: self.detect_duplicates,
            JobKind.BATCH_DUPLICATE_CHECK: self.batch_duplicate_check,
            JobKind.AUTO_MERGE: self.auto_merge,
            JobKind.CLEANUP: self.cleanup,
            JobKind.REBUILD_SEARCH_INDEX: self.rebuild_search_index,
        }

    async def update_search_rankings(
        self, payload: UpdateRankingsPayload, ctx: JobContext
    ) -> RankingUpdateResult:
        """Upsert one ranking record per (note, query) from a finished search."""
        result = RankingUpdateResult()
        timestamp = datetime.now(UTC).isoformat()
        total = len(payload.results)
        for position, ranked in enumerate(payload.results):
            try:
                self._store.upsert_ranking(
                    ranked.note_id,
                    payload.query,
                    ranked.score,
                    {
                        "position": position,
                        "score": ranked.score,
                        "reasons": ranked.reasons,
                        "timestamp": timestamp,
                    },
                )
                result.updated += 1
            except ITEM_ERRORS as e:
                logger.warning(f"Failed to update ranking for note {ranked.note_id}: {e}")
                result.failures.append(ItemFailure(item=str(ranked.note_id), error=str(e)))
            ctx.report_progress((position + 1) * 100 // total)
        logger.info(f"Updated {result.updated}/{total} rankings for query {payload.query!r}")
        return result

    async def detect_duplicates(
        self, payload: DetectDuplicatesPayload, ctx: JobContext
    ) -> DuplicateScanResult:
        """Scan for duplicates and file reports for high-confidence pairs.

        Reports are filed as matches are found, so an abandoned scan keeps
        the reports it already wrote.
        """
        ctx.report_progress(SCAN_PROGRESS_START)
        span = SCAN_PROGRESS_END - SCAN_PROGRESS_START
        result = DuplicateScanResult()
        report_threshold = self._settings.duplicates.report_threshold

        def on_progress(done: int, total: int) -> None:
            result.notes_scanned = done
            ctx.report_progress(SCAN_PROGRESS_START + span * done // total)

        def on_result(duplicate: DuplicateResult) -> None:
            result.duplicates_found += 1
            if duplicate.similarity < report_threshold:
                return
            try:
                if self._duplicates.create_report(payload.owner_id, duplicate) is not None:
                    result.reports_created += 1
            except ITEM_ERRORS as e:
                pair = f"{duplicate.original_note_id}:{duplicate.duplicate_note_id}"
                logger.warning(f"Could not create report for pair {pair}: {e}")
                result.failures.append(ItemFailure(item=pair, error=str(e)))

        self._duplicates.find_duplicates(
            payload.owner_id,
            note_id=payload.note_id,
            threshold=payload.threshold,
            on_progress=on_progress,
            on_result=on_result,
        )
        ctx.report_progress(100)
        logger.info(
            f"Duplicate detection for {payload.owner_id} found {result.duplicates_found} duplicates, "
            f"created {result.reports_created} reports"
        )
        return result

    async def batch_duplicate_check(
        self, payload: BatchDuplicateCheckPayload, ctx: JobContext
    ) -> BatchCheckResult:
        """Check each listed note, recording per-note success or failure."""
        result = BatchCheckResult()
        total = len(payload.note_ids)
        for i, note_id in enumerate(payload.note_ids):
            try:
                found = self._duplicates.find_duplicates(
                    payload.owner_id, note_id=note_id, threshold=payload.threshold
                )
                result.results.append(
                    BatchItemOutcome(note_id=note_id, success=True, duplicates_found=len(found))
                )
            except ITEM_ERRORS as e:
                logger.warning(f"Failed to check duplicates for note {note_id}: {e}")
                result.results.append(BatchItemOutcome(note_id=note_id, success=False, error=str(e)))
                result.failures.append(ItemFailure(item=str(note_id), error=str(e)))
            ctx.report_progress((i + 1) * 100 // total)

        succeeded = sum(1 for outcome in result.results if outcome.success)
        logger.info(f"Batch duplicate check processed {succeeded}/{total} notes")
        return result

    async def auto_merge(self, payload: AutoMergePayload, ctx: JobContext) -> AutoMergeResult:
        """Merge a bounded batch of pending, very similar pairs."""
        min_similarity = (
            payload.min_similarity
            if payload.min_similarity is not None
            else self._settings.duplicates.merge_threshold
        )
        candidates = self._duplicates.pending_reports_above(min_similarity, owner_id=payload.owner_id)
        result = AutoMergeResult()
        for i, (owner_id, report) in enumerate(candidates):
            try:
                # An earlier merge in this batch may have resolved the report
                if self._duplicates.get_report(owner_id, report.id).status != ReportStatus.PENDING:
                    result.skipped += 1
                else:
                    await self._duplicates.merge_notes(
                        owner_id, report.original_note.id, report.duplicate_note.id
                    )
                    result.merged += 1
            except ITEM_ERRORS as e:
                logger.warning(f"Failed to auto-merge report {report.id}: {e}")
                result.failures.append(ItemFailure(item=str(report.id), error=str(e)))
            ctx.report_progress((i + 1) * 100 // len(candidates))
        logger.info(f"Auto-merge merged {result.merged}/{len(candidates)} high-confidence duplicates")
        return result

    async def cleanup(self, payload: CleanupPayload, ctx: JobContext) -> CleanupResult:
        """Delete stale ranking records and old dismissed reports."""
        jobs_config = self._settings.jobs
        ranking_days = payload.ranking_retention_days or jobs_config.ranking_retention_days
        dismissed_days = payload.dismissed_retention_days or jobs_config.dismissed_retention_days

        result = CleanupResult(rankings_deleted=self._store.delete_rankings_older_than(ranking_days))
        ctx.report_progress(50)
        result.reports_deleted = self._duplicates.delete_dismissed_older_than(dismissed_days)
        logger.info(
            f"Cleanup deleted {result.rankings_deleted} rankings older than {ranking_days} days "
            f"and {result.reports_deleted} dismissed reports older than {dismissed_days} days"
        )
        return result

    async def rebuild_search_index(
        self, payload: RebuildSearchIndexPayload, ctx: JobContext
    ) -> RebuildResult:
        """Drop index data of deleted notes and optionally reindex live ones."""
        result = RebuildResult(
            orphan_rankings_deleted=self._store.delete_orphan_rankings(),
            orphan_chunks_deleted=self._store.delete_orphan_chunks(),
        )
        ctx.report_progress(20)

        if payload.reindex and self._indexing is not None:
            owners = [payload.owner_id] if payload.owner_id else self._notes.owner_ids()
            for owner_id in owners:
                for note in self._notes.list_for_owner(owner_id, limit=self._settings.duplicates.corpus_scan_limit):
                    try:
                        await self._indexing.process_note(note.id, owner_id)
                        result.notes_reindexed += 1
                    except ITEM_ERRORS as e:
                        logger.warning(f"Failed to reindex note {note.id}: {e}")
                        result.failures.append(ItemFailure(item=str(note.id), error=str(e)))

        logger.info(
            f"Search index rebuilt: {result.orphan_rankings_deleted} orphan rankings, "
            f"{result.orphan_chunks_deleted} orphan chunks removed, {result.notes_reindexed} notes reindexed"
        )
        return result
