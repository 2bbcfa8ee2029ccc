"""Job queue and job handler tests."""

import asyncio
from datetime import datetime, timedelta, UTC
from unittest.mock import MagicMock

import pytest

from notewise.duplicates import DuplicateResult, DuplicateService, ReportStatus, SimilarityType, SuggestedAction
from notewise.indexing.chunking import Chunk
from notewise.indexing.service import IndexingService
from notewise.indexing.store import IndexStore
from notewise.jobs import JobKind, JobNotFoundError, JobOptions, JobQueue, JobStatus, default_options
from notewise.jobs.handlers import SCAN_PROGRESS_START, JobHandlers
from notewise.jobs.schemas import (
    AutoMergePayload,
    BatchDuplicateCheckPayload,
    CleanupPayload,
    CleanupResult,
    DetectDuplicatesPayload,
    RankedNote,
    RebuildSearchIndexPayload,
    UpdateRankingsPayload,
)
from notewise.llm.embeddings import EmbeddingSession
from notewise.notes import NoteNotFoundError

NOW = JobOptions()


@pytest.fixture
def queue(temp_db):
    indexing = IndexingService(temp_db, EmbeddingSession())
    return JobQueue(temp_db, handlers=JobHandlers(temp_db, indexing=indexing).table(), worker_count=1)


# =============================================================================
# Queue
# =============================================================================


async def test_enqueue_then_run(queue, make_note):
    note = make_note("Plan")
    job_id = queue.enqueue(
        UpdateRankingsPayload(owner_id="alice", query="plan", results=[RankedNote(note_id=note.id, score=3.0)])
    )

    assert queue.get(job_id).status == JobStatus.PENDING
    assert await queue.run_pending() == 1

    job = queue.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.attempts == 1
    assert job.result == {"updated": 1, "failures": []}


async def test_unknown_job(queue):
    with pytest.raises(JobNotFoundError):
        queue.get("missing")


async def test_higher_priority_runs_first(temp_db):
    order: list[int] = []

    async def record(payload, ctx):
        order.append(payload.ranking_retention_days)
        return CleanupResult()

    queue = JobQueue(temp_db, handlers={JobKind.CLEANUP: record})
    queue.enqueue(CleanupPayload(ranking_retention_days=1), JobOptions(priority=-1))
    queue.enqueue(CleanupPayload(ranking_retention_days=2), JobOptions(priority=1))
    queue.enqueue(CleanupPayload(ranking_retention_days=3), JobOptions(priority=0))

    await queue.run_pending()

    assert order == [2, 3, 1]


async def test_delayed_jobs_wait(queue):
    job_id = queue.enqueue(CleanupPayload(), JobOptions(delay_seconds=60))

    assert await queue.run_next() is False
    assert queue.get(job_id).status == JobStatus.PENDING


async def test_repeated_scans_of_a_note_coalesce(queue):
    payload = DetectDuplicatesPayload(owner_id="alice", note_id=1)

    first = queue.enqueue(payload)
    second = queue.enqueue(payload)
    other = queue.enqueue(DetectDuplicatesPayload(owner_id="alice", note_id=2))

    assert second == first
    assert other != first
    assert len(queue.list_jobs(kind=JobKind.DETECT_DUPLICATES)) == 2


async def test_jobs_without_coalescing_are_queued_separately(queue):
    assert queue.enqueue(CleanupPayload()) != queue.enqueue(CleanupPayload())


async def test_failed_attempt_is_retried_with_backoff(temp_db):
    calls: list[int] = []
    failures: list[tuple[str, bool]] = []

    async def flaky(payload, ctx):
        calls.append(ctx.attempt)
        if ctx.attempt == 1:
            raise RuntimeError("temporary")
        return CleanupResult()

    queue = JobQueue(temp_db, handlers={JobKind.CLEANUP: flaky})
    queue.on_failed(lambda job_id, message, final: failures.append((message, final)))
    job_id = queue.enqueue(CleanupPayload(), JobOptions(attempts=2, backoff_seconds=30))

    await queue.run_pending()

    job = queue.get(job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 1
    assert job.run_at > datetime.now(UTC) + timedelta(seconds=20)
    assert failures == [("RuntimeError: temporary", False)]

    temp_db.execute("UPDATE jobs SET run_at = ? WHERE id = ?", (datetime.now(UTC).isoformat(), job_id))
    temp_db.commit()
    await queue.run_pending()

    assert calls == [1, 2]
    assert queue.get(job_id).status == JobStatus.COMPLETED


async def test_final_failure_is_recorded(temp_db):
    failures: list[bool] = []

    async def broken(payload, ctx):
        raise ValueError("bad payload")

    queue = JobQueue(temp_db, handlers={JobKind.CLEANUP: broken})
    queue.on_failed(lambda job_id, message, final: failures.append(final))
    job_id = queue.enqueue(CleanupPayload(), JobOptions(attempts=1))

    await queue.run_pending()

    job = queue.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "ValueError: bad payload"
    assert failures == [True]


async def test_missing_handler_fails_the_job(temp_db):
    queue = JobQueue(temp_db, handlers={})
    job_id = queue.enqueue(CleanupPayload(), JobOptions())

    await queue.run_pending()

    assert queue.get(job_id).status == JobStatus.FAILED


async def test_progress_and_completion_hooks(queue, make_note):
    notes = [make_note(f"Note {i}") for i in range(4)]
    progress: list[int] = []
    completed: list[dict] = []
    queue.on_progress(lambda job_id, pct: progress.append(pct))
    queue.on_completed(lambda job_id, result: completed.append(result))

    queue.enqueue(
        UpdateRankingsPayload(
            owner_id="alice",
            query="note",
            results=[RankedNote(note_id=n.id, score=1.0) for n in notes],
        )
    )
    await queue.run_pending()

    assert progress == [25, 50, 75, 100]
    assert completed[0]["updated"] == 4


async def test_a_failing_hook_does_not_fail_the_job(queue):
    def explode(job_id, result):
        raise RuntimeError("hook broke")

    queue.on_completed(explode)
    job_id = queue.enqueue(CleanupPayload())

    await queue.run_pending()

    assert queue.get(job_id).status == JobStatus.COMPLETED


async def test_stale_running_jobs_are_recovered(queue):
    job_id = queue.enqueue(CleanupPayload())
    queue._claim_next()
    assert queue.get(job_id).status == JobStatus.RUNNING

    assert queue.recover_stale() == 1

    job = queue.get(job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 0


async def test_list_jobs_filters(queue):
    queue.enqueue(CleanupPayload())
    queue.enqueue(RebuildSearchIndexPayload())

    assert [j.kind for j in queue.list_jobs(kind=JobKind.CLEANUP)] == [JobKind.CLEANUP]
    assert len(queue.list_jobs(status=JobStatus.PENDING)) == 2
    assert queue.list_jobs(status=JobStatus.COMPLETED) == []


def test_default_options_per_kind():
    assert default_options(JobKind.UPDATE_SEARCH_RANKINGS).attempts == 1
    assert default_options(JobKind.DETECT_DUPLICATES).delay_seconds > 0
    assert default_options(JobKind.AUTO_MERGE).priority > default_options(JobKind.BATCH_DUPLICATE_CHECK).priority


async def test_worker_pool_drains_queue(queue):
    job_id = queue.enqueue(CleanupPayload())

    queue.start()
    try:
        for _ in range(100):
            if queue.get(job_id).status == JobStatus.COMPLETED:
                break
            await asyncio.sleep(0.05)
    finally:
        await queue.stop()

    assert queue.get(job_id).status == JobStatus.COMPLETED
    assert not queue.running


# =============================================================================
# Handlers
# =============================================================================


async def test_ranking_update_is_idempotent(queue, temp_db, make_note):
    note = make_note("Plan")
    payload = UpdateRankingsPayload(owner_id="alice", query="plan", results=[RankedNote(note_id=note.id, score=4.0)])

    queue.enqueue(payload)
    queue.enqueue(payload)
    await queue.run_pending()

    store = IndexStore(temp_db)
    assert store.count_rankings(note.id) == 1
    assert store.get_ranking(note.id, "plan").factors["position"] == 0


async def test_ranking_update_records_partial_failure(queue, make_note):
    note = make_note("Plan")
    job_id = queue.enqueue(
        UpdateRankingsPayload(
            owner_id="alice",
            query="plan",
            results=[RankedNote(note_id=note.id, score=4.0), RankedNote(note_id=9999, score=1.0)],
        )
    )

    await queue.run_pending()

    job = queue.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["updated"] == 1
    assert [f["item"] for f in job.result["failures"]] == ["9999"]


async def test_detect_duplicates_files_reports(queue, temp_db, make_note):
    original = make_note("Team offsite", "Agenda and travel for the offsite.")
    copy = make_note("Team offsite", "Agenda and travel for the offsite.")
    job_id = queue.enqueue(DetectDuplicatesPayload(owner_id="alice", note_id=copy.id), NOW)

    await queue.run_pending()

    result = queue.get(job_id).result
    assert result["duplicates_found"] == 1
    assert result["reports_created"] == 1
    reports = DuplicateService(temp_db).list_reports("alice")
    assert reports[0].original_note.id == original.id

    # A second scan finds the same pair but files nothing new
    again = queue.enqueue(DetectDuplicatesPayload(owner_id="alice"), NOW)
    await queue.run_pending()
    assert queue.get(again).result["reports_created"] == 0


async def test_abandoned_scan_keeps_reports_already_filed(temp_db, make_note):
    # The newest note is scanned first
    make_note("Groceries", "Milk, eggs and bread.")
    make_note("Team offsite", "Agenda and travel for the offsite.")
    make_note("Team offsite", "Agenda and travel for the offsite.")
    ctx = MagicMock()

    def abandon_after_first_note(progress: int) -> None:
        if progress > SCAN_PROGRESS_START:
            raise asyncio.CancelledError()

    ctx.report_progress.side_effect = abandon_after_first_note

    with pytest.raises(asyncio.CancelledError):
        await JobHandlers(temp_db).detect_duplicates(DetectDuplicatesPayload(owner_id="alice"), ctx)

    assert len(DuplicateService(temp_db).list_reports("alice")) == 1


async def test_detect_duplicates_for_missing_note_fails(temp_db):
    queue = JobQueue(temp_db, handlers=JobHandlers(temp_db).table())
    job_id = queue.enqueue(DetectDuplicatesPayload(owner_id="alice", note_id=12345), JobOptions(attempts=1))

    await queue.run_pending()

    job = queue.get(job_id)
    assert job.status == JobStatus.FAILED
    assert NoteNotFoundError.__name__ in job.error_message


async def test_batch_check_reports_each_note(queue, make_note):
    note = make_note("Solo", "body")
    job_id = queue.enqueue(BatchDuplicateCheckPayload(owner_id="alice", note_ids=[note.id, 777]))

    await queue.run_pending()

    result = queue.get(job_id).result
    assert [(r["note_id"], r["success"]) for r in result["results"]] == [(note.id, True), (777, False)]
    assert len(result["failures"]) == 1


async def test_auto_merge_merges_high_confidence_pairs(queue, temp_db, make_note):
    original = make_note("Trip", "Flights")
    duplicate = make_note("Trip", "Flights")
    service = DuplicateService(temp_db)
    report = service.create_report(
        "alice",
        DuplicateResult(
            original_note_id=original.id,
            duplicate_note_id=duplicate.id,
            similarity=0.99,
            type=SimilarityType.CONTENT,
            suggested_action=SuggestedAction.MERGE,
        ),
    )

    job_id = queue.enqueue(AutoMergePayload())
    await queue.run_pending()

    assert queue.get(job_id).result == {"merged": 1, "skipped": 0, "failures": []}
    assert service.get_report("alice", report.id).status == ReportStatus.MERGED


async def test_auto_merge_leaves_no_stale_reports_behind(queue, temp_db, make_note):
    notes = [make_note("Trip", "Flights") for _ in range(3)]
    service = DuplicateService(temp_db)
    reports = [
        service.create_report(
            "alice",
            DuplicateResult(
                original_note_id=first.id,
                duplicate_note_id=second.id,
                similarity=0.99,
                type=SimilarityType.CONTENT,
                suggested_action=SuggestedAction.MERGE,
            ),
        )
        for first, second in [(notes[0], notes[1]), (notes[0], notes[2]), (notes[1], notes[2])]
    ]

    first_run = queue.enqueue(AutoMergePayload())
    await queue.run_pending()
    second_run = queue.enqueue(AutoMergePayload())
    await queue.run_pending()

    assert queue.get(first_run).result == {"merged": 2, "skipped": 1, "failures": []}
    assert queue.get(second_run).result == {"merged": 0, "skipped": 0, "failures": []}
    statuses = [service.get_report("alice", report.id).status for report in reports]
    assert statuses == [ReportStatus.MERGED, ReportStatus.MERGED, ReportStatus.DISMISSED]


async def test_cleanup_prunes_old_records(queue, temp_db, make_note):
    note = make_note("Plan")
    IndexStore(temp_db).upsert_ranking(note.id, "plan", 1.0, {})
    old = (datetime.now(UTC) - timedelta(days=400)).isoformat()
    temp_db.execute("UPDATE search_rankings SET updated_at = ?", (old,))
    temp_db.commit()

    job_id = queue.enqueue(CleanupPayload())
    await queue.run_pending()

    assert queue.get(job_id).result == {"rankings_deleted": 1, "reports_deleted": 0}


async def test_rebuild_removes_orphans_and_reindexes(queue, temp_db, notes_service, make_note):
    live = make_note("Live", "A body long enough to become a chunk of its own.")
    gone = make_note("Gone", "A body long enough to become a chunk of its own.")
    store = IndexStore(temp_db)
    store.replace_note_chunks(gone.id, "alice", [Chunk(id=f"{gone.id}_chunk_0", note_id=gone.id, index=0, content="x")])
    notes_service.soft_delete(gone.id, "alice")

    job_id = queue.enqueue(RebuildSearchIndexPayload(reindex=True))
    await queue.run_pending()

    result = queue.get(job_id).result
    assert result["orphan_chunks_deleted"] == 1
    assert result["notes_reindexed"] == 1
    assert len(store.get_note_chunks(live.id)) == 1
