"""Durable SQLite-backed job queue with a bounded asyncio worker pool."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, UTC
from typing import Any, Optional

from pydantic import BaseModel

from notewise.config import JobsConfig, settings_or_defaults
from notewise.constants.jobs import (
    DUPLICATE_SCAN_DELAY_SECONDS,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    PROGRESS_LOG_STEP,
)
from notewise.db.connection import Database
from notewise.jobs.schemas import JobKind, JobOptions, JobRecord, JobStatus, payload_adapter

logger = logging.getLogger(__name__)

JOB_COLUMNS = (
    "id, kind, payload, status, priority, attempts, max_attempts, progress, result, "
    "error_message, created_at, run_at, started_at, completed_at"
)

ProgressHook = Callable[[str, int], None]
CompletedHook = Callable[[str, dict[str, Any]], None]
FailedHook = Callable[[str, str, bool], None]


class JobNotFoundError(LookupError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def default_options(kind: JobKind, config: Optional[JobsConfig] = None) -> JobOptions:
    """Delivery options used when a caller does not pass its own.

    Single-shot kinds record per-item outcomes, so a retry would only
    repeat work that already succeeded.
    """
    config = config or settings_or_defaults().jobs
    retrying = JobOptions(attempts=config.max_attempts, backoff_seconds=config.backoff_seconds)
    return {
        JobKind.UPDATE_SEARCH_RANKINGS: JobOptions(attempts=1, priority=PRIORITY_LOW),
        JobKind.DETECT_DUPLICATES: JobOptions(
            attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
            delay_seconds=DUPLICATE_SCAN_DELAY_SECONDS,
            coalesce=True,
        ),
        JobKind.BATCH_DUPLICATE_CHECK: JobOptions(attempts=1, priority=PRIORITY_LOW),
        JobKind.AUTO_MERGE: JobOptions(attempts=1, priority=PRIORITY_HIGH),
        JobKind.CLEANUP: retrying,
        JobKind.REBUILD_SEARCH_INDEX: JobOptions(attempts=1, priority=PRIORITY_NORMAL),
    }[kind]


def row_to_record(row: Any) -> JobRecord:
    return JobRecord(
        id=row["id"],
        kind=JobKind(row["kind"]),
        status=JobStatus(row["status"]),
        payload=json.loads(row["payload"]),
        priority=row["priority"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        progress=row["progress"],
        result=json.loads(row["result"]) if row["result"] else None,
        error_message=row["error_message"],
        created_at=datetime.fromisoformat(row["created_at"]),
        run_at=datetime.fromisoformat(row["run_at"]),
        started_at=_parse(row["started_at"]),
        completed_at=_parse(row["completed_at"]),
    )


class JobContext:
    """Handle given to a running job for reporting progress."""

    def __init__(self, queue: JobQueue, job_id: str, kind: JobKind, attempt: int) -> None:
        self.job_id = job_id
        self.kind = kind
        self.attempt = attempt
        self._queue = queue
        self._last_logged = 0

    def report_progress(self, progress: int) -> None:
        """Record completion percentage (0-100) for observers."""
        progress = max(0, min(100, int(progress)))
        self._queue._set_progress(self.job_id, progress)
        if progress - self._last_logged >= PROGRESS_LOG_STEP:
            self._last_logged = progress - progress % PROGRESS_LOG_STEP
            logger.info(f"Job {self.job_id} ({self.kind.value}) progress: {progress}%")


JobHandler = Callable[[Any, JobContext], Awaitable[BaseModel]]


class JobQueue:
    """Persistent work queue with at-least-once delivery.

    Jobs are rows in the jobs table. Workers claim the highest-priority due
    job, run its handler from the handler table, and record the outcome.
    A failed attempt is rescheduled with exponential backoff until its
    attempts are used up. Jobs left running by a previous process are
    returned to pending on start, so handlers must be idempotent.
    """

    def __init__(
        self,
        db: Database,
        handlers: Optional[dict[JobKind, JobHandler]] = None,
        worker_count: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        """Initialize job queue.

        Args:
            db: Database holding the jobs table.
            handlers: Handler per job kind.
            worker_count: Concurrent workers started by start().
            poll_interval: Seconds an idle worker waits before polling again.
        """
        config = settings_or_defaults().jobs
        self._db = db
        self._config = config
        self._handlers: dict[JobKind, JobHandler] = dict(handlers or {})
        self._worker_count = worker_count or config.worker_count
        self._poll_interval = poll_interval if poll_interval is not None else config.poll_interval
        self._workers: list[asyncio.Task] = []
        self._progress_hooks: list[ProgressHook] = []
        self._completed_hooks: list[CompletedHook] = []
        self._failed_hooks: list[FailedHook] = []

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def on_progress(self, hook: ProgressHook) -> None:
        self._progress_hooks.append(hook)

    def on_completed(self, hook: CompletedHook) -> None:
        self._completed_hooks.append(hook)

    def on_failed(self, hook: FailedHook) -> None:
        """Register a hook called after every failed attempt; the flag marks the last one."""
        self._failed_hooks.append(hook)

    def _notify(self, hooks: list[Callable[..., None]], *args: Any) -> None:
        for hook in hooks:
            try:
                hook(*args)
            except Exception:
                logger.exception(f"Job hook {hook!r} failed")

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, payload: BaseModel, options: Optional[JobOptions] = None) -> str:
        """Queue a job and return its id without waiting for it to run.

        Args:
            payload: One of the tagged job payload models.
            options: Delivery options; per-kind defaults when omitted.

        Returns:
            The new job's id, or the reused job's id when coalescing.
        """
        kind = JobKind(payload.kind)  # type: ignore[attr-defined]
        options = options or default_options(kind, self._config)
        now = datetime.now(UTC)
        run_at = _iso(now + timedelta(seconds=options.delay_seconds))
        payload_json = payload.model_dump_json()
        job_id = str(uuid.uuid4())
        with self._db.transaction() as db:
            if options.coalesce:
                row = db.execute(
                    """
                    SELECT id FROM jobs
                    WHERE kind = ? AND payload = ? AND status = 'pending' AND attempts = 0
                    ORDER BY created_at LIMIT 1
                    """,
                    (kind.value, payload_json),
                ).fetchone()
                if row:
                    db.execute("UPDATE jobs SET run_at = ? WHERE id = ?", (run_at, row["id"]))
                    logger.info(f"Coalesced {kind.value} into pending job {row['id']}")
                    return row["id"]
            db.execute(
                """
                INSERT INTO jobs (id, kind, payload, status, priority, attempts, max_attempts,
                                  backoff_seconds, run_at, created_at)
                VALUES (?, ?, ?, 'pending', ?, 0, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    kind.value,
                    payload_json,
                    options.priority,
                    max(1, options.attempts),
                    options.backoff_seconds,
                    run_at,
                    _iso(now),
                ),
            )
        logger.info(f"Queued job {job_id} ({kind.value}), priority {options.priority}")
        return job_id

    def get(self, job_id: str) -> JobRecord:
        row = self._db.execute(f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if not row:
            raise JobNotFoundError(job_id)
        return row_to_record(row)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[JobKind] = None,
        limit: int = 50,
    ) -> list[JobRecord]:
        """Most recently created jobs first."""
        sql = f"SELECT {JOB_COLUMNS} FROM jobs WHERE 1 = 1"
        params: list[Any] = []
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind.value)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [row_to_record(row) for row in self._db.execute(sql, tuple(params)).fetchall()]

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _claim_next(self, now: Optional[datetime] = None) -> Optional[Any]:
        now = now or datetime.now(UTC)
        with self._db.transaction() as db:
            row = db.execute(
                f"""
                SELECT {JOB_COLUMNS}, backoff_seconds FROM jobs
                WHERE status = 'pending' AND run_at <= ?
                ORDER BY priority DESC, run_at, created_at LIMIT 1
                """,
                (_iso(now),),
            ).fetchone()
            if not row:
                return None
            db.execute(
                """
                UPDATE jobs SET status = 'running', attempts = attempts + 1, started_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (_iso(now), row["id"]),
            )
        return row

    def _set_progress(self, job_id: str, progress: int) -> None:
        with self._db.transaction() as db:
            db.execute("UPDATE jobs SET progress = ? WHERE id = ?", (progress, job_id))
        self._notify(self._progress_hooks, job_id, progress)

    async def _run(self, row: Any) -> None:
        job_id = row["id"]
        kind = JobKind(row["kind"])
        attempt = row["attempts"] + 1
        max_attempts = row["max_attempts"]
        logger.info(f"Starting job {job_id} ({kind.value}), attempt {attempt}/{max_attempts}")

        try:
            handler = self._handlers.get(kind)
            if handler is None:
                raise LookupError(f"No handler registered for {kind.value}")
            payload = payload_adapter.validate_json(row["payload"])
            result = await handler(payload, JobContext(self, job_id, kind, attempt))
        except asyncio.CancelledError:
            # Abandoned mid-run; recover_stale() puts it back in the queue
            logger.warning(f"Job {job_id} ({kind.value}) cancelled")
            raise
        except Exception as e:
            self._record_failure(job_id, kind, attempt, max_attempts, row["backoff_seconds"], e)
            return

        result_data = result.model_dump(mode="json")
        now = _iso(datetime.now(UTC))
        with self._db.transaction() as db:
            db.execute(
                """
                UPDATE jobs SET status = 'completed', progress = 100, result = ?,
                    error_message = NULL, completed_at = ?
                WHERE id = ?
                """,
                (json.dumps(result_data), now, job_id),
            )
        logger.info(f"Completed job {job_id} ({kind.value})")
        self._notify(self._completed_hooks, job_id, result_data)

    def _record_failure(
        self,
        job_id: str,
        kind: JobKind,
        attempt: int,
        max_attempts: int,
        backoff_seconds: float,
        error: Exception,
    ) -> None:
        message = f"{type(error).__name__}: {error}"
        final = attempt >= max_attempts
        now = datetime.now(UTC)
        with self._db.transaction() as db:
            if final:
                db.execute(
                    """
                    UPDATE jobs SET status = 'failed', error_message = ?, completed_at = ?
                    WHERE id = ?
                    """,
                    (message, _iso(now), job_id),
                )
            else:
                delay = backoff_seconds * (2 ** (attempt - 1))
                db.execute(
                    "UPDATE jobs SET status = 'pending', error_message = ?, run_at = ? WHERE id = ?",
                    (message, _iso(now + timedelta(seconds=delay)), job_id),
                )
        if final:
            logger.error(f"Job {job_id} ({kind.value}) failed after {attempt} attempt(s): {message}")
        else:
            logger.warning(
                f"Job {job_id} ({kind.value}) attempt {attempt}/{max_attempts} failed, "
                f"retrying with backoff: {message}"
            )
        self._notify(self._failed_hooks, job_id, message, final)

    async def run_next(self) -> bool:
        """Claim and run one due job. Returns False when nothing is due."""
        row = self._claim_next()
        if row is None:
            return False
        await self._run(row)
        return True

    async def run_pending(self) -> int:
        """Run due jobs until none are left; returns how many ran."""
        count = 0
        while await self.run_next():
            count += 1
        return count

    def recover_stale(self) -> int:
        """Return jobs stuck in 'running' to the queue."""
        with self._db.transaction() as db:
            cursor = db.execute(
                "UPDATE jobs SET status = 'pending', attempts = MAX(attempts - 1, 0) "
                "WHERE status = 'running'"
            )
        if cursor.rowcount:
            logger.warning(f"Requeued {cursor.rowcount} job(s) interrupted by shutdown")
        return cursor.rowcount

    async def _worker(self, index: int) -> None:
        logger.debug(f"Job worker {index} started")
        while True:
            try:
                ran = await self.run_next()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Job worker {index} hit an unexpected error")
                ran = False
            if not ran:
                await asyncio.sleep(self._poll_interval)

    def start(self) -> None:
        """Start the worker pool on the running event loop."""
        if self._workers:
            return
        self.recover_stale()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"job-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info(f"Started {self._worker_count} job worker(s)")

    async def stop(self) -> None:
        """Cancel workers and wait for them to exit."""
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            logger.info("Job workers stopped")

    @property
    def running(self) -> bool:
        return bool(self._workers)
