"""Job kinds, tagged payloads and results."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class JobKind(str, Enum):
    """Background job kinds."""

    UPDATE_SEARCH_RANKINGS = "update-search-rankings"
    DETECT_DUPLICATES = "detect-duplicates"
    BATCH_DUPLICATE_CHECK = "batch-duplicate-check"
    AUTO_MERGE = "auto-merge-high-confidence"
    CLEANUP = "cleanup"
    REBUILD_SEARCH_INDEX = "rebuild-search-index"


class JobStatus(str, Enum):
    """Lifecycle of a queued job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobOptions:
    """Delivery options for one enqueued job.

    Attributes:
        attempts: Total attempts before the job is marked failed.
        backoff_seconds: Base delay, doubled after each failed attempt.
        priority: Higher runs first.
        delay_seconds: Earliest start, relative to enqueue time.
        coalesce: Reuse a pending job with the same kind and payload,
            pushing its start back by delay_seconds.
    """

    attempts: int = 1
    backoff_seconds: float = 0.0
    priority: int = 0
    delay_seconds: float = 0.0
    coalesce: bool = False


# =============================================================================
# Payloads
# =============================================================================


class RankedNote(BaseModel):
    """A search result reduced to what ranking feedback needs."""

    note_id: int
    score: float
    reasons: list[str] = Field(default_factory=list)


class UpdateRankingsPayload(BaseModel):
    kind: Literal["update-search-rankings"] = "update-search-rankings"
    owner_id: str
    query: str
    results: list[RankedNote]


class DetectDuplicatesPayload(BaseModel):
    """Scan one note against the corpus, or the whole corpus when note_id is None."""

    kind: Literal["detect-duplicates"] = "detect-duplicates"
    owner_id: str
    note_id: Optional[int] = None
    threshold: Optional[float] = Field(None, ge=0, le=1)


class BatchDuplicateCheckPayload(BaseModel):
    kind: Literal["batch-duplicate-check"] = "batch-duplicate-check"
    owner_id: str
    note_ids: list[int]
    threshold: Optional[float] = Field(None, ge=0, le=1)


class AutoMergePayload(BaseModel):
    kind: Literal["auto-merge-high-confidence"] = "auto-merge-high-confidence"
    owner_id: Optional[str] = None
    min_similarity: Optional[float] = Field(None, ge=0, le=1)


class CleanupPayload(BaseModel):
    kind: Literal["cleanup"] = "cleanup"
    ranking_retention_days: Optional[int] = Field(None, ge=1)
    dismissed_retention_days: Optional[int] = Field(None, ge=1)


class RebuildSearchIndexPayload(BaseModel):
    kind: Literal["rebuild-search-index"] = "rebuild-search-index"
    owner_id: Optional[str] = None
    reindex: bool = False


JobPayload = Annotated[
    Union[
        UpdateRankingsPayload,
        DetectDuplicatesPayload,
        BatchDuplicateCheckPayload,
        AutoMergePayload,
        CleanupPayload,
        RebuildSearchIndexPayload,
    ],
    Field(discriminator="kind"),
]

payload_adapter: TypeAdapter[Any] = TypeAdapter(JobPayload)


# =============================================================================
# Results
# =============================================================================


class ItemFailure(BaseModel):
    """One item a batch job could not process."""

    item: str
    error: str


class RankingUpdateResult(BaseModel):
    updated: int = 0
    failures: list[ItemFailure] = Field(default_factory=list)


class DuplicateScanResult(BaseModel):
    notes_scanned: int = 0
    duplicates_found: int = 0
    reports_created: int = 0
    failures: list[ItemFailure] = Field(default_factory=list)


class BatchItemOutcome(BaseModel):
    note_id: int
    success: bool
    duplicates_found: int = 0
    error: Optional[str] = None


class BatchCheckResult(BaseModel):
    results: list[BatchItemOutcome] = Field(default_factory=list)
    failures: list[ItemFailure] = Field(default_factory=list)


class AutoMergeResult(BaseModel):
    merged: int = 0
    skipped: int = 0
    failures: list[ItemFailure] = Field(default_factory=list)


class CleanupResult(BaseModel):
    rankings_deleted: int = 0
    reports_deleted: int = 0


class RebuildResult(BaseModel):
    orphan_rankings_deleted: int = 0
    orphan_chunks_deleted: int = 0
    notes_reindexed: int = 0
    failures: list[ItemFailure] = Field(default_factory=list)


class JobRecord(BaseModel):
    """A job as stored in the queue."""

    id: str
    kind: JobKind
    status: JobStatus
    payload: dict[str, Any]
    priority: int
    attempts: int
    max_attempts: int
    progress: int = Field(0, ge=0, le=100)
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime
    run_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
