"""Duplicate detection schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SimilarityType(str, Enum):
    """Which measure produced a duplicate's score."""

    TITLE = "title"
    CONTENT = "content"
    SEMANTIC = "semantic"


class SuggestedAction(str, Enum):
    """What the user should do about a duplicate pair."""

    MERGE = "merge"
    REVIEW = "review"
    KEEP_SEPARATE = "keep_separate"


class ReportStatus(str, Enum):
    """Lifecycle of a duplicate report."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"
    MERGED = "merged"


class SimilarityScores(BaseModel):
    """The three independent measures behind a result."""

    title: float = Field(0.0, ge=0, le=1)
    content: float = Field(0.0, ge=0, le=1)
    semantic: float = Field(0.0, ge=0, le=1)


class DuplicateResult(BaseModel):
    """A note pair whose similarity cleared the caller's threshold.

    original_note_id is always the lower id of the pair, so the result does
    not depend on the order the notes were compared in.
    """

    original_note_id: int
    duplicate_note_id: int
    similarity: float = Field(..., ge=0, le=1)
    type: SimilarityType
    suggested_action: SuggestedAction
    scores: SimilarityScores = Field(default_factory=SimilarityScores)


class NoteRef(BaseModel):
    """Minimal note reference embedded in reports."""

    id: int
    title: str


class DuplicateReport(BaseModel):
    """A stored duplicate finding for an unordered note pair."""

    id: int
    original_note: NoteRef
    duplicate_note: NoteRef
    similarity: float = Field(..., ge=0, le=1)
    type: SimilarityType
    status: ReportStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None


class DuplicateReportCreate(BaseModel):
    """Request to file a report by hand."""

    original_note_id: int
    duplicate_note_id: int
    similarity: float = Field(..., ge=0, le=1)
    type: SimilarityType


class DuplicateReportUpdate(BaseModel):
    """Request to resolve a report."""

    status: ReportStatus


class MergeRequest(BaseModel):
    """Request to merge one note into another."""

    original_note_id: int
    duplicate_note_id: int


class MergeResult(BaseModel):
    """Outcome of a merge."""

    merged_note_id: int
    deleted_note_id: int
    chunk_count: int = 0


class DuplicateStats(BaseModel):
    """Report counts by status."""

    total: int = 0
    pending: int = 0
    confirmed: int = 0
    dismissed: int = 0
    merged: int = 0
