"""Duplicate detection and report endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from notewise.api.deps import get_db, get_indexing, get_job_queue, get_owner_id
from notewise.db.connection import Database
from notewise.duplicates.detector import DuplicateDetector
from notewise.duplicates.schemas import (
    DuplicateReport,
    DuplicateReportCreate,
    DuplicateReportUpdate,
    DuplicateResult,
    DuplicateStats,
    MergeRequest,
    MergeResult,
    ReportStatus,
)
from notewise.duplicates.service import DuplicateService, ReportNotFoundError
from notewise.indexing.service import IndexingService
from notewise.jobs.queue import JobQueue
from notewise.jobs.schemas import (
    AutoMergePayload,
    BatchDuplicateCheckPayload,
    DetectDuplicatesPayload,
)
from notewise.notes.service import NoteNotFoundError

router = APIRouter(prefix="/api/duplicates", tags=["duplicates"])


class JobQueued(BaseModel):
    """Identifier of a queued background job."""

    job_id: str


class DetectRequest(BaseModel):
    """Queue a duplicate scan for one note or the whole corpus."""

    note_id: Optional[int] = None
    threshold: Optional[float] = Field(None, ge=0, le=1)


class BatchCheckRequest(BaseModel):
    """Queue a duplicate check of several notes."""

    note_ids: list[int] = Field(..., min_length=1, max_length=500)
    threshold: Optional[float] = Field(None, ge=0, le=1)


class AutoMergeRequest(BaseModel):
    """Queue a merge of pending, very similar pairs."""

    min_similarity: Optional[float] = Field(None, ge=0, le=1)


def get_duplicate_service(
    db: Database = Depends(get_db),
    indexing: IndexingService = Depends(get_indexing),
) -> DuplicateService:
    """Get DuplicateService instance."""
    return DuplicateService(db, indexing=indexing)


@router.get("", response_model=list[DuplicateResult])
async def find_duplicates(
    note_id: Optional[int] = Query(None, description="Check one note instead of the corpus"),
    threshold: Optional[float] = Query(None, ge=0, le=1),
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> list[DuplicateResult]:
    """Find duplicate pairs now, without filing reports."""
    try:
        return service.find_duplicates(owner_id, note_id=note_id, threshold=threshold)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.post("/detect", response_model=JobQueued, status_code=status.HTTP_202_ACCEPTED)
async def queue_detection(
    request: DetectRequest,
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
) -> JobQueued:
    """Queue a duplicate scan that files reports for high-confidence pairs."""
    payload = DetectDuplicatesPayload(owner_id=owner_id, note_id=request.note_id, threshold=request.threshold)
    return JobQueued(job_id=queue.enqueue(payload))


@router.post("/batch", response_model=JobQueued, status_code=status.HTTP_202_ACCEPTED)
async def queue_batch_check(
    request: BatchCheckRequest,
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
) -> JobQueued:
    """Queue a per-note duplicate check of several notes."""
    payload = BatchDuplicateCheckPayload(
        owner_id=owner_id, note_ids=request.note_ids, threshold=request.threshold
    )
    return JobQueued(job_id=queue.enqueue(payload))


@router.post("/auto-merge", response_model=JobQueued, status_code=status.HTTP_202_ACCEPTED)
async def queue_auto_merge(
    request: AutoMergeRequest,
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
) -> JobQueued:
    """Queue a merge of the owner's pending pairs above the merge threshold."""
    payload = AutoMergePayload(owner_id=owner_id, min_similarity=request.min_similarity)
    return JobQueued(job_id=queue.enqueue(payload))


@router.get("/reports", response_model=list[DuplicateReport])
async def list_reports(
    report_status: Optional[ReportStatus] = Query(None, alias="status"),
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> list[DuplicateReport]:
    """List reports, most similar first."""
    return service.list_reports(owner_id, status=report_status)


@router.post("/reports", response_model=DuplicateReport, status_code=status.HTTP_201_CREATED)
async def create_report(
    data: DuplicateReportCreate,
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> DuplicateReport:
    """File a report for a pair by hand."""
    if data.original_note_id == data.duplicate_note_id:
        raise HTTPException(status_code=400, detail="A note cannot duplicate itself")
    result = DuplicateResult(
        original_note_id=data.original_note_id,
        duplicate_note_id=data.duplicate_note_id,
        similarity=data.similarity,
        type=data.type,
        suggested_action=DuplicateDetector().suggested_action(data.similarity),
    )
    try:
        report = service.create_report(owner_id, result)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if report is None:
        raise HTTPException(status_code=409, detail="A report for this pair already exists")
    return report


@router.get("/reports/{report_id}", response_model=DuplicateReport)
async def get_report(
    report_id: int,
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> DuplicateReport:
    """Get one report."""
    try:
        return service.get_report(owner_id, report_id)
    except ReportNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.patch("/reports/{report_id}", response_model=DuplicateReport)
async def update_report(
    report_id: int,
    data: DuplicateReportUpdate,
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> DuplicateReport:
    """Confirm, dismiss or reopen a report."""
    try:
        return service.update_report(owner_id, report_id, data.status)
    except ReportNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.post("/merge", response_model=MergeResult)
async def merge_notes(
    request: MergeRequest,
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> MergeResult:
    """Fold the duplicate note into the original."""
    try:
        return await service.merge_notes(owner_id, request.original_note_id, request.duplicate_note_id)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/stats", response_model=DuplicateStats)
async def report_stats(
    owner_id: str = Depends(get_owner_id),
    service: DuplicateService = Depends(get_duplicate_service),
) -> DuplicateStats:
    """Report counts by status."""
    return service.stats(owner_id)
