"""Notes API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from notewise.api.deps import get_db, get_indexing, get_job_queue, get_owner_id
from notewise.db.connection import Database
from notewise.indexing.service import IndexingResult, IndexingService
from notewise.jobs.queue import JobQueue
from notewise.jobs.schemas import DetectDuplicatesPayload
from notewise.notes.schemas import Note, NoteCreate, NoteUpdate
from notewise.notes.service import NoteNotFoundError, NotesService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["notes"])


def get_notes_service(db: Database = Depends(get_db)) -> NotesService:
    """Get NotesService instance."""
    return NotesService(db)


async def _index_and_scan(
    note: Note, indexing: IndexingService, queue: JobQueue
) -> None:
    """Rebuild a saved note's chunks and queue a duplicate scan for it."""
    await indexing.process_note(note.id, note.owner_id)
    queue.enqueue(DetectDuplicatesPayload(owner_id=note.owner_id, note_id=note.id))


@router.get("", response_model=list[Note])
async def list_notes(
    limit: int = Query(100, ge=1, le=500),
    owner_id: str = Depends(get_owner_id),
    service: NotesService = Depends(get_notes_service),
) -> list[Note]:
    """List the owner's notes, most recently updated first."""
    return service.list_for_owner(owner_id, limit=limit, order_by="updated_at")


@router.post("", response_model=Note, status_code=status.HTTP_201_CREATED)
async def create_note(
    data: NoteCreate,
    owner_id: str = Depends(get_owner_id),
    service: NotesService = Depends(get_notes_service),
    indexing: IndexingService = Depends(get_indexing),
    queue: JobQueue = Depends(get_job_queue),
) -> Note:
    """Create a note, index it and queue a duplicate scan."""
    note = service.create(owner_id, data)
    await _index_and_scan(note, indexing, queue)
    return note


@router.get("/{note_id}", response_model=Note)
async def get_note(
    note_id: int,
    owner_id: str = Depends(get_owner_id),
    service: NotesService = Depends(get_notes_service),
) -> Note:
    """Get a single note."""
    try:
        return service.get(note_id, owner_id)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.patch("/{note_id}", response_model=Note)
async def update_note(
    note_id: int,
    data: NoteUpdate,
    owner_id: str = Depends(get_owner_id),
    service: NotesService = Depends(get_notes_service),
    indexing: IndexingService = Depends(get_indexing),
    queue: JobQueue = Depends(get_job_queue),
) -> Note:
    """Update a note; a changed body is re-chunked and rescanned for duplicates."""
    try:
        note = service.update(note_id, owner_id, data)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if data.content is not None or data.title is not None:
        await _index_and_scan(note, indexing, queue)
    return note


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: int,
    owner_id: str = Depends(get_owner_id),
    service: NotesService = Depends(get_notes_service),
) -> None:
    """Soft-delete a note. Its index data is removed by the rebuild-search-index job."""
    try:
        service.soft_delete(note_id, owner_id)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.post("/{note_id}/reindex", response_model=IndexingResult)
async def reindex_note(
    note_id: int,
    owner_id: str = Depends(get_owner_id),
    indexing: IndexingService = Depends(get_indexing),
) -> IndexingResult:
    """Regenerate a note's chunks and embeddings now."""
    try:
        return await indexing.process_note(note_id, owner_id)
    except NoteNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
