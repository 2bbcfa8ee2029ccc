"""Search endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from notewise.api.deps import get_db, get_embeddings, get_job_queue, get_owner_id
from notewise.db.connection import Database
from notewise.jobs.queue import JobQueue
from notewise.llm.embeddings import EmbeddingSession
from notewise.search.history import SavedSearchNotFoundError, SearchHistoryService
from notewise.search.schemas import (
    PopularQuery,
    SavedSearch,
    SavedSearchCreate,
    SearchFilters,
    SearchHistoryEntry,
    SearchRequest,
    SearchResponse,
    SearchSuggestion,
    SortField,
    SortOrder,
)
from notewise.search.service import SearchService

router = APIRouter(prefix="/api/search", tags=["search"])


def get_search_service(
    db: Database = Depends(get_db),
    embeddings: EmbeddingSession = Depends(get_embeddings),
    queue: JobQueue = Depends(get_job_queue),
) -> SearchService:
    """Get SearchService instance."""
    return SearchService(db, embeddings, queue)


def get_history_service(db: Database = Depends(get_db)) -> SearchHistoryService:
    """Get SearchHistoryService instance."""
    return SearchHistoryService(db)


@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query(..., min_length=1, description="Search query"),
    tags: list[str] = Query([], description="Keep notes carrying any of these tags"),
    sort_by: SortField = Query(SortField.RELEVANCE),
    sort_order: SortOrder = Query(SortOrder.DESC),
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    """Search notes with the most common filters as query parameters."""
    filters = SearchFilters(tags=tags, sort_by=sort_by, sort_order=sort_order)
    return await service.search(owner_id, q, filters=filters, limit=limit)


@router.post("", response_model=SearchResponse)
async def search_with_filters(
    request: SearchRequest,
    owner_id: str = Depends(get_owner_id),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    """Search notes with the full filter set."""
    return await service.search(owner_id, request.query, filters=request.filters, limit=request.limit)


@router.get("/history", response_model=list[SearchHistoryEntry])
async def search_history(
    limit: int = Query(20, ge=1, le=200),
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryService = Depends(get_history_service),
) -> list[SearchHistoryEntry]:
    """Most recent searches first."""
    return history.recent(owner_id, limit=limit)


@router.get("/popular", response_model=list[PopularQuery])
async def popular_queries(
    limit: int = Query(10, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryService = Depends(get_history_service),
) -> list[PopularQuery]:
    """The owner's most repeated queries."""
    return history.popular(owner_id, limit=limit)


@router.get("/suggestions", response_model=list[SearchSuggestion])
async def suggestions(
    q: str = Query(..., min_length=1, description="Partial query"),
    limit: int = Query(5, ge=1, le=20),
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryService = Depends(get_history_service),
) -> list[SearchSuggestion]:
    """Completions from past queries and tags."""
    return history.suggestions(owner_id, q, limit=limit)


@router.get("/saved", response_model=list[SavedSearch])
async def list_saved_searches(
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryService = Depends(get_history_service),
) -> list[SavedSearch]:
    """List saved searches."""
    return history.list_saved(owner_id)


@router.post("/saved", response_model=SavedSearch, status_code=status.HTTP_201_CREATED)
async def save_search(
    data: SavedSearchCreate,
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryService = Depends(get_history_service),
) -> SavedSearch:
    """Save a query and its filters under a name."""
    return history.save(owner_id, data)


@router.delete("/saved/{search_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_saved_search(
    search_id: int,
    owner_id: str = Depends(get_owner_id),
    history: SearchHistoryService = Depends(get_history_service),
) -> None:
    """Delete a saved search."""
    try:
        history.delete_saved(owner_id, search_id)
    except SavedSearchNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
