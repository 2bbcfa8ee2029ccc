"""Search request and response schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class SortField(str, Enum):
    """Result ordering keys."""

    RELEVANCE = "relevance"
    CREATED = "created"
    UPDATED = "updated"
    TITLE = "title"
    SIZE = "size"


class SortOrder(str, Enum):
    """Result ordering direction."""

    ASC = "asc"
    DESC = "desc"


class SearchFilters(BaseModel):
    """Optional narrowing and ordering of search results."""

    tags: list[str] = Field(default_factory=list, description="Keep notes carrying any of these tags")
    created_from: datetime | None = Field(None, description="Created at or after")
    created_to: datetime | None = Field(None, description="Created at or before")
    updated_within_days: int | None = Field(None, ge=1, description="Updated within this many days")
    min_words: int | None = Field(None, ge=0)
    max_words: int | None = Field(None, ge=0)
    sort_by: SortField = SortField.RELEVANCE
    sort_order: SortOrder = SortOrder.DESC

    @model_validator(mode="after")
    def check_ranges(self) -> "SearchFilters":
        if self.min_words is not None and self.max_words is not None and self.min_words > self.max_words:
            raise ValueError("min_words must not exceed max_words")
        if self.created_from and self.created_to and self.created_from > self.created_to:
            raise ValueError("created_from must not be after created_to")
        return self


class SearchRequest(BaseModel):
    """Request for the search endpoint."""

    query: str = Field(..., description="Raw query string")
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int | None = Field(None, ge=1, le=100, description="Maximum results")


class SearchResult(BaseModel):
    """A ranked note. Derived per query, never stored."""

    note_id: int
    title: str
    excerpt: str
    score: float = Field(..., ge=0)
    reasons: list[str] = Field(default_factory=list, description="Why the note ranked, strongest first")
    highlights: list[str] = Field(default_factory=list, description="Snippets with **matches** marked")
    tags: list[str] = Field(default_factory=list)
    word_count: int = 0
    semantic_similarity: float = Field(0.0, ge=0, le=1)
    created_at: datetime
    updated_at: datetime


class FacetCount(BaseModel):
    """Number of results sharing a value."""

    value: str
    count: int


class SearchFacets(BaseModel):
    """Aggregates over every matching note, before the result limit."""

    tags: list[FacetCount] = Field(default_factory=list)
    date_ranges: list[FacetCount] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Response from the search endpoint."""

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    total: int = Field(0, description="Matching notes before the result limit")
    facets: SearchFacets = Field(default_factory=SearchFacets)
    semantic_used: bool = Field(False, description="Whether embeddings contributed to scores")
    ranking_job_id: str | None = Field(None, description="Background ranking update, if queued")
    took_ms: int = 0


class SearchHistoryEntry(BaseModel):
    """One past search."""

    id: int
    query: str
    filters: dict = Field(default_factory=dict)
    result_count: int
    searched_at: datetime


class PopularQuery(BaseModel):
    """A query and how often it was run."""

    query: str
    count: int


class SavedSearchCreate(BaseModel):
    """Request to save a search."""

    name: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)
    filters: SearchFilters = Field(default_factory=SearchFilters)


class SavedSearch(BaseModel):
    """A user-curated search."""

    id: int
    name: str
    query: str
    filters: SearchFilters
    created_at: datetime


class SearchSuggestion(BaseModel):
    """Completion for a partially typed query."""

    text: str
    source: str = Field(..., description="'history' or 'tag'")
