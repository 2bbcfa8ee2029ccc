"""Hybrid note search: lexical scoring plus optional semantic similarity."""

import logging
import sqlite3
import time
from collections import Counter
from datetime import datetime, timedelta, UTC
from typing import Optional

from notewise.config import settings_or_defaults
from notewise.constants.search import FACET_DATE_BUCKETS, MAX_HIGHLIGHTS
from notewise.db.connection import Database
from notewise.indexing.store import IndexStore
from notewise.jobs.queue import JobQueue
from notewise.jobs.schemas import RankedNote, UpdateRankingsPayload
from notewise.llm.embeddings import EmbeddingSession
from notewise.notes.schemas import Note
from notewise.notes.service import NotesService
from notewise.search.history import SearchHistoryService
from notewise.search.keywords import (
    create_excerpt,
    extract_highlight,
    extract_keywords,
    highlight_text,
)
from notewise.search.schemas import (
    FacetCount,
    SearchFacets,
    SearchFilters,
    SearchResponse,
    SearchResult,
    SortField,
    SortOrder,
)
from notewise.search.scoring import ScoreBreakdown, TextScorer
from notewise.search.semantic import SemanticMatcher

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def matches_filters(note: Note, filters: SearchFilters, now: datetime) -> bool:
    """Whether a note passes every filter that is set."""
    if filters.tags and not set(filters.tags) & set(note.tags):
        return False
    created = _as_utc(note.created_at)
    if filters.created_from and created < _as_utc(filters.created_from):
        return False
    if filters.created_to and created > _as_utc(filters.created_to):
        return False
    if filters.updated_within_days is not None:
        if _as_utc(note.updated_at) < now - timedelta(days=filters.updated_within_days):
            return False
    words = note.word_count
    if filters.min_words is not None and words < filters.min_words:
        return False
    if filters.max_words is not None and words > filters.max_words:
        return False
    return True


def build_facets(notes: list[Note], now: datetime) -> SearchFacets:
    """Tag counts and last-updated buckets over the matching notes."""
    tags: Counter[str] = Counter(tag for note in notes for tag in note.tags)

    buckets = {name: 0 for name, _ in FACET_DATE_BUCKETS}
    buckets["older"] = 0
    for note in notes:
        age = now - _as_utc(note.updated_at)
        for name, days in FACET_DATE_BUCKETS:
            if age <= timedelta(days=days):
                buckets[name] += 1
                break
        else:
            buckets["older"] += 1

    return SearchFacets(
        tags=[FacetCount(value=tag, count=count) for tag, count in tags.most_common()],
        date_ranges=[FacetCount(value=name, count=count) for name, count in buckets.items()],
    )


def _highlights(note: Note, query: str, keywords: list[str]) -> list[str]:
    highlights: list[str] = []
    phrase = query.strip()
    if phrase and phrase.lower() in note.title.lower():
        highlights.append(highlight_text(note.title, phrase))
    if phrase:
        snippet = extract_highlight(note.content, phrase)
        if snippet:
            highlights.append(snippet)
    for keyword in keywords:
        if len(highlights) >= MAX_HIGHLIGHTS:
            break
        if phrase and keyword in phrase.lower() and highlights:
            continue
        snippet = extract_highlight(note.content, keyword)
        if snippet and snippet not in highlights:
            highlights.append(snippet)
    return highlights[:MAX_HIGHLIGHTS]


class SearchService:
    """Ranks an owner's notes against a query.

    Candidates come from a lexical prefilter plus, when embeddings are
    available, the notes whose chunks are closest to the query vector.
    Every candidate is scored by TextScorer with the semantic contribution
    folded in. Ranking feedback is persisted by a background job so the
    request never waits on it.
    """

    def __init__(
        self,
        db: Database,
        embeddings: EmbeddingSession,
        queue: Optional[JobQueue] = None,
        scorer: Optional[TextScorer] = None,
        matcher: Optional[SemanticMatcher] = None,
    ) -> None:
        """Initialize search service.

        Args:
            db: Database connection.
            embeddings: Session-scoped embedding availability.
            queue: Job queue for ranking updates; feedback is not recorded without it.
            scorer: Lexical scorer.
            matcher: Semantic matcher.
        """
        self._notes = NotesService(db)
        self._store = IndexStore(db)
        self._history = SearchHistoryService(db)
        self._embeddings = embeddings
        self._queue = queue
        self._scorer = scorer or TextScorer()
        self._matcher = matcher or SemanticMatcher()
        self._config = settings_or_defaults().search

    async def _semantic_similarities(self, owner_id: str, query: str) -> dict[int, float]:
        if not self._embeddings.available:
            return {}
        query_vector = await self._embeddings.embed_query(query)
        if not query_vector:
            return {}
        chunks = [indexed.chunk for indexed in self._store.owner_chunks(owner_id, embedded_only=True)]
        return self._matcher.note_similarities(query_vector, chunks, self._embeddings.model_id)

    def _history_scores(self, note_ids: list[int], query: str) -> dict[int, float]:
        try:
            return self._store.latest_scores(note_ids, query)
        except sqlite3.Error as e:
            logger.warning(f"Ranking history lookup failed, scoring without it: {e}")
            return {}

    async def search(
        self,
        owner_id: str,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
    ) -> SearchResponse:
        """Search an owner's notes.

        Args:
            owner_id: Owner whose notes are searched.
            query: Raw query string.
            filters: Optional filters and sort order.
            limit: Maximum results returned.

        Returns:
            Ranked results with facets. An empty or unmatched query yields no
            results rather than an error.
        """
        started = time.perf_counter()
        filters = filters or SearchFilters()
        limit = limit or self._config.result_limit
        query = query.strip()
        if not query:
            return SearchResponse(query=query)

        now = datetime.now(UTC)
        keywords = extract_keywords(query, self._config.max_keywords)
        candidates = {
            note.id: note
            for note in self._notes.find_candidates(owner_id, query, keywords, self._config.candidate_limit)
        }

        similarities = await self._semantic_similarities(owner_id, query)
        closest = sorted(similarities, key=lambda note_id: similarities[note_id], reverse=True)
        missing = [note_id for note_id in closest[: self._config.semantic_candidates] if note_id not in candidates]
        for note_id, note in self._notes.get_many(missing).items():
            if note.owner_id == owner_id:
                candidates[note_id] = note

        matching = [note for note in candidates.values() if matches_filters(note, filters, now)]
        history = self._history_scores([note.id for note in matching], query)

        scored: list[tuple[Note, ScoreBreakdown, float]] = []
        for note in matching:
            similarity = similarities.get(note.id, 0.0)
            breakdown = self._scorer.score(
                note,
                query,
                keywords,
                semantic_similarity=similarity,
                semantic_points=self._matcher.contribution(similarity),
                history_score=history.get(note.id),
                now=now,
            )
            if breakdown.score > 0:
                scored.append((note, breakdown, similarity))

        self._sort(scored, filters)
        results = [
            SearchResult(
                note_id=note.id,
                title=note.title,
                excerpt=create_excerpt(note.content, query, self._config.snippet_max_length),
                score=breakdown.score,
                reasons=breakdown.reasons,
                highlights=_highlights(note, query, keywords),
                tags=note.tags,
                word_count=note.word_count,
                semantic_similarity=round(similarity, 4),
                created_at=note.created_at,
                updated_at=note.updated_at,
            )
            for note, breakdown, similarity in scored[:limit]
        ]

        response = SearchResponse(
            query=query,
            results=results,
            total=len(scored),
            facets=build_facets([note for note, _, _ in scored], now),
            semantic_used=bool(similarities),
            ranking_job_id=self._queue_ranking_update(owner_id, query, results),
            took_ms=int((time.perf_counter() - started) * 1000),
        )
        self._record_history(owner_id, query, filters, len(scored))
        return response

    @staticmethod
    def _sort(scored: list[tuple[Note, ScoreBreakdown, float]], filters: SearchFilters) -> None:
        reverse = filters.sort_order == SortOrder.DESC
        keys = {
            SortField.RELEVANCE: lambda item: item[1].score,
            SortField.CREATED: lambda item: _as_utc(item[0].created_at),
            SortField.UPDATED: lambda item: _as_utc(item[0].updated_at),
            SortField.TITLE: lambda item: item[0].title.lower(),
            SortField.SIZE: lambda item: item[0].word_count,
        }
        # Stable sorts: the secondary key (most recently updated first) goes first
        scored.sort(key=lambda item: _as_utc(item[0].updated_at), reverse=True)
        scored.sort(key=keys[filters.sort_by], reverse=reverse)

    def _queue_ranking_update(self, owner_id: str, query: str, results: list[SearchResult]) -> Optional[str]:
        if self._queue is None or not results:
            return None
        payload = UpdateRankingsPayload(
            owner_id=owner_id,
            query=query,
            results=[
                RankedNote(note_id=r.note_id, score=r.score, reasons=r.reasons)
                for r in results[: self._config.ranking_top_n]
            ],
        )
        try:
            return self._queue.enqueue(payload)
        except sqlite3.Error as e:
            logger.warning(f"Failed to queue search ranking update: {e}")
            return None

    def _record_history(self, owner_id: str, query: str, filters: SearchFilters, result_count: int) -> None:
        try:
            self._history.record(owner_id, query, filters, result_count)
        except sqlite3.Error as e:
            logger.warning(f"Failed to record search history: {e}")
