"""Chunk retrieval and token-budgeted context assembly for chat."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from notewise.config import settings_or_defaults
from notewise.constants.search import (
    CHUNK_KEYWORD_SCORE,
    CHUNK_MIN_SIMILARITY,
    CHUNK_PHRASE_SCORE,
    CHUNK_SCORE_SCALE,
    CHUNK_SHORT_BONUS,
    CHUNK_SHORT_CHARS,
    CHUNK_TITLE_KEYWORD_SCORE,
    CHUNK_TITLE_PHRASE_SCORE,
)
from notewise.indexing.chunking import Chunk, estimate_tokens
from notewise.indexing.store import IndexStore
from notewise.llm.embeddings import EmbeddingSession
from notewise.qa.schemas import Citation
from notewise.search.keywords import extract_keywords
from notewise.search.semantic import SemanticMatcher

logger = logging.getLogger(__name__)


@dataclass
class ScoredChunk:
    """A chunk with its relevance to a question."""

    chunk: Chunk
    note_title: str
    similarity: float


@dataclass
class AssembledContext:
    """Prompt context plus the citations of the chunks it contains, in order."""

    text: str = ""
    citations: list[Citation] = field(default_factory=list)
    token_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.citations


def lexical_chunk_similarity(content: str, title: str, query: str, keywords: list[str]) -> float:
    """Keyword overlap between a question and one chunk, scaled to [0, 1]."""
    phrase = query.strip().lower()
    if not phrase:
        return 0.0
    content_lower = content.lower()
    title_lower = title.lower()

    score = 0.0
    if phrase in content_lower:
        score += CHUNK_PHRASE_SCORE
    if phrase in title_lower:
        score += CHUNK_TITLE_PHRASE_SCORE
    for keyword in keywords:
        if keyword in content_lower:
            score += CHUNK_KEYWORD_SCORE
        if keyword in title_lower:
            score += CHUNK_TITLE_KEYWORD_SCORE
    if len(content) < CHUNK_SHORT_CHARS:
        score += CHUNK_SHORT_BONUS
    return min(score / CHUNK_SCORE_SCALE, 1.0)


class ChunkRetriever:
    """Finds the chunks of an owner's notes most relevant to a question.

    Each chunk gets a lexical score and, while embeddings are available, a
    semantic one; the higher of the two is its similarity.
    """

    def __init__(
        self,
        store: IndexStore,
        embeddings: EmbeddingSession,
        matcher: Optional[SemanticMatcher] = None,
        max_chunks: Optional[int] = None,
    ) -> None:
        settings = settings_or_defaults()
        self._store = store
        self._embeddings = embeddings
        self._matcher = matcher or SemanticMatcher()
        self._max_chunks = max_chunks or settings.context.max_chunks
        self._max_keywords = settings.search.max_keywords

    async def retrieve(self, owner_id: str, query: str) -> list[ScoredChunk]:
        """Top chunks for a question, most relevant first.

        Args:
            owner_id: Owner whose notes are searched.
            query: The question.

        Returns:
            At most max_chunks chunks scoring above CHUNK_MIN_SIMILARITY.
        """
        if not query.strip():
            return []
        keywords = extract_keywords(query, self._max_keywords)
        query_vector = await self._embeddings.embed_query(query) if self._embeddings.available else []
        model_id = self._embeddings.model_id

        scored: list[ScoredChunk] = []
        for indexed in self._store.owner_chunks(owner_id):
            similarity = lexical_chunk_similarity(
                indexed.chunk.content, indexed.note_title, query, keywords
            )
            if query_vector:
                similarity = max(
                    similarity,
                    self._matcher.best_similarity(query_vector, [indexed.chunk], model_id),
                )
            if similarity > CHUNK_MIN_SIMILARITY:
                scored.append(ScoredChunk(indexed.chunk, indexed.note_title, similarity))

        scored.sort(key=lambda s: (-s.similarity, s.chunk.note_id, s.chunk.index))
        logger.debug(f"Retrieved {len(scored)} relevant chunks for question, keeping {self._max_chunks}")
        return scored[: self._max_chunks]


def _section(scored: ScoredChunk) -> str:
    label = scored.note_title
    if scored.chunk.heading:
        label = f"{label} > {scored.chunk.heading}"
    return f"--- {label} ---\n{scored.chunk.content}\n\n"


class ContextAssembler:
    """Packs ranked chunks into a prompt context without exceeding a token budget."""

    def __init__(self, separator_tokens: Optional[int] = None, default_budget: Optional[int] = None) -> None:
        config = settings_or_defaults().context
        self.separator_tokens = config.separator_tokens if separator_tokens is None else separator_tokens
        self.default_budget = default_budget or config.max_context_tokens

    def cost(self, scored: ScoredChunk) -> int:
        """Tokens charged for including a chunk.

        The chunk's own estimate plus the separator overhead, or the estimate
        of the formatted section when its source label makes that larger.
        """
        return max(
            scored.chunk.token_count + self.separator_tokens,
            estimate_tokens(_section(scored)),
        )

    def assemble(self, chunks: list[ScoredChunk], budget: Optional[int] = None) -> AssembledContext:
        """Greedily include chunks in order until the next one would not fit.

        Args:
            chunks: Chunks already sorted by relevance.
            budget: Token budget; the configured default when omitted.

        Returns:
            The context. Its citations are empty both when no chunk was given
            and when the first chunk alone exceeds the budget.
        """
        budget = self.default_budget if budget is None else budget
        context = AssembledContext()
        sections: list[str] = []

        for scored in chunks:
            cost = self.cost(scored)
            if context.token_count + cost > budget:
                break
            sections.append(_section(scored))
            context.token_count += cost
            context.citations.append(
                Citation(
                    note_id=scored.chunk.note_id,
                    title=scored.note_title,
                    heading=scored.chunk.heading,
                    chunk_id=scored.chunk.id,
                    similarity=round(scored.similarity, 4),
                )
            )

        context.text = "".join(sections)
        return context
