"""Composite duplicate detection over note pairs."""

from collections.abc import Callable, Iterable
from typing import Optional

from notewise.config import DuplicatesConfig, settings_or_defaults
from notewise.constants.duplicates import SIMILARITY_PRECISION
from notewise.duplicates.schemas import (
    DuplicateResult,
    SimilarityScores,
    SimilarityType,
    SuggestedAction,
)
from notewise.duplicates.similarity import content_similarity, title_similarity
from notewise.indexing.chunking import Chunk
from notewise.notes.schemas import Note
from notewise.search.semantic import SemanticMatcher

ChunkLookup = Callable[[int], list[Chunk]]

# Equal scores resolve to the earlier entry
TYPE_PRECEDENCE = (SimilarityType.SEMANTIC, SimilarityType.CONTENT, SimilarityType.TITLE)


def pair_key(first_id: int, second_id: int) -> str:
    """Order-independent identifier of a note pair."""
    low, high = sorted((first_id, second_id))
    return f"{low}:{high}"


class DuplicateDetector:
    """Scores note pairs by title, content and semantic similarity.

    The overall similarity is the maximum of the three measures. Semantic
    similarity needs chunk embeddings, so it is only computed once a cheap
    measure has already cleared its gate.
    """

    def __init__(self, config: Optional[DuplicatesConfig] = None) -> None:
        self._config = config or settings_or_defaults().duplicates

    def suggested_action(self, similarity: float) -> SuggestedAction:
        if similarity >= self._config.merge_threshold:
            return SuggestedAction.MERGE
        if similarity >= self._config.report_threshold:
            return SuggestedAction.REVIEW
        return SuggestedAction.KEEP_SEPARATE

    def detect(
        self,
        first: Note,
        second: Note,
        threshold: Optional[float] = None,
        chunks: Optional[ChunkLookup] = None,
    ) -> Optional[DuplicateResult]:
        """Compare two notes.

        Args:
            first: One note of the pair.
            second: The other note.
            threshold: Minimum similarity to report; config default when None.
            chunks: Returns a note's chunks; semantic similarity is skipped without it.

        Returns:
            A result when the pair clears the threshold, otherwise None.
        """
        if first.id == second.id:
            return None
        threshold = self._config.default_threshold if threshold is None else threshold
        original, duplicate = (first, second) if first.id < second.id else (second, first)

        scores = {
            SimilarityType.TITLE: title_similarity(original.title, duplicate.title),
            SimilarityType.CONTENT: content_similarity(original.content, duplicate.content),
            SimilarityType.SEMANTIC: 0.0,
        }
        gated = (
            scores[SimilarityType.CONTENT] > self._config.semantic_content_gate
            or scores[SimilarityType.TITLE] > self._config.semantic_title_gate
        )
        if gated and chunks is not None:
            scores[SimilarityType.SEMANTIC] = SemanticMatcher.max_pairwise(
                chunks(original.id), chunks(duplicate.id)
            )
        scores = {kind: max(0.0, min(1.0, value)) for kind, value in scores.items()}

        best_type = max(TYPE_PRECEDENCE, key=lambda kind: scores[kind])
        similarity = scores[best_type]
        if similarity < threshold or similarity <= 0:
            return None

        return DuplicateResult(
            original_note_id=original.id,
            duplicate_note_id=duplicate.id,
            similarity=round(similarity, SIMILARITY_PRECISION),
            type=best_type,
            suggested_action=self.suggested_action(similarity),
            scores=SimilarityScores(
                title=round(scores[SimilarityType.TITLE], SIMILARITY_PRECISION),
                content=round(scores[SimilarityType.CONTENT], SIMILARITY_PRECISION),
                semantic=round(scores[SimilarityType.SEMANTIC], SIMILARITY_PRECISION),
            ),
        )

    def find(
        self,
        notes: Iterable[Note],
        candidates: Iterable[Note],
        threshold: Optional[float] = None,
        chunks: Optional[ChunkLookup] = None,
        on_note_done: Optional[Callable[[int], None]] = None,
        on_result: Optional[Callable[[DuplicateResult], None]] = None,
    ) -> list[DuplicateResult]:
        """Compare each note against every candidate, once per unordered pair.

        Args:
            notes: Notes to check.
            candidates: Notes to compare them against.
            threshold: Minimum similarity to report.
            chunks: Chunk lookup for semantic similarity.
            on_note_done: Called with the number of notes checked so far.
            on_result: Called with each match as soon as it is found.

        Returns:
            Results sorted by similarity, highest first.
        """
        candidates = list(candidates)
        seen: set[str] = set()
        results: list[DuplicateResult] = []
        for checked, note in enumerate(notes, start=1):
            for other in candidates:
                if note.id == other.id:
                    continue
                key = pair_key(note.id, other.id)
                if key in seen:
                    continue
                seen.add(key)
                result = self.detect(note, other, threshold, chunks)
                if result is not None:
                    results.append(result)
                    if on_result is not None:
                        on_result(result)
            if on_note_done is not None:
                on_note_done(checked)
        results.sort(key=lambda r: (-r.similarity, r.original_note_id, r.duplicate_note_id))
        return results
