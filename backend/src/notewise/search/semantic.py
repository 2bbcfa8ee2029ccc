"""Embedding-space similarity between queries, chunks and notes."""

import math
from collections.abc import Iterable, Sequence
from typing import Optional

from notewise.config import settings_or_defaults
from notewise.indexing.chunking import Chunk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for empty vectors, vectors of different lengths, and
    zero-norm vectors instead of raising or producing NaN.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    denominator = norm_a * norm_b
    if denominator == 0:
        return 0.0
    return dot / denominator


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class SemanticMatcher:
    """Scores notes by their best-matching chunk embedding.

    Vectors are only compared when they come from the same embedding model;
    anything else (missing vectors, another model, a different length)
    contributes nothing rather than failing.
    """

    def __init__(self, weight: Optional[float] = None) -> None:
        """Initialize matcher.

        Args:
            weight: Points per unit of similarity folded into a note score.
        """
        self.weight = weight if weight is not None else settings_or_defaults().search.semantic_weight

    def best_similarity(
        self,
        query_vector: Sequence[float],
        chunks: Iterable[Chunk],
        model_id: Optional[str],
    ) -> float:
        """Highest query/chunk similarity in [0, 1] across the given chunks."""
        if not query_vector or model_id is None:
            return 0.0
        best = 0.0
        for chunk in chunks:
            if not chunk.embedding or chunk.embedding_model != model_id:
                continue
            best = max(best, cosine_similarity(query_vector, chunk.embedding))
        return _clamp(best)

    def note_similarities(
        self,
        query_vector: Sequence[float],
        chunks: Iterable[Chunk],
        model_id: Optional[str],
    ) -> dict[int, float]:
        """Best similarity per note for chunks spanning many notes.

        Notes with no comparable chunk are absent from the result.
        """
        by_note: dict[int, list[Chunk]] = {}
        for chunk in chunks:
            by_note.setdefault(chunk.note_id, []).append(chunk)

        similarities: dict[int, float] = {}
        for note_id, note_chunks in by_note.items():
            similarity = self.best_similarity(query_vector, note_chunks, model_id)
            if similarity > 0:
                similarities[note_id] = similarity
        return similarities

    def contribution(self, similarity: float) -> float:
        """Score points for a similarity; 0 when there is no semantic signal."""
        return _clamp(similarity) * self.weight

    @staticmethod
    def max_pairwise(chunks_a: Iterable[Chunk], chunks_b: Iterable[Chunk]) -> float:
        """Highest similarity between any chunk of one note and any of another."""
        embedded_b = [chunk for chunk in chunks_b if chunk.embedding]
        best = 0.0
        for a in chunks_a:
            if not a.embedding:
                continue
            for b in embedded_b:
                if a.embedding_model != b.embedding_model:
                    continue
                best = max(best, cosine_similarity(a.embedding, b.embedding))
        return _clamp(best)
