"""Indexing: chunking note bodies and storing chunks with their embeddings."""

from notewise.indexing.chunking import Chunk, Chunker, estimate_tokens
from notewise.indexing.service import IndexingResult, IndexingService
from notewise.indexing.store import IndexedChunk, IndexStore, RankingRecord

__all__ = [
    "Chunk",
    "Chunker",
    "IndexedChunk",
    "IndexingResult",
    "IndexingService",
    "IndexStore",
    "RankingRecord",
    "estimate_tokens",
]
