"""Indexing service: turns note bodies into stored, embedded chunks."""

import logging
from dataclasses import dataclass
from typing import Optional

from notewise.db.connection import Database
from notewise.indexing.chunking import Chunker
from notewise.indexing.store import IndexStore
from notewise.llm.embeddings import EmbeddingSession
from notewise.notes.service import NotesService

logger = logging.getLogger(__name__)


@dataclass
class IndexingResult:
    """Outcome of (re)processing one note."""

    note_id: int
    chunk_count: int
    embedded_count: int


class IndexingService:
    """Chunks, embeds and stores notes.

    A note's chunk set is regenerated as a whole each time the note is
    processed; embedding failures leave chunks stored without vectors.
    """

    def __init__(
        self,
        db: Database,
        embeddings: EmbeddingSession,
        chunker: Optional[Chunker] = None,
    ) -> None:
        """Initialize indexing service.

        Args:
            db: Database connection.
            embeddings: Embedding session for this service's lifetime.
            chunker: Chunker to use; built from settings when omitted.
        """
        self._notes = NotesService(db)
        self._store = IndexStore(db)
        self._embeddings = embeddings
        self._chunker = chunker or Chunker()

    async def process_note(self, note_id: int, owner_id: str) -> IndexingResult:
        """Regenerate the chunk set of a note.

        Raises:
            NoteNotFoundError: If the note is missing, deleted or not owned by owner_id.
        """
        note = self._notes.get(note_id, owner_id)
        chunks = self._chunker.chunk(note.content, note.id)

        vectors = await self._embeddings.embed([chunk.content for chunk in chunks])
        model_id = self._embeddings.model_id
        embedded = 0
        for chunk, vector in zip(chunks, vectors):
            if vector:
                chunk.embedding = vector
                chunk.embedding_model = model_id
                embedded += 1

        self._store.replace_note_chunks(note.id, owner_id, chunks)
        logger.info(f"Indexed note {note.id}: {len(chunks)} chunks, {embedded} embedded")
        return IndexingResult(note_id=note.id, chunk_count=len(chunks), embedded_count=embedded)

    async def reindex_owner(self, owner_id: str, limit: int = 500) -> list[IndexingResult]:
        """Regenerate chunks for an owner's most recently updated notes."""
        results = []
        for note in self._notes.list_for_owner(owner_id, limit=limit, order_by="updated_at"):
            results.append(await self.process_note(note.id, owner_id))
        return results
