"""Chunking service for note content."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from notewise.config import settings_or_defaults

HEADING_PATTERN = re.compile(r"^#+\s*")
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def estimate_tokens(text: str) -> int:
    """Estimate token count for text.

    Uses a simple heuristic of ~4 characters per token, rounded up so
    that any non-empty text costs at least one token.

    Args:
        text: Text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    return (len(text) + 3) // 4


@dataclass
class Chunk:
    """A retrievable passage of a note.

    Attributes:
        id: Unique identifier (e.g., "42_chunk_0").
        note_id: Owning note.
        index: Position in the note (0, 1, 2...).
        content: Chunk text, including any overlap carried from the previous chunk.
        heading: Most recent markdown heading above this chunk, if any.
        overlap_chars: Length of the leading overlap prefix in content.
        embedding: Embedding vector, empty when unavailable.
        embedding_model: Model that produced the embedding.
    """

    id: str
    note_id: int
    index: int
    content: str
    heading: str | None = None
    overlap_chars: int = 0
    embedding: list[float] = field(default_factory=list)
    embedding_model: str | None = None

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.content)


@dataclass
class _Draft:
    content: str
    heading: str | None
    overlap_chars: int


class _ChunkBuilder:
    """Accumulates paragraphs into drafts for a single note."""

    def __init__(self, max_tokens: int, overlap_words: int) -> None:
        self._max_tokens = max_tokens
        self._overlap_words = overlap_words
        self.drafts: list[_Draft] = []
        self._heading: str | None = None
        self._heading_line: str | None = None
        self._parts: list[str] = []
        self._overlap = ""

    def _text(self, parts: list[str] | None = None) -> str:
        parts = self._parts if parts is None else parts
        body = "\n\n".join(parts)
        if self._heading_line:
            body = f"{self._heading_line}\n{body}" if body else self._heading_line
        if self._overlap:
            return f"{self._overlap} {body}" if body else self._overlap
        return body

    def _emit(self, content: str) -> None:
        overlap_chars = len(self._overlap) + 1 if self._overlap else 0
        self.drafts.append(_Draft(content, self._heading, overlap_chars))

    def add_heading(self, line: str) -> None:
        self.flush()
        self._heading = HEADING_PATTERN.sub("", line).strip() or None
        self._heading_line = line

    def add_paragraph(self, paragraph: str) -> None:
        candidate = self._parts + [paragraph]
        if self._parts and estimate_tokens(self._text(candidate)) > self._max_tokens:
            self.flush()
            candidate = [paragraph]
        self._parts = candidate
        while estimate_tokens(self._text()) > self._max_tokens:
            self._split()

    def _split(self) -> None:
        """Close a chunk at the nearest sentence boundary inside the budget."""
        pieces = self._pieces("\n\n".join(self._parts))
        taken: list[str] = []
        for piece in pieces:
            if taken and estimate_tokens(self._text([" ".join(taken + [piece])])) > self._max_tokens:
                break
            taken.append(piece)

        self._emit(self._text([" ".join(taken)]))
        self._heading_line = None

        rest = pieces[len(taken):]
        if not rest:
            self._parts = []
            self._overlap = ""
            return

        words = " ".join(taken).split()
        self._overlap = " ".join(words[-self._overlap_words:]) if self._overlap_words else ""
        self._parts = [" ".join(rest)]

    def _pieces(self, text: str) -> list[str]:
        """Split text into sentences, breaking oversized sentences into word runs."""
        max_chars = self._max_tokens * 4
        pieces: list[str] = []
        for sentence in SENTENCE_BOUNDARY.split(text.strip()):
            if not sentence:
                continue
            if len(sentence) <= max_chars:
                pieces.append(sentence)
                continue
            run: list[str] = []
            run_len = 0
            for word in sentence.split():
                if run and run_len + len(word) + 1 > max_chars:
                    pieces.append(" ".join(run))
                    run, run_len = [], 0
                run.append(word)
                run_len += len(word) + 1
            if run:
                pieces.append(" ".join(run))
        return pieces

    def flush(self) -> None:
        text = self._text()
        if text.strip():
            self._emit(text)
        self._parts = []
        self._heading_line = None
        self._overlap = ""


class Chunker:
    """Splits markdown-flavoured note text into retrievable chunks.

    Paragraphs (blank-line separated) accumulate into a chunk until the
    estimated token budget would be exceeded. A heading always starts a new
    chunk and labels every chunk after it until the next heading. A paragraph
    that overflows on its own is split at sentence boundaries, carrying the
    last few words of each closed chunk into the next one.

    Output is deterministic: the same text always yields the same chunks.
    """

    def __init__(
        self,
        max_chunk_tokens: int | None = None,
        overlap_words: int | None = None,
        min_chunk_chars: int | None = None,
    ) -> None:
        """Initialize the chunker.

        Args:
            max_chunk_tokens: Estimated token budget per chunk.
            overlap_words: Words carried over when a paragraph is split.
            min_chunk_chars: Chunks with this many characters or fewer are dropped.
        """
        defaults = settings_or_defaults().chunking
        self._max_tokens = max_chunk_tokens if max_chunk_tokens is not None else defaults.max_chunk_tokens
        self._overlap_words = overlap_words if overlap_words is not None else defaults.overlap_words
        self._min_chars = min_chunk_chars if min_chunk_chars is not None else defaults.min_chunk_chars

    def chunk(self, text: str, note_id: int) -> list[Chunk]:
        """Chunk a note body.

        Args:
            text: Markdown content to chunk.
            note_id: Owning note, used to build chunk ids.

        Returns:
            Ordered list of chunks; empty for empty or trivial text.
        """
        if not text or not text.strip():
            return []

        builder = _ChunkBuilder(self._max_tokens, self._overlap_words)
        paragraph: list[str] = []

        for line in text.split("\n"):
            stripped = line.strip()
            if stripped.startswith("#"):
                if paragraph:
                    builder.add_paragraph("\n".join(paragraph))
                    paragraph = []
                builder.add_heading(stripped)
            elif not stripped:
                if paragraph:
                    builder.add_paragraph("\n".join(paragraph))
                    paragraph = []
            else:
                paragraph.append(line.rstrip())

        if paragraph:
            builder.add_paragraph("\n".join(paragraph))
        builder.flush()

        chunks: list[Chunk] = []
        for draft in builder.drafts:
            content = draft.content.strip()
            if len(content) <= self._min_chars:
                continue
            index = len(chunks)
            chunks.append(
                Chunk(
                    id=f"{note_id}_chunk_{index}",
                    note_id=note_id,
                    index=index,
                    content=content,
                    heading=draft.heading,
                    overlap_chars=draft.overlap_chars,
                )
            )
        return chunks
