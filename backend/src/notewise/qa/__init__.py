"""Question answering over notes."""

from notewise.qa.context import AssembledContext, ChunkRetriever, ContextAssembler, ScoredChunk
from notewise.qa.schemas import ChatRequest, ChatResponse, Citation
from notewise.qa.service import ChatService

__all__ = [
    "AssembledContext",
    "ChatRequest",
    "ChatResponse",
    "ChatService",
    "ChunkRetriever",
    "Citation",
    "ContextAssembler",
    "ScoredChunk",
]
