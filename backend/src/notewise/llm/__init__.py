# backend/src/notewise/llm/__init__.py
"""LLM client abstraction."""

from notewise.llm.client import (
    LLMAuthenticationError,
    LLMClient,
    LLMConnectionError,
    LLMError,
    LLMQuotaExceededError,
    LLMRateLimitError,
)
from notewise.llm.embeddings import EmbeddingClient, EmbeddingSession

__all__ = [
    "EmbeddingClient",
    "EmbeddingSession",
    "LLMAuthenticationError",
    "LLMClient",
    "LLMConnectionError",
    "LLMError",
    "LLMQuotaExceededError",
    "LLMRateLimitError",
]
