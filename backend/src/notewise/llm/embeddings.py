"""Embedding client and the per-session availability flag."""

import asyncio
import logging
from typing import Any, Optional

from litellm import aembedding

from notewise.llm.client import PROVIDER_ERRORS, LLMError, model_string, translate_error

logger = logging.getLogger(__name__)

# Batches awaited together at most
MAX_CONCURRENT_BATCHES = 4


def _vector(item: Any) -> list[float]:
    """Pull the vector out of one embedding response item."""
    if isinstance(item, dict):
        return list(item["embedding"])
    return list(item.embedding)


class EmbeddingClient:
    """Embeds texts through LiteLLM, in bounded concurrent batches."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None = None,
        endpoint: str | None = None,
        batch_size: int = 64,
    ):
        """Initialize embedding client.

        Args:
            provider: Provider the embedding model belongs to.
            model: Embedding model name.
            api_key: Optional API key.
            endpoint: Optional custom endpoint (for Ollama).
            batch_size: Texts sent per request.
        """
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.batch_size = max(1, batch_size)

    @property
    def model_id(self) -> str:
        """Identifier stored alongside every vector this client produces."""
        return model_string(self.provider, self.model)

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        kwargs: dict[str, Any] = {"model": self.model_id, "input": texts}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.endpoint and self.provider == "ollama":
            kwargs["api_base"] = self.endpoint
        try:
            response = await aembedding(**kwargs)
        except PROVIDER_ERRORS as e:
            raise translate_error(e) from e
        vectors = [_vector(item) for item in response.data]
        if len(vectors) != len(texts):
            raise LLMError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, preserving input order.

        Raises:
            LLMError: If any batch fails.
        """
        if not texts:
            return []
        batches = [texts[i : i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        vectors: list[list[float]] = []
        for start in range(0, len(batches), MAX_CONCURRENT_BATCHES):
            group = batches[start : start + MAX_CONCURRENT_BATCHES]
            results = await asyncio.gather(*(self._embed_batch(batch) for batch in group))
            for batch_vectors in results:
                vectors.extend(batch_vectors)
        return vectors


class EmbeddingSession:
    """Session-scoped view of the embedding provider.

    The first provider failure turns embeddings off for the rest of the
    session; after that every call returns empty vectors without touching
    the provider. Callers treat empty vectors as "no semantic signal".
    """

    def __init__(self, client: Optional[EmbeddingClient] = None) -> None:
        self._client = client
        self._disabled_reason: Optional[str] = None if client else "No embedding model configured"

    @property
    def available(self) -> bool:
        return self._client is not None and self._disabled_reason is None

    @property
    def disabled_reason(self) -> Optional[str]:
        return self._disabled_reason

    @property
    def model_id(self) -> Optional[str]:
        """Model id of produced vectors, None when embeddings are off."""
        return self._client.model_id if self._client else None

    def disable(self, reason: str) -> None:
        if self._disabled_reason is None:
            logger.warning(f"Embeddings disabled for this session: {reason}")
            self._disabled_reason = reason

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, returning one (possibly empty) vector per text."""
        if not texts or not self.available or self._client is None:
            return [[] for _ in texts]
        try:
            return await self._client.embed(texts)
        except LLMError as e:
            self.disable(str(e))
            return [[] for _ in texts]

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        if not text.strip():
            return []
        vectors = await self.embed([text])
        return vectors[0] if vectors else []
