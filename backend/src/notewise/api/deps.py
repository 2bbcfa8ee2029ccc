"""FastAPI dependency injection functions."""

from functools import lru_cache
from typing import Optional

from fastapi import Header

from notewise.config import Config, load_settings
from notewise.db.connection import Database
from notewise.db.migrations import run_migrations
from notewise.indexing.service import IndexingService
from notewise.jobs.handlers import JobHandlers
from notewise.jobs.queue import JobQueue
from notewise.llm.client import LLMClient
from notewise.llm.embeddings import EmbeddingClient, EmbeddingSession
from notewise.qa.service import ChatService

DEFAULT_OWNER = "local"


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


def get_owner_id(x_owner_id: str = Header(DEFAULT_OWNER, min_length=1, max_length=200)) -> str:
    """Owner of the request's notes, from the X-Owner-Id header."""
    return x_owner_id


_db_instance: Database | None = None


def get_db() -> Database:
    """Get database connection with migrations applied."""
    global _db_instance
    if _db_instance is None:
        settings = get_settings()
        _db_instance = Database(settings.db_path)
        run_migrations(_db_instance)
    return _db_instance


_embedding_session: EmbeddingSession | None = None


def get_embeddings() -> EmbeddingSession:
    """Embedding session shared by every request until the process restarts.

    Disabled from the start when no embedding model is configured.
    """
    global _embedding_session
    if _embedding_session is None:
        settings = get_settings()
        client = None
        if settings.embeddings_enabled:
            client = EmbeddingClient(
                provider=settings.active_provider,
                model=settings.embedding_model,
                api_key=settings.llm_api_key,
                endpoint=settings.llm_endpoint,
                batch_size=settings.llm.embedding_batch_size,
            )
        _embedding_session = EmbeddingSession(client)
    return _embedding_session


def get_llm() -> LLMClient:
    """Completion client for the active provider."""
    settings = get_settings()
    return LLMClient(
        provider=settings.active_provider,
        model=settings.active_model,
        api_key=settings.llm_api_key,
        endpoint=settings.llm_endpoint,
        log_path=settings.llm_log_path,
    )


def get_fallback_llm() -> Optional[LLMClient]:
    """Completion client for the fallback provider, if one is configured."""
    settings = get_settings()
    if not settings.fallback_provider or not settings.fallback_model:
        return None
    return LLMClient(
        provider=settings.fallback_provider,
        model=settings.fallback_model,
        api_key=settings.api_key_for(settings.fallback_provider),
        endpoint=settings.endpoint_for(settings.fallback_provider),
        log_path=settings.llm_log_path,
    )


def get_indexing() -> IndexingService:
    """Indexing service bound to the shared database and embedding session."""
    return IndexingService(get_db(), get_embeddings())


_job_queue: JobQueue | None = None


def get_job_queue() -> JobQueue:
    """Job queue with every handler registered. Workers are started by the app lifespan."""
    global _job_queue
    if _job_queue is None:
        db = get_db()
        handlers = JobHandlers(db, indexing=get_indexing())
        _job_queue = JobQueue(db, handlers=handlers.table())
    return _job_queue


_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Chat service kept for the process lifetime, so a provider fallback sticks."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService(
            get_db(),
            get_llm(),
            get_embeddings(),
            fallback_llm=get_fallback_llm(),
        )
    return _chat_service


def _reset_instances() -> None:
    """Reset cached instances (for testing only)."""
    global _db_instance, _embedding_session, _job_queue, _chat_service
    if _db_instance is not None:
        _db_instance.close()
    _db_instance = None
    _embedding_session = None
    _job_queue = None
    _chat_service = None
    get_settings.cache_clear()
