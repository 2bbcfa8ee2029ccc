"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

# Logging constants defined here (not in constants/) because logging.basicConfig()
# must run before any module imports that might create loggers.
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=logging.INFO,
)

# Unify uvicorn loggers with app format
for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(uvicorn_logger_name)
    uvicorn_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    uvicorn_logger.addHandler(handler)

from notewise.api.deps import get_db, get_embeddings, get_job_queue, get_settings  # noqa: E402
from notewise.api.routers import chat, duplicates, jobs, notes, search  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler for startup and shutdown events.

    On startup:
    - Opens the database and applies migrations
    - Starts the job worker pool, requeueing jobs interrupted by the last shutdown

    On shutdown:
    - Stops the job workers
    """
    settings = get_settings()
    logger.info(f"Data directory: {settings.data_dir}")
    get_db()

    embeddings = get_embeddings()
    if not embeddings.available:
        logger.warning(f"Semantic search disabled: {embeddings.disabled_reason}")
    logger.info(f"Completion provider: {settings.active_provider}/{settings.active_model}")

    queue = get_job_queue()
    queue.start()
    logger.info("notewise started")

    yield

    await queue.stop()


app = FastAPI(
    title="notewise",
    description="Search, question answering and duplicate detection for personal notes",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(notes.router)
app.include_router(search.router)
app.include_router(duplicates.router)
app.include_router(jobs.router)
app.include_router(chat.router)


def run() -> None:
    """Serve the app with uvicorn (the ``notewise`` console script)."""
    uvicorn.run(
        "notewise.main:app",
        host=os.getenv("NOTEWISE_HOST", "127.0.0.1"),
        port=int(os.getenv("NOTEWISE_PORT", "8000")),
    )
