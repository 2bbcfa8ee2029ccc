"""Database migrations and schema management for notewise."""

from notewise.db.connection import Database

# Schema version for tracking migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Notes owned by a user; soft-deleted on merge
CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    tags TEXT NOT NULL DEFAULT '[]',  -- JSON array, unique values
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER NOT NULL DEFAULT 0
);

-- Retrievable passages derived from a note body
-- A note's chunk set is always replaced as a whole
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,  -- '{note_id}_chunk_{index}'
    note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    owner_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    heading TEXT,
    content TEXT NOT NULL,
    embedding TEXT NOT NULL DEFAULT '[]',  -- JSON float array, empty when unavailable
    embedding_model TEXT,  -- Model that produced the embedding
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Feedback signal: last score a note earned for a query
CREATE TABLE IF NOT EXISTS search_rankings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    query TEXT NOT NULL,
    score REAL NOT NULL,
    factors TEXT NOT NULL DEFAULT '{}',  -- JSON: position, reasons, timestamp
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(note_id, query)
);

-- Duplicate reports, one per unordered note pair
CREATE TABLE IF NOT EXISTS duplicate_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    original_note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    duplicate_note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    pair_key TEXT NOT NULL UNIQUE,  -- '{min_id}:{max_id}'
    similarity REAL NOT NULL,
    type TEXT NOT NULL,  -- 'title', 'content', 'semantic'
    status TEXT NOT NULL DEFAULT 'pending',  -- 'pending', 'confirmed', 'dismissed', 'merged'
    created_at TEXT NOT NULL,
    resolved_at TEXT
);

-- Durable background job queue
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON, tagged by kind
    status TEXT NOT NULL DEFAULT 'pending',  -- 'pending', 'running', 'completed', 'failed'
    priority INTEGER NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 1,
    backoff_seconds REAL NOT NULL DEFAULT 0,
    run_at TEXT NOT NULL,  -- Earliest time the job may start
    progress INTEGER NOT NULL DEFAULT 0,
    result TEXT,  -- JSON
    error_message TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);

-- Append-only search log
CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    query TEXT NOT NULL,
    filters TEXT NOT NULL DEFAULT '{}',
    result_count INTEGER NOT NULL DEFAULT 0,
    searched_at TEXT NOT NULL
);

-- User-curated searches
CREATE TABLE IF NOT EXISTS saved_searches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    query TEXT NOT NULL,
    filters TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_notes_owner ON notes(owner_id, is_deleted);
CREATE INDEX IF NOT EXISTS idx_chunks_note ON chunks(note_id);
CREATE INDEX IF NOT EXISTS idx_chunks_owner ON chunks(owner_id);
CREATE INDEX IF NOT EXISTS idx_rankings_query ON search_rankings(query);
CREATE INDEX IF NOT EXISTS idx_reports_owner_status ON duplicate_reports(owner_id, status);
CREATE INDEX IF NOT EXISTS idx_jobs_status_run_at ON jobs(status, run_at);
CREATE INDEX IF NOT EXISTS idx_history_owner ON search_history(owner_id, searched_at);
"""


def run_migrations(db: Database) -> None:
    """Run database migrations to set up or upgrade schema.

    Args:
        db: Database connection to run migrations on.
    """
    try:
        result = db.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        ).fetchone()
        current_version = result[0] if result else 0
    except Exception:
        # Table doesn't exist yet
        current_version = 0

    if current_version < SCHEMA_VERSION:
        # executescript auto-commits, so the version insert is handled separately
        db.executescript(SCHEMA_SQL)

        db.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        db.commit()
