"""Database layer for notewise."""

from notewise.db.connection import Database
from notewise.db.migrations import run_migrations

__all__ = ["Database", "run_migrations"]
