"""Search history, popular queries, saved searches and suggestions."""

import json
import logging
from collections import Counter
from datetime import datetime, UTC
from typing import Optional

from notewise.db.connection import Database
from notewise.notes.service import NotesService, escape_like
from notewise.search.schemas import (
    PopularQuery,
    SavedSearch,
    SavedSearchCreate,
    SearchFilters,
    SearchHistoryEntry,
    SearchSuggestion,
)

logger = logging.getLogger(__name__)


class SavedSearchNotFoundError(LookupError):
    """Raised when a saved search is missing or owned by someone else."""

    def __init__(self, search_id: int) -> None:
        self.search_id = search_id
        super().__init__(f"Saved search not found: {search_id}")


class SearchHistoryService:
    """Per-owner log of searches and curated saved searches."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._notes = NotesService(db)

    def record(
        self,
        owner_id: str,
        query: str,
        filters: Optional[SearchFilters] = None,
        result_count: int = 0,
    ) -> None:
        """Append a search to the owner's history."""
        filters_json = filters.model_dump_json() if filters else "{}"
        self._db.execute(
            """
            INSERT INTO search_history (owner_id, query, filters, result_count, searched_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (owner_id, query, filters_json, result_count, datetime.now(UTC).isoformat()),
        )
        self._db.commit()

    def recent(self, owner_id: str, limit: int = 20) -> list[SearchHistoryEntry]:
        """Most recent searches first."""
        cursor = self._db.execute(
            """
            SELECT id, query, filters, result_count, searched_at FROM search_history
            WHERE owner_id = ? ORDER BY searched_at DESC, id DESC LIMIT ?
            """,
            (owner_id, limit),
        )
        return [
            SearchHistoryEntry(
                id=row["id"],
                query=row["query"],
                filters=json.loads(row["filters"] or "{}"),
                result_count=row["result_count"],
                searched_at=datetime.fromisoformat(row["searched_at"]),
            )
            for row in cursor.fetchall()
        ]

    def popular(self, owner_id: str, limit: int = 10) -> list[PopularQuery]:
        """Queries the owner runs most often."""
        cursor = self._db.execute(
            """
            SELECT query, COUNT(*) AS runs FROM search_history
            WHERE owner_id = ? GROUP BY query ORDER BY runs DESC, MAX(searched_at) DESC LIMIT ?
            """,
            (owner_id, limit),
        )
        return [PopularQuery(query=row["query"], count=row["runs"]) for row in cursor.fetchall()]

    def save(self, owner_id: str, data: SavedSearchCreate) -> SavedSearch:
        """Store a named search."""
        now = datetime.now(UTC)
        cursor = self._db.execute(
            """
            INSERT INTO saved_searches (owner_id, name, query, filters, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (owner_id, data.name, data.query, data.filters.model_dump_json(), now.isoformat()),
        )
        self._db.commit()
        if cursor.lastrowid is None:
            raise RuntimeError("Failed to get saved search id after insert")
        return SavedSearch(
            id=cursor.lastrowid,
            name=data.name,
            query=data.query,
            filters=data.filters,
            created_at=now,
        )

    def list_saved(self, owner_id: str) -> list[SavedSearch]:
        """Saved searches, newest first."""
        cursor = self._db.execute(
            """
            SELECT id, name, query, filters, created_at FROM saved_searches
            WHERE owner_id = ? ORDER BY created_at DESC, id DESC
            """,
            (owner_id,),
        )
        return [
            SavedSearch(
                id=row["id"],
                name=row["name"],
                query=row["query"],
                filters=SearchFilters.model_validate_json(row["filters"] or "{}"),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]

    def delete_saved(self, owner_id: str, search_id: int) -> None:
        """Delete a saved search.

        Raises:
            SavedSearchNotFoundError: If it does not exist for this owner.
        """
        cursor = self._db.execute(
            "DELETE FROM saved_searches WHERE id = ? AND owner_id = ?", (search_id, owner_id)
        )
        self._db.commit()
        if cursor.rowcount == 0:
            raise SavedSearchNotFoundError(search_id)

    def suggestions(self, owner_id: str, text: str, limit: int = 5) -> list[SearchSuggestion]:
        """Past queries containing text, topped up with the most used matching tags."""
        text = text.strip()
        if not text:
            return []

        cursor = self._db.execute(
            """
            SELECT query FROM search_history
            WHERE owner_id = ? AND lower(query) LIKE ? ESCAPE '\\'
            GROUP BY query ORDER BY MAX(searched_at) DESC LIMIT ?
            """,
            (owner_id, f"%{escape_like(text.lower())}%", limit),
        )
        suggestions = [SearchSuggestion(text=row["query"], source="history") for row in cursor.fetchall()]

        remaining = limit - len(suggestions)
        if remaining > 0:
            needle = text.lower()
            tag_counts: Counter[str] = Counter(
                tag for tags in self._notes.all_tags(owner_id) for tag in tags if needle in tag.lower()
            )
            suggestions.extend(
                SearchSuggestion(text=tag, source="tag") for tag, _ in tag_counts.most_common(remaining)
            )
        return suggestions[:limit]
