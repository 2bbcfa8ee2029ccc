"""Note schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _unique_tags(tags: list[str]) -> list[str]:
    """Drop blank and repeated tags, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


class NoteCreate(BaseModel):
    """Request to create a new note."""

    title: str = Field(..., min_length=1, description="Note title")
    content: str = Field("", description="Markdown body")
    tags: list[str] = Field(default_factory=list, description="Tag set")

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: list[str]) -> list[str]:
        return _unique_tags(value)


class NoteUpdate(BaseModel):
    """Partial update of a note."""

    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = None
    tags: Optional[list[str]] = None

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _unique_tags(value) if value is not None else None


class Note(BaseModel):
    """A stored note."""

    model_config = {"from_attributes": True}

    id: int = Field(..., description="Database ID")
    owner_id: str = Field(..., description="Owning user")
    title: str = Field(..., description="Note title")
    content: str = Field("", description="Markdown body")
    tags: list[str] = Field(default_factory=list, description="Tag set")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    is_deleted: bool = Field(False, description="Soft-delete flag")

    @property
    def word_count(self) -> int:
        """Number of whitespace-separated words in the body."""
        return len(self.content.split())
