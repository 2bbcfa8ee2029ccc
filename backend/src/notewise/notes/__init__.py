"""Notes module: the note records everything else is derived from."""

from notewise.notes.schemas import Note, NoteCreate, NoteUpdate
from notewise.notes.service import NoteNotFoundError, NotesService

__all__ = ["Note", "NoteCreate", "NoteUpdate", "NoteNotFoundError", "NotesService"]
