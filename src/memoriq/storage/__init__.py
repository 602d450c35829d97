"""Note and embedding persistence."""

from .base import NoteNotFoundError, NoteStorage, StorageError
from .factory import create_storage_instance
from .sqlite_storage import SQLiteNoteStorage

__all__ = [
    "NoteNotFoundError",
    "NoteStorage",
    "SQLiteNoteStorage",
    "StorageError",
    "create_storage_instance",
]
