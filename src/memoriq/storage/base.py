# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Abstract storage interface for the journal.

The store owns notes, tags, images and the two embedding tables.  Deleting
a note cascades to its tag links, images and embeddings; deleting an image
cascades to its embedding.  Create/update are transactional: either the
whole note state is written or nothing is.
"""

from abc import ABC, abstractmethod

from ..models.embedding import ImageEmbeddingRecord, TextEmbeddingRecord
from ..models.note import CreateNoteInput, NoteWithDetails, UpdateNoteInput


class StorageError(Exception):
    """A store read or write failed."""


class NoteNotFoundError(StorageError):
    """The referenced note does not exist."""

    def __init__(self, note_id: int):
        super().__init__(f"Note {note_id} not found")
        self.note_id = note_id


class NoteStorage(ABC):
    """Persistence for notes and their embeddings."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open the store and create the schema if needed."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""

    # -- notes ---------------------------------------------------------------

    @abstractmethod
    async def create_note(self, data: CreateNoteInput) -> int:
        """Insert a note with its tags and images; returns the new note id."""

    @abstractmethod
    async def update_note(self, data: UpdateNoteInput) -> None:
        """Replace a note's fields, tags and images.

        Raises:
            NoteNotFoundError: If ``data.id`` does not exist.
        """

    @abstractmethod
    async def delete_note(self, note_id: int) -> bool:
        """Delete a note (cascading); returns False if it did not exist."""

    @abstractmethod
    async def get_note(self, note_id: int) -> NoteWithDetails | None:
        """Load one note with its tags and images."""

    @abstractmethod
    async def get_all_notes(self) -> list[NoteWithDetails]:
        """Load every note, newest first."""

    @abstractmethod
    async def search_notes(self, query: str) -> list[NoteWithDetails]:
        """Substring search over title, content and tag names, newest first."""

    @abstractmethod
    async def update_recall_script(self, note_id: int, script: str) -> bool:
        """Store a generated recall script; returns False if the note is gone."""

    @abstractmethod
    async def mark_note_shown(self, note_id: int, shown_at: float) -> bool:
        """Record when a note was last shown in a reminiscence session."""

    # -- embeddings ----------------------------------------------------------

    @abstractmethod
    async def get_text_embedding(self, note_id: int) -> TextEmbeddingRecord | None:
        """Load the text embedding record of a note, whatever its status."""

    @abstractmethod
    async def upsert_text_embedding(self, record: TextEmbeddingRecord) -> None:
        """Insert or overwrite the text embedding of ``record.note_id``."""

    @abstractmethod
    async def mark_text_embedding_failed(self, note_id: int) -> bool:
        """Set ``status='failed'`` on an existing record, leaving vector and hash."""

    @abstractmethod
    async def get_image_embedding(self, image_id: int) -> ImageEmbeddingRecord | None:
        """Load the embedding record of an image caption."""

    @abstractmethod
    async def upsert_image_embedding(self, record: ImageEmbeddingRecord) -> None:
        """Insert or overwrite the embedding of ``record.image_id``."""

    @abstractmethod
    async def mark_image_embedding_failed(self, image_id: int) -> bool:
        """Set ``status='failed'`` on an existing image record."""

    @abstractmethod
    async def get_completed_text_embeddings(self) -> list[TextEmbeddingRecord]:
        """All text embeddings with ``status='completed'``."""

    @abstractmethod
    async def get_completed_image_embeddings(self) -> list[ImageEmbeddingRecord]:
        """All image embeddings with ``status='completed'``, with their owning note id."""
