"""Note-related data models.

Pydantic v2 models for notes, tags and images as they come out of the
store, plus the input shapes accepted by create/update.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

from .validators import EntityId, Tags


class Tag(BaseModel):
    """A unique tag name, shared between notes."""

    model_config = ConfigDict(frozen=True)

    id: EntityId
    name: str = Field(min_length=1)


class Image(BaseModel):
    """An image attached to a note with its user-authored caption."""

    id: EntityId
    note_id: EntityId
    uri: str
    description: str = ""


class Note(BaseModel):
    """A journal note as stored (without its relations)."""

    id: EntityId
    title: str
    content: str
    audio_uri: str | None = None
    recall_script: str | None = None
    last_shown_at: float | None = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class NoteWithDetails(Note):
    """A note together with its tags and images."""

    tags: list[Tag] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]

    @property
    def has_images(self) -> bool:
        return len(self.images) > 0

    @property
    def has_recall_script(self) -> bool:
        return bool(self.recall_script)


class ImageInput(BaseModel):
    """An image to attach when creating or updating a note."""

    uri: str = Field(min_length=1)
    description: str = ""


class CreateNoteInput(BaseModel):
    """Fields accepted when creating a note."""

    title: str
    content: str
    tags: Tags = []
    images: list[ImageInput] = Field(default_factory=list)
    audio_uri: str | None = None


class UpdateNoteInput(CreateNoteInput):
    """Fields accepted when updating a note; the full state replaces the old one."""

    id: EntityId
