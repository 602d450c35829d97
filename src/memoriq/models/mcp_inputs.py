"""MCP tool input models.

Each MCP tool validates its arguments by constructing one of these models,
so range checks and required fields live here as declarative constraints.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from .note import CreateNoteInput, ImageInput, UpdateNoteInput
from .validators import EntityId, Tags


class CreateNoteParams(BaseModel):
    """Validated input for the ``create_note`` MCP tool."""

    title: str = Field(min_length=1)
    content: str = ""
    tags: Tags = []
    images: list[ImageInput] = Field(default_factory=list)
    audio_uri: str | None = None

    def to_input(self) -> CreateNoteInput:
        return CreateNoteInput(**self.model_dump())


class UpdateNoteParams(CreateNoteParams):
    """Validated input for the ``update_note`` MCP tool."""

    note_id: EntityId

    def to_input(self) -> UpdateNoteInput:
        data = self.model_dump(exclude={"note_id"})
        return UpdateNoteInput(id=self.note_id, **data)


class NoteIdParams(BaseModel):
    """Validated input for tools addressing a single note."""

    note_id: EntityId


class SearchNotesParams(BaseModel):
    """Validated input for the ``search_notes`` MCP tool."""

    query: str = Field(min_length=1)


class AskMemoriesParams(BaseModel):
    """Validated input for the ``ask_memories`` MCP tool."""

    question: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=10)


class GenerateQuizParams(BaseModel):
    """Validated input for the ``generate_quiz`` MCP tool."""

    total: int | None = Field(default=None, ge=1, le=20)


class StartReminisceParams(BaseModel):
    """Validated input for the ``start_reminisce`` MCP tool."""

    count: int | None = Field(default=None, ge=1, le=20)


class CompleteReminisceParams(BaseModel):
    """Validated input for the ``complete_reminisce`` MCP tool."""

    note_ids: list[EntityId] = Field(min_length=1)
