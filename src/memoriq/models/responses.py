"""Service-layer result models.

Background pipelines never raise to their callers; they report what
happened through :class:`Outcome` values instead, so failure paths can be
asserted on without inspecting the store.  Interactive services (chat,
quiz, reminisce) return the typed Pydantic models below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from .note import NoteWithDetails
from .validators import AnswerOption, MatchType

# ---------------------------------------------------------------------------
# Pipeline outcomes
# ---------------------------------------------------------------------------

OutcomeStatus = Literal["completed", "unchanged", "skipped", "failed", "not_found", "not_ready"]
OutcomeKind = Literal["text_embedding", "image_embedding", "recall_script", "mark_shown"]


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of one unit of background work on one entity."""

    kind: OutcomeKind
    entity_id: int
    status: OutcomeStatus
    detail: str | None = None

    @property
    def ok(self) -> bool:
        """True unless the work was attempted and failed."""
        return self.status != "failed"


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Aggregate of a fan-out over one note (text task plus image tasks)."""

    note_id: int
    status: Literal["processed", "not_found", "not_ready"]
    outcomes: tuple[Outcome, ...] = field(default_factory=tuple)

    @property
    def failures(self) -> list[Outcome]:
        return [o for o in self.outcomes if o.status == "failed"]


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class RetrievedImage(BaseModel):
    """Image reference returned with a retrieved note."""

    uri: str
    description: str = ""


class RetrievedNote(BaseModel):
    """A note selected by similarity search, hydrated for prompting."""

    note_id: int
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    images: list[RetrievedImage] = Field(default_factory=list)
    audio_uri: str | None = None
    similarity_score: float
    match_type: MatchType


# ---------------------------------------------------------------------------
# Chat / quiz / reminisce
# ---------------------------------------------------------------------------


class ChatAnswer(BaseModel):
    """Answer to a memory question with the notes it was grounded on."""

    text: str
    notes: list[RetrievedNote] = Field(default_factory=list)


class QuizQuestion(BaseModel):
    """A two-option multiple-choice question about one note."""

    note_id: int | None = None
    question: str = Field(min_length=1)
    option_a: str = Field(min_length=1)
    option_b: str = Field(min_length=1)
    correct: AnswerOption


class Quiz(BaseModel):
    """Questions generated for one quiz run."""

    questions: list[QuizQuestion] = Field(default_factory=list)
    requested: int = 0
    message: str | None = None


class ReminisceSession(BaseModel):
    """Notes chosen for a spoken reminiscence session."""

    notes: list[NoteWithDetails] = Field(default_factory=list)
    message: str | None = None

    @property
    def scripts(self) -> list[str]:
        return [note.recall_script for note in self.notes if note.recall_script]
