"""Data models for notes, embeddings and service results."""

from .embedding import ImageEmbeddingRecord, TextEmbeddingRecord
from .note import CreateNoteInput, Image, ImageInput, Note, NoteWithDetails, Tag, UpdateNoteInput
from .responses import (
    ChatAnswer,
    Outcome,
    PipelineResult,
    Quiz,
    QuizQuestion,
    ReminisceSession,
    RetrievedImage,
    RetrievedNote,
)

__all__ = [
    "ChatAnswer",
    "CreateNoteInput",
    "Image",
    "ImageEmbeddingRecord",
    "ImageInput",
    "Note",
    "NoteWithDetails",
    "Outcome",
    "PipelineResult",
    "Quiz",
    "QuizQuestion",
    "ReminisceSession",
    "RetrievedImage",
    "RetrievedNote",
    "Tag",
    "TextEmbeddingRecord",
    "UpdateNoteInput",
]
