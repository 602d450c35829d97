"""Embedding record models.

Rows of ``note_embeddings`` and ``image_embeddings``.  The vector is kept
exactly as read from the store (normally bytes, but SQLite will hand back
whatever the column holds); decoding happens where the vector is needed so a
corrupt row can be skipped without failing the whole read.
"""

import time
from dataclasses import dataclass, field

import numpy as np

from ..utils.vector_codec import decode_vector
from .validators import EmbeddingStatus


@dataclass
class TextEmbeddingRecord:
    """Embedding of a note's composed text (title, tags, content)."""

    note_id: int
    embedding: bytes
    dimension: int
    text_hash: str
    status: EmbeddingStatus = "completed"
    created_at: float = field(default_factory=time.time)

    @property
    def vector(self) -> np.ndarray:
        """Decoded vector; raises MalformedBlobError on a corrupt blob."""
        return decode_vector(self.embedding)


@dataclass
class ImageEmbeddingRecord:
    """Embedding of an image caption.

    ``note_id`` is the owning note of the image, joined in when the record is
    read for retrieval (0 when read without the join).
    """

    image_id: int
    description: str
    embedding: bytes
    dimension: int
    description_hash: str
    status: EmbeddingStatus = "completed"
    created_at: float = field(default_factory=time.time)
    note_id: int = 0

    @property
    def vector(self) -> np.ndarray:
        """Decoded vector; raises MalformedBlobError on a corrupt blob."""
        return decode_vector(self.embedding)
