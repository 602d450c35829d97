"""
Similarity Retrieval Engine.

Finds the notes most related to a query vector across both text and image
caption embeddings, keeping only the best match per note:

1. Score every completed text and image embedding (cosine similarity).
   Corrupt blobs, foreign dimensions and zero norms are skipped per row.
2. Best score per note, tagged with where it came from (text or image).
3. Absolute floor: drop notes below ``similarity_threshold``.
4. Relative floor: keep the top note, and others only within
   ``relative_threshold`` of it.
5. Truncate to ``top_k`` and hydrate each survivor concurrently.

Retrieval must never break a chat turn: any unexpected failure (including
the overall timeout) is logged and yields an empty list.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence

import numpy as np

from ..config import RetrievalSettings
from ..models.embedding import ImageEmbeddingRecord, TextEmbeddingRecord
from ..models.responses import RetrievedImage, RetrievedNote
from ..models.validators import MatchType
from ..storage.base import NoteStorage
from ..utils.similarity import cosine_similarity, vector_norm
from ..utils.vector_codec import MalformedBlobError

logger = logging.getLogger(__name__)


class SimilarityRetrievalEngine:
    """Ranks notes against a query embedding."""

    def __init__(self, storage: NoteStorage, settings: RetrievalSettings | None = None):
        self.storage = storage
        self.settings = settings or RetrievalSettings()

    async def retrieve(self, query_vector: Sequence[float] | np.ndarray, top_k: int | None = None) -> list[RetrievedNote]:
        """
        Retrieve the notes most similar to ``query_vector``.

        Args:
            query_vector: Embedding of the query
            top_k: Maximum notes to return (defaults to settings.top_k)

        Returns:
            Hydrated notes, best first; empty on any failure
        """
        try:
            return await asyncio.wait_for(
                self._retrieve(query_vector, self.settings.top_k if top_k is None else top_k),
                timeout=self.settings.timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Retrieval timed out after {self.settings.timeout_ms}ms")
            return []
        except Exception:
            logger.exception("Retrieval failed")
            return []

    async def _retrieve(self, query_vector: Sequence[float] | np.ndarray, top_k: int) -> list[RetrievedNote]:
        query = np.asarray(query_vector, dtype=np.float32)
        if query.ndim != 1:
            logger.warning(f"Query vector must be one-dimensional, got shape {query.shape}")
            return []
        query_norm = vector_norm(query)
        if query_norm is None:
            logger.debug("Query vector has no usable norm")
            return []

        text_rows, image_rows = await asyncio.gather(
            self.storage.get_completed_text_embeddings(),
            self.storage.get_completed_image_embeddings(),
        )

        best = self._best_per_note(query, query_norm, text_rows, image_rows)
        ranked = self.rank_candidates(best, self.settings.similarity_threshold, self.settings.relative_threshold)
        ranked = ranked[:top_k]
        if not ranked:
            return []

        hydrated = await asyncio.gather(
            *(self._hydrate(note_id, score, match_type) for note_id, score, match_type in ranked)
        )
        return [note for note in hydrated if note is not None]

    def _best_per_note(
        self,
        query: np.ndarray,
        query_norm: float,
        text_rows: Iterable[TextEmbeddingRecord],
        image_rows: Iterable[ImageEmbeddingRecord],
    ) -> dict[int, tuple[float, MatchType]]:
        best: dict[int, tuple[float, MatchType]] = {}

        def consider(note_id: int, score: float | None, match_type: MatchType) -> None:
            if score is None:
                return
            current = best.get(note_id)
            if current is None or score > current[0]:
                best[note_id] = (score, match_type)

        for row in text_rows:
            consider(row.note_id, self._score(row, query, query_norm), "text")
        for row in image_rows:
            consider(row.note_id, self._score(row, query, query_norm), "image")
        return best

    @staticmethod
    def _score(
        row: TextEmbeddingRecord | ImageEmbeddingRecord,
        query: np.ndarray,
        query_norm: float,
    ) -> float | None:
        try:
            vector = row.vector
        except MalformedBlobError as e:
            logger.debug(f"Skipping malformed embedding row: {e}")
            return None
        if vector.shape != query.shape:
            return None
        return cosine_similarity(query, vector, a_norm=query_norm)

    @staticmethod
    def rank_candidates(
        best: dict[int, tuple[float, MatchType]],
        similarity_threshold: float,
        relative_threshold: float,
    ) -> list[tuple[int, float, MatchType]]:
        """Apply the absolute and relative floors; returns (note_id, score, match_type) best first."""
        candidates = sorted(
            ((note_id, score, match_type) for note_id, (score, match_type) in best.items() if score >= similarity_threshold),
            key=lambda c: (-c[1], c[0]),
        )
        if not candidates:
            return []
        top_score = candidates[0][1]
        return [candidates[0]] + [c for c in candidates[1:] if c[1] >= relative_threshold * top_score]

    async def _hydrate(self, note_id: int, score: float, match_type: MatchType) -> RetrievedNote | None:
        try:
            note = await self.storage.get_note(note_id)
        except Exception as e:
            logger.warning(f"Could not load retrieved note {note_id}: {e}")
            return None
        if note is None:
            # deleted between scoring and hydration
            return None
        return RetrievedNote(
            note_id=note.id,
            title=note.title,
            content=note.content,
            tags=note.tag_names,
            images=[RetrievedImage(uri=img.uri, description=img.description) for img in note.images],
            audio_uri=note.audio_uri,
            similarity_score=score,
            match_type=match_type,
        )
