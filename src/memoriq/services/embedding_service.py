"""
Embedding Generator - turns notes and image captions into stored vectors.

Every generation is guarded by a SHA-256 fingerprint of the exact text that
would be embedded: when the stored fingerprint matches, no inference call
and no store write happen.  A failed generation never discards a previous
good vector; it only flips the existing record to ``failed`` (or writes
nothing when there is no record yet).  Failed records are regenerated the
next time the text changes, never on a timer.
"""

import asyncio
import logging

import numpy as np

from ..config import EmbeddingSettings
from ..inference.base import ModelNotReadyError
from ..inference.model_service import ModelService
from ..models.embedding import ImageEmbeddingRecord, TextEmbeddingRecord
from ..models.note import NoteWithDetails
from ..models.responses import Outcome, PipelineResult
from ..storage.base import NoteStorage
from ..utils.hashing import compose_note_text, generate_content_hash
from ..utils.vector_codec import encode_vector

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """Generates note-text and image-caption embeddings with change detection."""

    def __init__(
        self,
        storage: NoteStorage,
        models: ModelService,
        settings: EmbeddingSettings | None = None,
        dimension: int | None = None,
    ):
        """
        Args:
            storage: Note store
            models: Model service providing the embedding context
            settings: Pipeline settings
            dimension: Expected vector size; a vector of any other size is a
                failed generation (None accepts any size)
        """
        self.storage = storage
        self.models = models
        self.settings = settings or EmbeddingSettings()
        self.dimension = dimension

    def _vector_problem(self, vector: list[float]) -> str | None:
        if not vector:
            return "empty embedding"
        if self.dimension is not None and len(vector) != self.dimension:
            return f"expected {self.dimension} dimensions, got {len(vector)}"
        return None

    # =========================================================================
    # Note text
    # =========================================================================

    async def generate_note_text_embedding(self, note_id: int, note: NoteWithDetails | None = None) -> Outcome:
        """
        Embed the composed text (tags, title, content) of a note.

        Args:
            note_id: Note to embed
            note: Already-loaded note, to skip a second read

        Returns:
            Outcome with status completed, unchanged, failed, not_found or not_ready
        """
        if not self.models.is_embedding_ready():
            return Outcome("text_embedding", note_id, "not_ready")

        if note is None:
            note = await self.storage.get_note(note_id)
        if note is None:
            return Outcome("text_embedding", note_id, "not_found")

        text = compose_note_text(note.title, note.content, note.tag_names)
        text_hash = generate_content_hash(text)

        existing = await self.storage.get_text_embedding(note_id)
        if existing is not None and existing.text_hash == text_hash:
            logger.debug(f"Text embedding for note {note_id} is up to date")
            return Outcome("text_embedding", note_id, "unchanged")

        try:
            vector = await self.models.embed(text, kind="document")
        except ModelNotReadyError:
            return Outcome("text_embedding", note_id, "not_ready")
        except Exception as e:
            logger.warning(f"Text embedding for note {note_id} failed: {e}")
            return await self._text_failed(note_id, existing is not None, str(e))

        problem = self._vector_problem(vector)
        if problem:
            logger.warning(f"Text embedding for note {note_id} rejected: {problem}")
            return await self._text_failed(note_id, existing is not None, problem)

        await self.storage.upsert_text_embedding(
            TextEmbeddingRecord(
                note_id=note_id,
                embedding=encode_vector(vector),
                dimension=len(vector),
                text_hash=text_hash,
            )
        )
        logger.debug(f"Stored text embedding for note {note_id} ({len(vector)} dims)")
        return Outcome("text_embedding", note_id, "completed")

    async def _text_failed(self, note_id: int, has_record: bool, detail: str) -> Outcome:
        if has_record:
            await self.storage.mark_text_embedding_failed(note_id)
        return Outcome("text_embedding", note_id, "failed", detail)

    # =========================================================================
    # Image captions
    # =========================================================================

    async def generate_image_embedding(self, image_id: int, caption: str | None) -> Outcome:
        """Embed the trimmed caption of an image; blank captions are skipped."""
        caption = (caption or "").strip()
        if not caption:
            return Outcome("image_embedding", image_id, "skipped")

        if not self.models.is_embedding_ready():
            return Outcome("image_embedding", image_id, "not_ready")

        description_hash = generate_content_hash(caption)
        existing = await self.storage.get_image_embedding(image_id)
        if existing is not None and existing.description_hash == description_hash:
            logger.debug(f"Image embedding for image {image_id} is up to date")
            return Outcome("image_embedding", image_id, "unchanged")

        try:
            vector = await self.models.embed(caption, kind="document")
        except ModelNotReadyError:
            return Outcome("image_embedding", image_id, "not_ready")
        except Exception as e:
            logger.warning(f"Image embedding for image {image_id} failed: {e}")
            return await self._image_failed(image_id, existing is not None, str(e))

        problem = self._vector_problem(vector)
        if problem:
            logger.warning(f"Image embedding for image {image_id} rejected: {problem}")
            return await self._image_failed(image_id, existing is not None, problem)

        await self.storage.upsert_image_embedding(
            ImageEmbeddingRecord(
                image_id=image_id,
                description=caption,
                embedding=encode_vector(vector),
                dimension=len(vector),
                description_hash=description_hash,
            )
        )
        logger.debug(f"Stored image embedding for image {image_id}")
        return Outcome("image_embedding", image_id, "completed")

    async def _image_failed(self, image_id: int, has_record: bool, detail: str) -> Outcome:
        if has_record:
            await self.storage.mark_image_embedding_failed(image_id)
        return Outcome("image_embedding", image_id, "failed", detail)

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def process_note_embeddings(self, note_id: int) -> PipelineResult:
        """
        Regenerate every embedding of a note: its text plus one per image.

        The tasks run concurrently and each one is isolated; a failing image
        never prevents the text (or another image) from being stored.  Never
        raises.
        """
        if not self.models.is_embedding_ready():
            logger.debug(f"Embedding model not ready, skipping note {note_id}")
            return PipelineResult(note_id, "not_ready")

        try:
            note = await self.storage.get_note(note_id)
        except Exception as e:
            logger.warning(f"Could not load note {note_id} for embedding: {e}")
            return PipelineResult(note_id, "processed", (Outcome("text_embedding", note_id, "failed", str(e)),))

        if note is None:
            return PipelineResult(note_id, "not_found")

        kinds_and_ids = [("text_embedding", note_id)] + [("image_embedding", img.id) for img in note.images]
        results = await asyncio.gather(
            self.generate_note_text_embedding(note_id, note),
            *(self.generate_image_embedding(img.id, img.description) for img in note.images),
            return_exceptions=True,
        )

        outcomes: list[Outcome] = []
        for (kind, entity_id), result in zip(kinds_and_ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"{kind} for {entity_id} (note {note_id}) raised: {result}")
                outcomes.append(Outcome(kind, entity_id, "failed", str(result)))
            else:
                outcomes.append(result)

        return PipelineResult(note_id, "processed", tuple(outcomes))

    # =========================================================================
    # Queries
    # =========================================================================

    async def generate_query_embedding(self, text: str) -> np.ndarray | None:
        """Embed a search query; None when unavailable, empty or on error."""
        text = (text or "").strip()
        if not text or not self.models.is_embedding_ready():
            return None
        try:
            vector = await self.models.embed(text, kind="query")
        except Exception as e:
            logger.warning(f"Query embedding failed: {e}")
            return None
        problem = self._vector_problem(vector)
        if problem:
            logger.warning(f"Query embedding rejected: {problem}")
            return None
        return np.asarray(vector, dtype=np.float32)
