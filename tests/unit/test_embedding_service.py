"""
Unit tests for EmbeddingGenerator.

Runs against a real SQLite store with an in-process fake embedder so the
stored records (hash, status, blob) can be asserted directly.
"""

from unittest.mock import AsyncMock

import numpy as np
import pytest

from conftest import FakeEmbedder
from memoriq.inference.model_service import ModelService
from memoriq.models.note import CreateNoteInput, ImageInput, NoteWithDetails, UpdateNoteInput
from memoriq.services.embedding_service import EmbeddingGenerator
from memoriq.storage.base import NoteStorage
from memoriq.utils.hashing import compose_note_text, generate_content_hash
from memoriq.utils.vector_codec import decode_vector


async def _create(storage, title="Lake trip", content="I swam in the lake.", tags=("summer",), images=()):
    return await storage.create_note(CreateNoteInput(title=title, content=content, tags=list(tags), images=list(images)))


async def _edit(storage, note_id, **changes):
    note = await storage.get_note(note_id)
    data = {
        "id": note_id,
        "title": note.title,
        "content": note.content,
        "tags": note.tag_names,
        "images": [ImageInput(uri=i.uri, description=i.description) for i in note.images],
    }
    data.update(changes)
    await storage.update_note(UpdateNoteInput(**data))


@pytest.fixture
def generator(storage, models):
    return EmbeddingGenerator(storage, models)


# =============================================================================
# Note text embeddings
# =============================================================================


class TestNoteTextEmbedding:
    @pytest.mark.asyncio
    async def test_stores_completed_record(self, generator, storage, fake_embedder):
        note_id = await _create(storage)

        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "completed"
        record = await storage.get_text_embedding(note_id)
        assert record.status == "completed"
        assert record.dimension == 4
        assert record.text_hash == generate_content_hash(
            compose_note_text("Lake trip", "I swam in the lake.", ["summer"])
        )
        np.testing.assert_array_equal(decode_vector(record.embedding), [1.0, 0.0, 0.0, 0.0])
        assert fake_embedder.calls[0] == ("Tags: summer\n\nLake trip\n\nI swam in the lake.", "document")

    @pytest.mark.asyncio
    async def test_unchanged_text_skips_inference_and_write(self, generator, storage, fake_embedder):
        note_id = await _create(storage)
        await generator.generate_note_text_embedding(note_id)
        first = await storage.get_text_embedding(note_id)

        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "unchanged"
        assert len(fake_embedder.calls) == 1
        second = await storage.get_text_embedding(note_id)
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_changed_text_regenerates(self, generator, storage, fake_embedder):
        note_id = await _create(storage)
        await generator.generate_note_text_embedding(note_id)
        old_hash = (await storage.get_text_embedding(note_id)).text_hash

        await _edit(storage, note_id, content="I swam across the lake.")
        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "completed"
        assert len(fake_embedder.calls) == 2
        assert (await storage.get_text_embedding(note_id)).text_hash != old_hash

    @pytest.mark.asyncio
    async def test_tag_change_regenerates(self, generator, storage):
        note_id = await _create(storage)
        await generator.generate_note_text_embedding(note_id)

        await _edit(storage, note_id, tags=["summer", "family"])

        assert (await generator.generate_note_text_embedding(note_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_vector_and_hash(self, generator, storage, fake_embedder):
        note_id = await _create(storage)
        await generator.generate_note_text_embedding(note_id)
        good = await storage.get_text_embedding(note_id)

        await _edit(storage, note_id, content="The broken day.")
        fake_embedder.failures["broken"] = RuntimeError("model crashed")
        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "failed"
        assert "model crashed" in outcome.detail
        record = await storage.get_text_embedding(note_id)
        assert record.status == "failed"
        assert record.text_hash == good.text_hash
        assert record.embedding == good.embedding

    @pytest.mark.asyncio
    async def test_failure_without_record_writes_nothing(self, generator, storage, fake_embedder):
        fake_embedder.failures["lake"] = RuntimeError("model crashed")
        note_id = await _create(storage)

        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "failed"
        assert await storage.get_text_embedding(note_id) is None

    @pytest.mark.asyncio
    async def test_empty_vector_is_failure(self, storage):
        models = ModelService(embedder=FakeEmbedder(default=[]))
        generator = EmbeddingGenerator(storage, models)
        note_id = await _create(storage)

        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "failed"
        assert await storage.get_text_embedding(note_id) is None

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_failure(self, storage, models):
        generator = EmbeddingGenerator(storage, models, dimension=768)
        note_id = await _create(storage)

        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "failed"
        assert "expected 768 dimensions, got 4" in outcome.detail
        assert await storage.get_text_embedding(note_id) is None

    @pytest.mark.asyncio
    async def test_wrong_dimension_marks_existing_record(self, storage, models):
        note_id = await _create(storage)
        await EmbeddingGenerator(storage, models, dimension=4).generate_note_text_embedding(note_id)
        good = await storage.get_text_embedding(note_id)

        await _edit(storage, note_id, content="A new day.")
        outcome = await EmbeddingGenerator(storage, models, dimension=3).generate_note_text_embedding(note_id)

        assert outcome.status == "failed"
        record = await storage.get_text_embedding(note_id)
        assert record.status == "failed"
        assert record.embedding == good.embedding

    @pytest.mark.asyncio
    async def test_matching_dimension_is_stored(self, storage, models):
        generator = EmbeddingGenerator(storage, models, dimension=4)
        note_id = await _create(storage)

        assert (await generator.generate_note_text_embedding(note_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_failed_record_is_retried_after_edit(self, generator, storage, fake_embedder):
        note_id = await _create(storage)
        await generator.generate_note_text_embedding(note_id)
        await _edit(storage, note_id, content="The broken day.")
        fake_embedder.failures["broken"] = RuntimeError("model crashed")
        await generator.generate_note_text_embedding(note_id)

        fake_embedder.failures.clear()
        await _edit(storage, note_id, content="A better day.")
        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "completed"
        assert (await storage.get_text_embedding(note_id)).status == "completed"

    @pytest.mark.asyncio
    async def test_missing_note(self, generator):
        outcome = await generator.generate_note_text_embedding(999)
        assert outcome.status == "not_found"

    @pytest.mark.asyncio
    async def test_not_ready(self, storage):
        generator = EmbeddingGenerator(storage, ModelService())
        note_id = await _create(storage)

        outcome = await generator.generate_note_text_embedding(note_id)

        assert outcome.status == "not_ready"
        assert await storage.get_text_embedding(note_id) is None


# =============================================================================
# Image caption embeddings
# =============================================================================


class TestImageEmbedding:
    @pytest.mark.asyncio
    async def test_blank_caption_is_skipped(self, generator, storage, fake_embedder):
        note_id = await _create(storage, images=[ImageInput(uri="file://a.jpg", description="   ")])
        image = (await storage.get_note(note_id)).images[0]

        outcome = await generator.generate_image_embedding(image.id, image.description)

        assert outcome.status == "skipped"
        assert fake_embedder.calls == []
        assert await storage.get_image_embedding(image.id) is None

    @pytest.mark.asyncio
    async def test_caption_is_trimmed_and_hashed(self, generator, storage, fake_embedder):
        note_id = await _create(storage, images=[ImageInput(uri="file://a.jpg", description="  My sister  ")])
        image = (await storage.get_note(note_id)).images[0]

        outcome = await generator.generate_image_embedding(image.id, image.description)

        assert outcome.status == "completed"
        record = await storage.get_image_embedding(image.id)
        assert record.description == "My sister"
        assert record.description_hash == generate_content_hash("My sister")
        assert record.note_id == note_id
        assert fake_embedder.calls == [("My sister", "document")]

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_failure(self, storage, models):
        generator = EmbeddingGenerator(storage, models, dimension=768)
        note_id = await _create(storage, images=[ImageInput(uri="file://a.jpg", description="My sister")])
        image = (await storage.get_note(note_id)).images[0]

        outcome = await generator.generate_image_embedding(image.id, image.description)

        assert outcome.status == "failed"
        assert await storage.get_image_embedding(image.id) is None

    @pytest.mark.asyncio
    async def test_unchanged_caption(self, generator, storage, fake_embedder):
        note_id = await _create(storage, images=[ImageInput(uri="file://a.jpg", description="My sister")])
        image = (await storage.get_note(note_id)).images[0]
        await generator.generate_image_embedding(image.id, image.description)

        outcome = await generator.generate_image_embedding(image.id, "  My sister ")

        assert outcome.status == "unchanged"
        assert len(fake_embedder.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_marks_existing_record(self, generator, storage, fake_embedder):
        note_id = await _create(storage, images=[ImageInput(uri="file://a.jpg", description="My sister")])
        image = (await storage.get_note(note_id)).images[0]
        await generator.generate_image_embedding(image.id, image.description)

        fake_embedder.failures["broken"] = RuntimeError("boom")
        outcome = await generator.generate_image_embedding(image.id, "A broken frame")

        assert outcome.status == "failed"
        record = await storage.get_image_embedding(image.id)
        assert record.status == "failed"
        assert record.description == "My sister"


# =============================================================================
# Fan-out
# =============================================================================


class TestProcessNoteEmbeddings:
    @pytest.mark.asyncio
    async def test_text_and_every_image(self, generator, storage):
        note_id = await _create(
            storage,
            images=[
                ImageInput(uri="file://a.jpg", description="My sister"),
                ImageInput(uri="file://b.jpg", description="The pier"),
                ImageInput(uri="file://c.jpg", description=""),
            ],
        )

        result = await generator.process_note_embeddings(note_id)

        assert result.status == "processed"
        statuses = [(o.kind, o.status) for o in result.outcomes]
        assert statuses == [
            ("text_embedding", "completed"),
            ("image_embedding", "completed"),
            ("image_embedding", "completed"),
            ("image_embedding", "skipped"),
        ]
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_one_failing_image_does_not_block_the_rest(self, generator, storage, fake_embedder):
        fake_embedder.failures["blurry"] = RuntimeError("cannot embed")
        note_id = await _create(
            storage,
            images=[
                ImageInput(uri="file://a.jpg", description="A blurry photo"),
                ImageInput(uri="file://b.jpg", description="The pier"),
            ],
        )
        note = await storage.get_note(note_id)

        result = await generator.process_note_embeddings(note_id)

        assert [o.entity_id for o in result.failures] == [note.images[0].id]
        assert await storage.get_text_embedding(note_id) is not None
        assert await storage.get_image_embedding(note.images[1].id) is not None
        assert await storage.get_image_embedding(note.images[0].id) is None

    @pytest.mark.asyncio
    async def test_storage_exception_becomes_failed_outcome(self, models):
        storage = AsyncMock(spec=NoteStorage)
        storage.get_note.return_value = NoteWithDetails(id=1, title="t", content="c")
        generator = EmbeddingGenerator(storage, models)
        storage.get_text_embedding.return_value = None
        storage.upsert_text_embedding.side_effect = RuntimeError("disk full")

        result = await generator.process_note_embeddings(1)

        assert result.status == "processed"
        assert len(result.failures) == 1
        assert "disk full" in result.failures[0].detail

    @pytest.mark.asyncio
    async def test_not_ready_returns_immediately(self):
        storage = AsyncMock(spec=NoteStorage)
        generator = EmbeddingGenerator(storage, ModelService())

        result = await generator.process_note_embeddings(1)

        assert result.status == "not_ready"
        storage.get_note.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_note(self, generator):
        result = await generator.process_note_embeddings(404)
        assert result.status == "not_found"
        assert result.outcomes == ()


# =============================================================================
# Query embeddings
# =============================================================================


class TestQueryEmbedding:
    @pytest.mark.asyncio
    async def test_returns_float32_array(self, generator, fake_embedder):
        vector = await generator.generate_query_embedding("  where was the lake?  ")

        assert vector.dtype == np.float32
        assert fake_embedder.calls == [("where was the lake?", "query")]

    @pytest.mark.asyncio
    async def test_blank_query(self, generator, fake_embedder):
        assert await generator.generate_query_embedding("   ") is None
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_error_returns_none(self, generator, fake_embedder):
        fake_embedder.failures["lake"] = RuntimeError("boom")
        assert await generator.generate_query_embedding("the lake") is None

    @pytest.mark.asyncio
    async def test_not_ready_returns_none(self, storage):
        generator = EmbeddingGenerator(storage, ModelService())
        assert await generator.generate_query_embedding("the lake") is None

    @pytest.mark.asyncio
    async def test_wrong_dimension_returns_none(self, storage, models):
        generator = EmbeddingGenerator(storage, models, dimension=768)
        assert await generator.generate_query_embedding("the lake") is None
