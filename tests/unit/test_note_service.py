"""
Unit tests for NoteService.

Covers the create chain (embeddings, then script), debounced regeneration on
update and propagation of write failures.
"""

from unittest.mock import AsyncMock

import pytest

from memoriq.config import EmbeddingSettings, ScriptSettings
from memoriq.models.note import CreateNoteInput, ImageInput, UpdateNoteInput
from memoriq.services.embedding_service import EmbeddingGenerator
from memoriq.services.note_service import NoteService
from memoriq.services.script_service import RecallScriptGenerator
from memoriq.storage.base import NoteNotFoundError, NoteStorage, StorageError


@pytest.fixture
async def service(storage, models):
    embeddings = EmbeddingGenerator(storage, models)
    scripts = RecallScriptGenerator(storage, models)
    svc = NoteService(
        storage,
        embeddings,
        scripts,
        EmbeddingSettings(debounce_ms=100),
        ScriptSettings(debounce_ms=100),
    )
    yield svc
    await svc.close()


def _input(**overrides):
    data = {"title": "Lake trip", "content": "I swam in the lake.", "tags": ["summer"]}
    data.update(overrides)
    return CreateNoteInput(**data)


# =============================================================================
# Create
# =============================================================================


class TestCreateNote:
    @pytest.mark.asyncio
    async def test_embeds_then_writes_script(self, service, storage, fake_embedder, fake_recall):
        note_id = await service.create_note(_input())
        await service.wait_for_background()

        assert (await storage.get_text_embedding(note_id)).status == "completed"
        assert (await storage.get_note(note_id)).recall_script == "You went to the lake with your sister."
        assert len(fake_embedder.calls) == 1
        assert len(fake_recall.calls) == 1

    @pytest.mark.asyncio
    async def test_script_waits_for_embeddings(self, storage, models, fake_embedder, fake_recall):
        order = []
        embeddings = EmbeddingGenerator(storage, models)
        scripts = RecallScriptGenerator(storage, models)
        original_embed = fake_embedder.embed
        original_complete = fake_recall.complete

        async def embed(text, kind="document"):
            order.append("embed")
            return await original_embed(text, kind)

        async def complete(system_prompt, user_prompt, params):
            order.append("script")
            return await original_complete(system_prompt, user_prompt, params)

        fake_embedder.embed = embed
        fake_recall.complete = complete
        service = NoteService(storage, embeddings, scripts)

        await service.create_note(_input(images=[ImageInput(uri="file://a.jpg", description="Sister")]))
        await service.wait_for_background()

        assert order == ["embed", "embed", "script"]

    @pytest.mark.asyncio
    async def test_write_failure_propagates_and_starts_nothing(self, models):
        storage = AsyncMock(spec=NoteStorage)
        storage.create_note.side_effect = StorageError("disk full")
        service = NoteService(storage, EmbeddingGenerator(storage, models), RecallScriptGenerator(storage, models))

        with pytest.raises(StorageError):
            await service.create_note(_input())

        assert service.get_stats()["background_tasks"] == 0
        storage.get_note.assert_not_called()

    @pytest.mark.asyncio
    async def test_background_failure_does_not_affect_save(self, service, storage, fake_embedder, fake_recall):
        fake_embedder.failures["lake"] = RuntimeError("boom")
        fake_recall.responses = [RuntimeError("also boom")]

        note_id = await service.create_note(_input())
        await service.wait_for_background()

        note = await storage.get_note(note_id)
        assert note.title == "Lake trip"
        assert note.recall_script is None


# =============================================================================
# Update
# =============================================================================


class TestUpdateNote:
    @pytest.mark.asyncio
    async def test_rapid_updates_coalesce(self, service, storage, fake_embedder, fake_recall):
        note_id = await service.create_note(_input())
        await service.wait_for_background()

        for text in ("One.", "Two.", "Three."):
            await service.update_note(UpdateNoteInput(id=note_id, title="Lake trip", content=text))
        await service.wait_for_background()

        assert len(fake_embedder.calls) == 2
        assert fake_embedder.calls[-1][0] == "Lake trip\n\nThree."
        assert len(fake_recall.calls) == 2
        assert service.embedding_queue.get_stats()["batches"] == 1
        assert service.script_queue.get_stats()["batches"] == 1

    @pytest.mark.asyncio
    async def test_update_schedules_embedding_queue(self, service):
        note_id = await service.create_note(_input())
        await service.wait_for_background()

        await service.update_note(UpdateNoteInput(id=note_id, title="Lake trip", content="Changed."))

        assert service.embedding_queue.state == "armed"
        assert note_id in service.embedding_queue.pending
        await service.wait_for_background()
        assert service.script_queue.get_stats()["processed"] == 1

    @pytest.mark.asyncio
    async def test_unchanged_text_still_refreshes_script(self, service, fake_embedder, fake_recall):
        note_id = await service.create_note(_input())
        await service.wait_for_background()

        await service.update_note(UpdateNoteInput(id=note_id, **_input().model_dump()))
        await service.wait_for_background()

        assert len(fake_embedder.calls) == 1
        assert len(fake_recall.calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_note(self, service):
        with pytest.raises(NoteNotFoundError):
            await service.update_note(UpdateNoteInput(id=999, title="x", content="y"))
        assert service.embedding_queue.state == "idle"


# =============================================================================
# Reads and delete
# =============================================================================


class TestReads:
    @pytest.mark.asyncio
    async def test_list_and_search(self, service):
        await service.create_note(_input(title="Lake trip"))
        await service.create_note(_input(title="Birthday", content="Cake with grandma.", tags=["family"]))

        assert [n.title for n in await service.list_notes()] == ["Birthday", "Lake trip"]
        assert [n.title for n in await service.search_notes("grandma")] == ["Birthday"]
        assert [n.title for n in await service.search_notes("family")] == ["Birthday"]
        assert len(await service.search_notes("  ")) == 2

    @pytest.mark.asyncio
    async def test_delete(self, service):
        note_id = await service.create_note(_input())
        await service.wait_for_background()

        assert await service.delete_note(note_id) is True
        assert await service.get_note(note_id) is None
        assert await service.delete_note(note_id) is False
