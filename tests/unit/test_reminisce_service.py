"""Unit tests for ReminisceService."""

import random
from unittest.mock import AsyncMock

import pytest

from memoriq.config import ReminisceSettings
from memoriq.models.note import NoteWithDetails
from memoriq.services.reminisce_service import NO_NOTES_MESSAGE, NO_SCRIPTS_MESSAGE, ReminisceService
from memoriq.storage.base import NoteStorage

NOW = 1_700_000_000.0


def make_note(note_id, script="You went to the lake."):
    return NoteWithDetails(id=note_id, title=f"Note {note_id}", content="x", recall_script=script, created_at=NOW)


@pytest.fixture
def storage():
    return AsyncMock(spec=NoteStorage)


@pytest.fixture
def service(storage):
    return ReminisceService(storage, ReminisceSettings(session_size=3), rng=random.Random(0))


class TestSelectNotes:
    @pytest.mark.asyncio
    async def test_uses_session_size(self, service, storage):
        storage.get_all_notes.return_value = [make_note(i) for i in range(1, 10)]

        selected = await service.select_notes(now=NOW)

        assert len(selected) == 3

    @pytest.mark.asyncio
    async def test_explicit_count(self, service, storage):
        storage.get_all_notes.return_value = [make_note(i) for i in range(1, 10)]
        assert len(await service.select_notes(count=5, now=NOW)) == 5

    def test_weights_follow_settings(self, storage):
        service = ReminisceService(storage, ReminisceSettings(image_bonus=5.0, missing_script_penalty=-1.0))
        assert service.weights.image_bonus == 5.0
        assert service.weights.missing_script_penalty == -1.0


class TestStartSession:
    @pytest.mark.asyncio
    async def test_only_scripted_notes_are_played(self, service, storage):
        storage.get_all_notes.return_value = [make_note(1), make_note(2, script=None)]

        session = await service.start_session(now=NOW)

        assert [n.id for n in session.notes] == [1]
        assert session.scripts == ["You went to the lake."]
        assert session.message is None

    @pytest.mark.asyncio
    async def test_no_notes(self, service, storage):
        storage.get_all_notes.return_value = []

        session = await service.start_session()

        assert session.notes == []
        assert session.message == NO_NOTES_MESSAGE

    @pytest.mark.asyncio
    async def test_no_scripts_yet(self, service, storage):
        storage.get_all_notes.return_value = [make_note(1, script=None)]

        session = await service.start_session()

        assert session.notes == []
        assert session.message == NO_SCRIPTS_MESSAGE


class TestMarkNotesAsShown:
    @pytest.mark.asyncio
    async def test_marks_each_note(self, service, storage):
        storage.mark_note_shown.return_value = True

        outcomes = await service.mark_notes_as_shown([1, 2], now=NOW)

        assert [o.status for o in outcomes] == ["completed", "completed"]
        assert [c.args for c in storage.mark_note_shown.await_args_list] == [(1, NOW), (2, NOW)]

    @pytest.mark.asyncio
    async def test_partial_failure_does_not_block_others(self, service, storage):
        storage.mark_note_shown.side_effect = [True, RuntimeError("database is locked"), True]

        outcomes = await service.mark_notes_as_shown([1, 2, 3], now=NOW)

        assert [(o.entity_id, o.status) for o in outcomes] == [
            (1, "completed"),
            (2, "failed"),
            (3, "completed"),
        ]
        assert storage.mark_note_shown.await_count == 3

    @pytest.mark.asyncio
    async def test_missing_note(self, service, storage):
        storage.mark_note_shown.return_value = False

        (outcome,) = await service.mark_notes_as_shown([9])

        assert outcome.status == "not_found"
        assert outcome.kind == "mark_shown"
