"""
Note Service - note lifecycle and the background work it triggers.

Saving a note commits first; everything derived from it (embeddings, recall
script) happens afterwards in the background, so nothing downstream can
make a save fail.

- **Create**: one background task runs the embedding fan-out and then the
  recall script for the new note, in that order.
- **Update**: the note is scheduled on the embedding coalescer; once the
  coalescer has processed it, it is scheduled on the script coalescer.
  Rapid successive updates collapse into one regeneration per pipeline.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from ..config import EmbeddingSettings, ScriptSettings
from ..models.note import CreateNoteInput, NoteWithDetails, UpdateNoteInput
from ..pipeline.coalescer import DebouncedCoalescer
from ..storage.base import NoteStorage
from .embedding_service import EmbeddingGenerator
from .script_service import RecallScriptGenerator

logger = logging.getLogger(__name__)


class NoteService:
    """Create/read/update/delete notes and keep their derived data current."""

    def __init__(
        self,
        storage: NoteStorage,
        embeddings: EmbeddingGenerator,
        scripts: RecallScriptGenerator,
        embedding_settings: EmbeddingSettings | None = None,
        script_settings: ScriptSettings | None = None,
    ):
        self.storage = storage
        self.embeddings = embeddings
        self.scripts = scripts
        embedding_settings = embedding_settings or EmbeddingSettings()
        script_settings = script_settings or ScriptSettings()

        self.embedding_queue = DebouncedCoalescer(
            "embeddings", self._embed_then_schedule_script, delay=embedding_settings.debounce_ms / 1000.0
        )
        self.script_queue = DebouncedCoalescer(
            "recall-scripts", self.scripts.process_recall_script, delay=script_settings.debounce_ms / 1000.0
        )
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_note(self, data: CreateNoteInput) -> int:
        """
        Store a new note and start its background processing.

        Returns:
            The new note id

        Raises:
            StorageError: If the transactional write fails
        """
        note_id = await self.storage.create_note(data)
        logger.info(f"Created note {note_id}: {data.title!r}")
        self._spawn(self._process_new_note(note_id), name=f"process-note-{note_id}")
        return note_id

    async def update_note(self, data: UpdateNoteInput) -> None:
        """
        Replace a note and schedule its regeneration.

        Raises:
            NoteNotFoundError: If the note does not exist
            StorageError: If the transactional write fails
        """
        await self.storage.update_note(data)
        logger.info(f"Updated note {data.id}")
        self.embedding_queue.schedule(data.id)

    async def delete_note(self, note_id: int) -> bool:
        deleted = await self.storage.delete_note(note_id)
        if deleted:
            logger.info(f"Deleted note {note_id}")
        return deleted

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_note(self, note_id: int) -> NoteWithDetails | None:
        return await self.storage.get_note(note_id)

    async def list_notes(self) -> list[NoteWithDetails]:
        return await self.storage.get_all_notes()

    async def search_notes(self, query: str) -> list[NoteWithDetails]:
        query = query.strip()
        if not query:
            return await self.storage.get_all_notes()
        return await self.storage.search_notes(query)

    # =========================================================================
    # Background work
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_new_note(self, note_id: int) -> None:
        # Script generation waits for embeddings so the two never contend for inference
        try:
            result = await self.embeddings.process_note_embeddings(note_id)
            if result.failures:
                logger.warning(f"Note {note_id}: {len(result.failures)} embedding task(s) failed")
            if result.status == "not_found":
                return
            await self.scripts.process_recall_script(note_id)
        except Exception:
            logger.exception(f"Background processing of note {note_id} failed")

    async def _embed_then_schedule_script(self, note_id: int) -> None:
        result = await self.embeddings.process_note_embeddings(note_id)
        if result.failures:
            logger.warning(f"Note {note_id}: {len(result.failures)} embedding task(s) failed")
        if result.status != "not_found":
            self.script_queue.schedule(note_id)

    async def wait_for_background(self) -> None:
        """Wait until create tasks and both coalescers have nothing left to do."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.embedding_queue.wait_idle()
        await self.script_queue.wait_idle()

    async def close(self) -> None:
        await self.wait_for_background()
        await self.embedding_queue.close()
        await self.script_queue.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "background_tasks": len(self._tasks),
            "embedding_queue": self.embedding_queue.get_stats(),
            "script_queue": self.script_queue.get_stats(),
        }
