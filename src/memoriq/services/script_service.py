"""Recall Script Generator: spoken-style narrations of notes."""

import logging

from ..config import ScriptSettings
from ..inference.base import ModelNotReadyError, SamplingParams
from ..inference.model_service import ModelService
from ..models.note import NoteWithDetails
from ..models.responses import Outcome
from ..storage.base import NoteStorage
from ..utils.prompts import RECALL_SYSTEM_PROMPT, build_recall_prompt

logger = logging.getLogger(__name__)


class RecallScriptGenerator:
    """Writes a recall script for a note on the ``recall`` model context."""

    def __init__(self, storage: NoteStorage, models: ModelService, settings: ScriptSettings | None = None):
        self.storage = storage
        self.models = models
        self.settings = settings or ScriptSettings()
        self.params = SamplingParams.from_defaults(self.settings.sampling)

    async def generate_recall_script(self, note_id: int, note: NoteWithDetails | None = None) -> Outcome:
        """
        Generate and store the recall script of a note.

        Raises:
            ModelNotReadyError: If the recall model is not loaded
        """
        if note is None:
            note = await self.storage.get_note(note_id)
        if note is None:
            return Outcome("recall_script", note_id, "not_found")

        text = await self.models.complete("recall", RECALL_SYSTEM_PROMPT, build_recall_prompt(note), self.params)
        script = text.strip()
        if not script:
            logger.warning(f"Recall script for note {note_id} came back empty")
            return Outcome("recall_script", note_id, "failed", "empty completion")

        if not await self.storage.update_recall_script(note_id, script):
            return Outcome("recall_script", note_id, "not_found")

        logger.debug(f"Stored recall script for note {note_id} ({len(script)} chars)")
        return Outcome("recall_script", note_id, "completed")

    async def process_recall_script(self, note_id: int) -> Outcome:
        """Background entry point; never raises."""
        if not self.models.is_recall_ready():
            logger.debug(f"Recall model not ready, skipping script for note {note_id}")
            return Outcome("recall_script", note_id, "not_ready")
        try:
            return await self.generate_recall_script(note_id)
        except ModelNotReadyError:
            return Outcome("recall_script", note_id, "not_ready")
        except Exception as e:
            logger.warning(f"Recall script for note {note_id} failed: {e}")
            return Outcome("recall_script", note_id, "failed", str(e))
