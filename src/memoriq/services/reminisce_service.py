"""
Reminisce Service - query-less sessions of spoken memories.

Selection is delegated to :func:`~memoriq.utils.selection.select_reminisce_notes`;
this service loads the pool, keeps the notes that can actually be played
(they need a recall script) and records what was shown.
"""

import logging
import random
import time
from collections.abc import Iterable

from ..config import ReminisceSettings
from ..models.note import NoteWithDetails
from ..models.responses import Outcome, ReminisceSession
from ..storage.base import NoteStorage
from ..utils.selection import SelectionWeights, select_reminisce_notes

logger = logging.getLogger(__name__)

NO_NOTES_MESSAGE = "No memories saved yet. Add a note to start reminiscing."
NO_SCRIPTS_MESSAGE = "Your memories are still being prepared. Please try again in a moment."


class ReminisceService:
    def __init__(
        self,
        storage: NoteStorage,
        settings: ReminisceSettings | None = None,
        rng: random.Random | None = None,
    ):
        self.storage = storage
        self.settings = settings or ReminisceSettings()
        self.rng = rng or random.Random()
        self.weights = SelectionWeights(
            image_bonus=self.settings.image_bonus,
            age_weight=self.settings.age_weight,
            length_weight=self.settings.length_weight,
            last_shown_weight=self.settings.last_shown_weight,
            never_shown_days=self.settings.never_shown_days,
            script_bonus=self.settings.script_bonus,
            missing_script_penalty=self.settings.missing_script_penalty,
        )

    async def select_notes(self, count: int | None = None, now: float | None = None) -> list[NoteWithDetails]:
        notes = await self.storage.get_all_notes()
        return select_reminisce_notes(
            notes,
            self.settings.session_size if count is None else count,
            now=now,
            rng=self.rng,
            weights=self.weights,
        )

    async def start_session(self, count: int | None = None, now: float | None = None) -> ReminisceSession:
        """Select notes and keep those that have a recall script to play."""
        selected = await self.select_notes(count, now)
        if not selected:
            return ReminisceSession(message=NO_NOTES_MESSAGE)

        playable = [note for note in selected if note.has_recall_script]
        if not playable:
            return ReminisceSession(message=NO_SCRIPTS_MESSAGE)

        logger.info(f"Starting reminisce session with {len(playable)} of {len(selected)} selected notes")
        return ReminisceSession(notes=playable)

    async def mark_notes_as_shown(self, note_ids: Iterable[int], now: float | None = None) -> list[Outcome]:
        """
        Record ``last_shown_at`` for each note individually.

        A failure is logged and reported as a failed outcome; it is not
        retried and does not stop the remaining notes.
        """
        shown_at = time.time() if now is None else now
        outcomes: list[Outcome] = []
        for note_id in note_ids:
            try:
                updated = await self.storage.mark_note_shown(note_id, shown_at)
            except Exception as e:
                logger.warning(f"Failed to mark note {note_id} as shown: {e}")
                outcomes.append(Outcome("mark_shown", note_id, "failed", str(e)))
                continue
            outcomes.append(Outcome("mark_shown", note_id, "completed" if updated else "not_found"))
        return outcomes
