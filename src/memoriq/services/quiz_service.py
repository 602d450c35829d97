"""Quiz Service - two-option questions generated from the user's notes."""

import logging
import random

from ..config import QuizSettings
from ..inference.base import ModelNotReadyError, SamplingParams
from ..inference.model_service import ModelService
from ..models.note import NoteWithDetails
from ..models.responses import Quiz, QuizQuestion
from ..storage.base import NoteStorage
from ..utils.prompts import QUIZ_SYSTEM_PROMPT, build_quiz_prompt
from ..utils.quiz_parser import parse_question_response

logger = logging.getLogger(__name__)

NO_NOTES_MESSAGE = "No memories saved yet. Add some notes to take a quiz."
NO_QUESTIONS_MESSAGE = "Could not generate quiz questions right now. Please try again."


class QuizService:
    def __init__(
        self,
        storage: NoteStorage,
        models: ModelService,
        settings: QuizSettings | None = None,
        rng: random.Random | None = None,
    ):
        self.storage = storage
        self.models = models
        self.settings = settings or QuizSettings()
        self.rng = rng or random.Random()
        self.params = SamplingParams.from_defaults(self.settings.sampling)

    async def generate_quiz(self, total: int | None = None) -> Quiz:
        """
        Generate up to ``total`` questions, cycling over shuffled notes.

        Questions are generated one after another on the recall context.  A
        question that fails to generate or parse is dropped, so the quiz may
        come back shorter than requested.

        Raises:
            ModelNotReadyError: If the recall model is not loaded
        """
        total = self.settings.total_questions if total is None else total
        if not self.models.is_recall_ready():
            raise ModelNotReadyError("recall")

        notes = await self.storage.get_all_notes()
        if not notes:
            return Quiz(requested=total, message=NO_NOTES_MESSAGE)

        pool = list(notes)
        self.rng.shuffle(pool)
        pool = pool[:total]

        questions: list[QuizQuestion] = []
        for index in range(total):
            question = await self._generate_question(pool[index % len(pool)])
            if question is not None:
                questions.append(question)

        logger.info(f"Generated {len(questions)}/{total} quiz questions")
        return Quiz(
            questions=questions,
            requested=total,
            message=None if questions else NO_QUESTIONS_MESSAGE,
        )

    async def _generate_question(self, note: NoteWithDetails) -> QuizQuestion | None:
        try:
            response = await self.models.complete("recall", QUIZ_SYSTEM_PROMPT, build_quiz_prompt(note), self.params)
        except ModelNotReadyError:
            raise
        except Exception as e:
            logger.warning(f"Quiz question for note {note.id} failed: {e}")
            return None

        question = parse_question_response(response, note.id)
        if question is None:
            logger.debug(f"Unparseable quiz response for note {note.id}: {response[:120]!r}")
        return question
