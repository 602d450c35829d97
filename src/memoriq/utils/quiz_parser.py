"""
Parse quiz questions out of free-form model output.

Small local models wrap the JSON in prose or code fences and drift on field
names (``optiona``, ``Question2``, ...).  Parsing is lenient about both and
strict about content: a question is only accepted with non-empty text, two
options and a correct answer of ``A`` or ``B``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from ..models.responses import QuizQuestion

logger = logging.getLogger(__name__)

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "question": ("question", "Question"),
    "option_a": ("optionA", "optiona", "OptionA", "option_a"),
    "option_b": ("optionB", "optionb", "OptionB", "option_b"),
    "correct": ("correct", "Correct", "answer"),
}


def _extract_json_object(text: str) -> str:
    """Return the outermost ``{...}`` span of ``text`` (or ``text`` itself)."""
    stripped = text.strip()
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start : end + 1]
    return stripped


def _normalize_field(obj: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    """Find a field by exact alias, then by case-insensitive alias plus optional digits."""
    for alias in aliases:
        if obj.get(alias):
            return obj[alias]

    for key, value in obj.items():
        key_lower = key.lower()
        for alias in aliases:
            if re.fullmatch(rf"{re.escape(alias.lower())}\d*", key_lower):
                return value
    return None


def parse_question_response(response: str, note_id: int | None = None) -> QuizQuestion | None:
    """
    Parse a model response into a :class:`QuizQuestion`.

    Args:
        response: Raw completion text.
        note_id: Note the question was generated from.

    Returns:
        The parsed question, or None when the response is unusable.
    """
    if not response or not response.strip():
        return None

    try:
        parsed = json.loads(_extract_json_object(response))
    except json.JSONDecodeError as e:
        logger.debug(f"Quiz response is not valid JSON: {e}")
        return None

    if not isinstance(parsed, dict):
        return None

    fields = {name: _normalize_field(parsed, aliases) for name, aliases in _FIELD_ALIASES.items()}
    question = fields["question"]
    option_a = fields["option_a"]
    option_b = fields["option_b"]
    correct = str(fields["correct"] or "").strip().upper()

    if not all(isinstance(v, str) and v.strip() for v in (question, option_a, option_b)):
        return None
    if correct not in ("A", "B"):
        return None

    return QuizQuestion(
        note_id=note_id,
        question=question.strip(),
        option_a=option_a.strip(),
        option_b=option_b.strip(),
        correct=correct,
    )
