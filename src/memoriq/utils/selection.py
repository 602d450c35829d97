"""
Memory selection scoring for reminiscence sessions.

Ranks notes without any query, favouring memories that are worth
resurfacing:
    - Notes with photos (richer recall cues)
    - Older notes
    - Longer notes
    - Notes not shown recently (or never)
    - Notes that already have a recall script to narrate

Formula:
    score = image_bonus * has_images
          + age_weight * age_days
          + length_weight * content_length
          + last_shown_weight * days_since_last_shown   (never_shown_days if never)
          + (script_bonus if has_script else missing_script_penalty)

The ranking decides which notes are eligible; the chosen notes are then
shuffled so presentation order carries no ranking signal.  The missing
script penalty is large enough that unscripted notes only surface when too
few scripted ones exist.
"""

from __future__ import annotations

import random
import time
from collections.abc import Sequence
from dataclasses import dataclass

from ..models.note import NoteWithDetails

SECONDS_PER_DAY = 86400


@dataclass(frozen=True, slots=True)
class ScoreFactors:
    """Inputs to the selection score of one note."""

    has_images: bool = False
    age_days: int = 0
    content_length: int = 0
    days_since_last_shown: int = 0
    has_recall_script: bool = False


@dataclass(frozen=True, slots=True)
class SelectionWeights:
    """Weights of the selection score."""

    image_bonus: float = 50.0
    age_weight: float = 0.5
    length_weight: float = 0.01
    last_shown_weight: float = 2.0
    never_shown_days: int = 9999
    script_bonus: float = 10.0
    missing_script_penalty: float = -100.0


DEFAULT_WEIGHTS = SelectionWeights()


def whole_days_between(earlier: float, later: float) -> int:
    """Whole days elapsed from ``earlier`` to ``later`` (epoch seconds, floored)."""
    return int((later - earlier) // SECONDS_PER_DAY)


def compute_score(factors: ScoreFactors, weights: SelectionWeights = DEFAULT_WEIGHTS) -> float:
    """
    Compute the selection score from its factors.

    Example:
        >>> compute_score(ScoreFactors(True, 10, 200, 9999, True))
        20065.0
    """
    return (
        (weights.image_bonus if factors.has_images else 0.0)
        + weights.age_weight * factors.age_days
        + weights.length_weight * factors.content_length
        + weights.last_shown_weight * factors.days_since_last_shown
        + (weights.script_bonus if factors.has_recall_script else weights.missing_script_penalty)
    )


def score_factors(
    note: NoteWithDetails,
    now: float,
    weights: SelectionWeights = DEFAULT_WEIGHTS,
) -> ScoreFactors:
    """Extract the score factors of ``note`` as of ``now``."""
    if note.last_shown_at is None:
        since_shown = weights.never_shown_days
    else:
        since_shown = whole_days_between(note.last_shown_at, now)
    return ScoreFactors(
        has_images=note.has_images,
        age_days=whole_days_between(note.created_at, now),
        content_length=len(note.content),
        days_since_last_shown=since_shown,
        has_recall_script=note.has_recall_script,
    )


def score_note(
    note: NoteWithDetails,
    now: float | None = None,
    weights: SelectionWeights = DEFAULT_WEIGHTS,
) -> float:
    """Selection score of a single note."""
    now = time.time() if now is None else now
    return compute_score(score_factors(note, now, weights), weights)


def select_reminisce_notes(
    notes: Sequence[NoteWithDetails],
    count: int,
    now: float | None = None,
    rng: random.Random | None = None,
    weights: SelectionWeights = DEFAULT_WEIGHTS,
) -> list[NoteWithDetails]:
    """
    Pick up to ``count`` notes for a reminiscence session.

    Args:
        notes: Candidate pool.
        count: Requested session size.
        now: Reference time (epoch seconds); defaults to the current time.
        rng: Random source for the final shuffle (seed it in tests).
        weights: Score weights.

    Returns:
        Every candidate (shuffled) when the pool is no larger than ``count``;
        otherwise the ``count`` best-scoring notes, shuffled.
    """
    rng = rng or random.Random()
    if not notes or count <= 0:
        return []

    if len(notes) <= count:
        chosen = list(notes)
    else:
        now = time.time() if now is None else now
        ranked = sorted(notes, key=lambda n: score_note(n, now, weights), reverse=True)
        chosen = ranked[:count]

    rng.shuffle(chosen)
    return chosen
