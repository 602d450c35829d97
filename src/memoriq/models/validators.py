"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped numbers and Literal enums so
every model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean, de-duplicated ``list[str]``.

    * ``"a, b, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b ", "a"]`` → ``["a", "b"]``
    * ``None`` → ``[]``

    Order of first appearance is preserved; it is the order tags are linked
    to a note and therefore the order they appear in the embedded text.
    """
    if v is None:
        return []
    if isinstance(v, str):
        items = [t.strip() for t in v.split(",")]
    elif isinstance(v, (list, tuple)):
        items = [str(item).strip() for item in v if item is not None]
    else:
        return []
    return list(dict.fromkeys(t for t in items if t))


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list or None and always outputs list[str]."""


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

EntityId = Annotated[int, Field(ge=1)]
"""Database row identity (SQLite AUTOINCREMENT starts at 1)."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

EmbeddingStatus = Literal["completed", "failed"]
MatchType = Literal["text", "image"]
AnswerOption = Literal["A", "B"]
