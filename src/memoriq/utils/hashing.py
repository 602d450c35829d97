"""Content fingerprinting for embedding change detection.

A stored fingerprint equal to the freshly computed one means the stored
vector still describes the text, so regeneration is skipped.  The digest is
only compared for equality; it is not a security boundary.
"""

import hashlib
from collections.abc import Sequence


def generate_content_hash(text: str) -> str:
    """Return the SHA-256 hex digest (64 chars) of ``text`` encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compose_note_text(title: str, content: str, tags: Sequence[str] = ()) -> str:
    """Combine the embeddable fields of a note into one string.

    Layout: ``"Tags: t1, t2\\n\\n<title>\\n\\n<content>"``; the tag line (and
    its blank line) is omitted when the note has no tags.
    """
    tag_line = f"Tags: {', '.join(tags)}\n\n" if tags else ""
    return f"{tag_line}{title}\n\n{content}"
