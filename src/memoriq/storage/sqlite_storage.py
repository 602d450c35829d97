# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
SQLite storage for notes and embeddings.

One aiosqlite connection is shared by every caller.  Statements are
serialised with an asyncio lock so a multi-statement write (note + tags +
images) always runs inside its own ``BEGIN IMMEDIATE ... COMMIT`` and a
concurrent reader never observes it half-written.
"""

import asyncio
import logging
import os
import sqlite3
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import aiosqlite
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..models.embedding import ImageEmbeddingRecord, TextEmbeddingRecord
from ..models.note import CreateNoteInput, Image, ImageInput, NoteWithDetails, Tag, UpdateNoteInput
from .base import NoteNotFoundError, NoteStorage, StorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_NOTE_COLUMNS = "id, title, content, audio_uri, recall_script, last_shown_at, created_at, updated_at"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    audio_uri TEXT,
    recall_script TEXT,
    last_shown_at REAL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS note_tags (
    note_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (note_id, tag_id),
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS images (
    id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    note_id INTEGER NOT NULL,
    uri TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS note_embeddings (
    id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    note_id INTEGER NOT NULL UNIQUE,
    embedding BLOB NOT NULL,
    dimension INTEGER NOT NULL,
    text_hash TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'completed',
    created_at REAL NOT NULL,
    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS image_embeddings (
    id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    image_id INTEGER NOT NULL UNIQUE,
    description TEXT NOT NULL,
    embedding BLOB NOT NULL,
    dimension INTEGER NOT NULL,
    description_hash TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'completed',
    created_at REAL NOT NULL,
    FOREIGN KEY (image_id) REFERENCES images(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_note_tags_note_id ON note_tags(note_id);
CREATE INDEX IF NOT EXISTS idx_images_note_id ON images(note_id);
CREATE INDEX IF NOT EXISTS idx_note_embeddings_status ON note_embeddings(status);
CREATE INDEX IF NOT EXISTS idx_image_embeddings_status ON image_embeddings(status);
"""


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if a store error is transient (another writer holds the lock).

    Only ``database is locked`` / ``database is busy`` operational errors are
    retried; constraint violations and schema errors are permanent.
    """
    if isinstance(exception, sqlite3.OperationalError):
        message = str(exception).lower()
        return "locked" in message or "busy" in message
    return False


_retry_transient = retry(
    retry=retry_if_exception(is_retryable_error),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    reraise=True,
)


class SQLiteNoteStorage(NoteStorage):
    """aiosqlite-backed :class:`NoteStorage`."""

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        """
        Args:
            db_path: Path to the SQLite database file (``":memory:"`` for tests)
            busy_timeout_ms: How long SQLite waits on a locked database
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Open the connection and create the schema if not exists."""
        if self._initialized:
            return

        if self.db_path != ":memory:":
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if self.db_path != ":memory:":
            await self._db.execute("PRAGMA journal_mode = WAL")

        cursor = await self._db.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        version = row[0] if row else 0
        if version < SCHEMA_VERSION:
            await self._db.executescript(_SCHEMA)
            await self._db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

        self._initialized = True
        logger.info(f"Note storage initialized at {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
        self._initialized = False

    # -------------------------------------------------------------------------
    # Connection helpers
    # -------------------------------------------------------------------------

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements in one write transaction."""
        db = self._conn()
        async with self._lock:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            else:
                await db.execute("COMMIT")

    async def _fetchall(self, sql: str, params: Iterable = ()) -> list[aiosqlite.Row]:
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(sql, tuple(params))
            return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: Iterable = ()) -> aiosqlite.Row | None:
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(sql, tuple(params))
            return await cursor.fetchone()

    async def _execute(self, sql: str, params: Iterable = ()) -> int:
        """Run a single autocommitted write; returns the affected row count."""
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(sql, tuple(params))
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Notes
    # -------------------------------------------------------------------------

    @staticmethod
    async def _get_or_create_tag(db: aiosqlite.Connection, name: str) -> int:
        cursor = await db.execute("SELECT id FROM tags WHERE name = ?", (name,))
        row = await cursor.fetchone()
        if row:
            return row["id"]
        cursor = await db.execute("INSERT INTO tags (name) VALUES (?)", (name,))
        return cursor.lastrowid

    async def _link_tags(self, db: aiosqlite.Connection, note_id: int, tag_names: list[str]) -> None:
        for position, name in enumerate(tag_names):
            tag_id = await self._get_or_create_tag(db, name)
            await db.execute(
                "INSERT OR IGNORE INTO note_tags (note_id, tag_id, position) VALUES (?, ?, ?)",
                (note_id, tag_id, position),
            )

    @staticmethod
    async def _insert_images(db: aiosqlite.Connection, note_id: int, images: list[ImageInput]) -> None:
        for image in images:
            await db.execute(
                "INSERT INTO images (note_id, uri, description) VALUES (?, ?, ?)",
                (note_id, image.uri, image.description),
            )

    @_retry_transient
    async def create_note(self, data: CreateNoteInput) -> int:
        """Insert a note, lazily creating its tags; returns the new id."""
        now = time.time()
        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    "INSERT INTO notes (title, content, audio_uri, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (data.title, data.content, data.audio_uri, now, now),
                )
                note_id = cursor.lastrowid
                await self._link_tags(db, note_id, data.tags)
                await self._insert_images(db, note_id, data.images)
        except sqlite3.Error as e:
            if is_retryable_error(e):
                raise
            raise StorageError(f"Failed to create note: {e}") from e

        logger.debug(f"Created note {note_id} ({len(data.tags)} tags, {len(data.images)} images)")
        return note_id

    async def _reconcile_images(self, db: aiosqlite.Connection, note_id: int, images: list[ImageInput]) -> None:
        """
        Bring a note's images in line with ``images``.

        Images are matched by URI so an unchanged image keeps its id and its
        embedding fingerprint.  A caption edited to blank loses its embedding,
        since blank captions are never embedded.
        """
        cursor = await db.execute("SELECT id, uri, description FROM images WHERE note_id = ? ORDER BY id", (note_id,))
        existing: dict[str, list[tuple[int, str]]] = defaultdict(list)
        for row in await cursor.fetchall():
            existing[row["uri"]].append((row["id"], row["description"]))

        for image in images:
            candidates = existing.get(image.uri)
            if not candidates:
                await db.execute(
                    "INSERT INTO images (note_id, uri, description) VALUES (?, ?, ?)",
                    (note_id, image.uri, image.description),
                )
                continue

            image_id, old_description = candidates.pop(0)
            if old_description == image.description:
                continue
            await db.execute("UPDATE images SET description = ? WHERE id = ?", (image.description, image_id))
            if not image.description.strip():
                await db.execute("DELETE FROM image_embeddings WHERE image_id = ?", (image_id,))

        for leftovers in existing.values():
            for image_id, _ in leftovers:
                await db.execute("DELETE FROM images WHERE id = ?", (image_id,))

    @_retry_transient
    async def update_note(self, data: UpdateNoteInput) -> None:
        """Replace a note's fields, tags and images in one transaction."""
        now = time.time()
        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    "UPDATE notes SET title = ?, content = ?, audio_uri = ?, updated_at = ? WHERE id = ?",
                    (data.title, data.content, data.audio_uri, now, data.id),
                )
                if cursor.rowcount == 0:
                    raise NoteNotFoundError(data.id)
                await db.execute("DELETE FROM note_tags WHERE note_id = ?", (data.id,))
                await self._link_tags(db, data.id, data.tags)
                await self._reconcile_images(db, data.id, data.images)
        except sqlite3.Error as e:
            if is_retryable_error(e):
                raise
            raise StorageError(f"Failed to update note {data.id}: {e}") from e

        logger.debug(f"Updated note {data.id}")

    @_retry_transient
    async def delete_note(self, note_id: int) -> bool:
        deleted = await self._execute("DELETE FROM notes WHERE id = ?", (note_id,))
        if deleted:
            logger.debug(f"Deleted note {note_id}")
        return deleted > 0

    async def _load_notes(self, sql: str, params: Iterable = ()) -> list[NoteWithDetails]:
        """Read note rows with their tags and images under one lock hold.

        A write waiting on the lock cannot land between the note row and its
        relations, so a note is never returned half old and half new.
        """
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(sql, tuple(params))
            rows = list(await cursor.fetchall())
            return await self._hydrate(db, rows)

    @staticmethod
    async def _hydrate(db: aiosqlite.Connection, rows: list[aiosqlite.Row]) -> list[NoteWithDetails]:
        """Attach tags and images to note rows (two queries, not two per note)."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        placeholders = ",".join("?" * len(ids))

        cursor = await db.execute(
            f"""
            SELECT nt.note_id, t.id, t.name
            FROM note_tags nt
            INNER JOIN tags t ON t.id = nt.tag_id
            WHERE nt.note_id IN ({placeholders})
            ORDER BY nt.note_id, nt.position
            """,
            ids,
        )
        tag_rows = await cursor.fetchall()
        cursor = await db.execute(
            f"SELECT id, note_id, uri, description FROM images WHERE note_id IN ({placeholders}) ORDER BY id",
            ids,
        )
        image_rows = await cursor.fetchall()

        tags: dict[int, list[Tag]] = defaultdict(list)
        for row in tag_rows:
            tags[row["note_id"]].append(Tag(id=row["id"], name=row["name"]))
        images: dict[int, list[Image]] = defaultdict(list)
        for row in image_rows:
            images[row["note_id"]].append(
                Image(id=row["id"], note_id=row["note_id"], uri=row["uri"], description=row["description"] or "")
            )

        return [
            NoteWithDetails(
                id=row["id"],
                title=row["title"],
                content=row["content"],
                audio_uri=row["audio_uri"],
                recall_script=row["recall_script"],
                last_shown_at=row["last_shown_at"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                tags=tags.get(row["id"], []),
                images=images.get(row["id"], []),
            )
            for row in rows
        ]

    async def get_note(self, note_id: int) -> NoteWithDetails | None:
        notes = await self._load_notes(f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id = ?", (note_id,))
        return notes[0] if notes else None

    async def get_all_notes(self) -> list[NoteWithDetails]:
        return await self._load_notes(f"SELECT {_NOTE_COLUMNS} FROM notes ORDER BY created_at DESC, id DESC")

    async def search_notes(self, query: str) -> list[NoteWithDetails]:
        pattern = f"%{query}%"
        return await self._load_notes(
            f"""
            SELECT DISTINCT {", ".join(f"n.{c.strip()}" for c in _NOTE_COLUMNS.split(","))}
            FROM notes n
            LEFT JOIN note_tags nt ON n.id = nt.note_id
            LEFT JOIN tags t ON nt.tag_id = t.id
            WHERE n.title LIKE ? OR n.content LIKE ? OR t.name LIKE ?
            ORDER BY n.created_at DESC, n.id DESC
            """,
            (pattern, pattern, pattern),
        )

    @_retry_transient
    async def update_recall_script(self, note_id: int, script: str) -> bool:
        return await self._execute("UPDATE notes SET recall_script = ? WHERE id = ?", (script, note_id)) > 0

    @_retry_transient
    async def mark_note_shown(self, note_id: int, shown_at: float) -> bool:
        return await self._execute("UPDATE notes SET last_shown_at = ? WHERE id = ?", (shown_at, note_id)) > 0

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    @staticmethod
    def _text_record(row: aiosqlite.Row) -> TextEmbeddingRecord:
        return TextEmbeddingRecord(
            note_id=row["note_id"],
            embedding=row["embedding"],
            dimension=row["dimension"],
            text_hash=row["text_hash"],
            status=row["status"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _image_record(row: aiosqlite.Row, note_id: int = 0) -> ImageEmbeddingRecord:
        return ImageEmbeddingRecord(
            image_id=row["image_id"],
            description=row["description"],
            embedding=row["embedding"],
            dimension=row["dimension"],
            description_hash=row["description_hash"],
            status=row["status"],
            created_at=row["created_at"],
            note_id=note_id,
        )

    async def get_text_embedding(self, note_id: int) -> TextEmbeddingRecord | None:
        row = await self._fetchone(
            "SELECT note_id, embedding, dimension, text_hash, status, created_at FROM note_embeddings WHERE note_id = ?",
            (note_id,),
        )
        return self._text_record(row) if row else None

    @_retry_transient
    async def upsert_text_embedding(self, record: TextEmbeddingRecord) -> None:
        await self._execute(
            """
            INSERT INTO note_embeddings (note_id, embedding, dimension, text_hash, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(note_id) DO UPDATE SET
                embedding = excluded.embedding,
                dimension = excluded.dimension,
                text_hash = excluded.text_hash,
                status = excluded.status,
                created_at = excluded.created_at
            """,
            (record.note_id, record.embedding, record.dimension, record.text_hash, record.status, record.created_at),
        )

    @_retry_transient
    async def mark_text_embedding_failed(self, note_id: int) -> bool:
        return await self._execute("UPDATE note_embeddings SET status = 'failed' WHERE note_id = ?", (note_id,)) > 0

    async def get_image_embedding(self, image_id: int) -> ImageEmbeddingRecord | None:
        row = await self._fetchone(
            """
            SELECT ie.image_id, ie.description, ie.embedding, ie.dimension, ie.description_hash,
                   ie.status, ie.created_at, i.note_id
            FROM image_embeddings ie
            JOIN images i ON ie.image_id = i.id
            WHERE ie.image_id = ?
            """,
            (image_id,),
        )
        return self._image_record(row, row["note_id"]) if row else None

    @_retry_transient
    async def upsert_image_embedding(self, record: ImageEmbeddingRecord) -> None:
        await self._execute(
            """
            INSERT INTO image_embeddings
                (image_id, description, embedding, dimension, description_hash, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(image_id) DO UPDATE SET
                description = excluded.description,
                embedding = excluded.embedding,
                dimension = excluded.dimension,
                description_hash = excluded.description_hash,
                status = excluded.status,
                created_at = excluded.created_at
            """,
            (
                record.image_id,
                record.description,
                record.embedding,
                record.dimension,
                record.description_hash,
                record.status,
                record.created_at,
            ),
        )

    @_retry_transient
    async def mark_image_embedding_failed(self, image_id: int) -> bool:
        return await self._execute("UPDATE image_embeddings SET status = 'failed' WHERE image_id = ?", (image_id,)) > 0

    async def get_completed_text_embeddings(self) -> list[TextEmbeddingRecord]:
        rows = await self._fetchall(
            "SELECT note_id, embedding, dimension, text_hash, status, created_at "
            "FROM note_embeddings WHERE status = 'completed'"
        )
        return [self._text_record(row) for row in rows]

    async def get_completed_image_embeddings(self) -> list[ImageEmbeddingRecord]:
        rows = await self._fetchall(
            """
            SELECT ie.image_id, ie.description, ie.embedding, ie.dimension, ie.description_hash,
                   ie.status, ie.created_at, i.note_id
            FROM image_embeddings ie
            JOIN images i ON ie.image_id = i.id
            WHERE ie.status = 'completed'
            """
        )
        return [self._image_record(row, row["note_id"]) for row in rows]
