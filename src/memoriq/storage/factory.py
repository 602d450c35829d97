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
Storage backend factory for the journal.

Creates and initializes the SQLite storage backend.
"""

import logging

from ..config import StorageSettings
from .base import NoteStorage
from .sqlite_storage import SQLiteNoteStorage

logger = logging.getLogger(__name__)


async def create_storage_instance(storage_settings: StorageSettings | None = None) -> NoteStorage:
    """
    Create and initialize the SQLite storage backend instance.

    Args:
        storage_settings: Store location; defaults to the global settings

    Returns:
        Initialized SQLiteNoteStorage instance
    """
    if storage_settings is None:
        from ..config import settings

        storage_settings = settings.storage

    db_path = str(storage_settings.db_path.expanduser())
    logger.info(f"Creating SQLite storage backend at {db_path}...")

    storage = SQLiteNoteStorage(db_path=db_path, busy_timeout_ms=storage_settings.busy_timeout_ms)
    await storage.initialize()
    logger.info("SQLiteNoteStorage initialized successfully")

    return storage
