"""
Runtime wiring.

Builds the store, the model service and every service on top of them, and
tears them down in reverse order.  Everything is passed explicitly; tests
build a runtime around an in-memory store and fake models.
"""

import logging
from dataclasses import dataclass

from .config import Settings
from .inference.model_service import ModelService
from .services.chat_service import ChatService
from .services.embedding_service import EmbeddingGenerator
from .services.note_service import NoteService
from .services.quiz_service import QuizService
from .services.reminisce_service import ReminisceService
from .services.retrieval_service import SimilarityRetrievalEngine
from .services.script_service import RecallScriptGenerator
from .storage.base import NoteStorage

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Every long-lived component of a running journal."""

    settings: Settings
    storage: NoteStorage
    models: ModelService
    embeddings: EmbeddingGenerator
    retrieval: SimilarityRetrievalEngine
    scripts: RecallScriptGenerator
    notes: NoteService
    reminisce: ReminisceService
    chat: ChatService
    quiz: QuizService

    async def close(self) -> None:
        """Drain background work, then release models and the store."""
        logger.info("Shutting down memoriq runtime...")
        await self.notes.close()
        await self.models.unload()
        await self.storage.close()


def build_services(app_settings: Settings, storage: NoteStorage, models: ModelService) -> Runtime:
    """Assemble the services around an already-open store and model service."""
    embeddings = EmbeddingGenerator(storage, models, app_settings.embedding, app_settings.model.embedding_dimension)
    retrieval = SimilarityRetrievalEngine(storage, app_settings.retrieval)
    scripts = RecallScriptGenerator(storage, models, app_settings.script)
    return Runtime(
        settings=app_settings,
        storage=storage,
        models=models,
        embeddings=embeddings,
        retrieval=retrieval,
        scripts=scripts,
        notes=NoteService(storage, embeddings, scripts, app_settings.embedding, app_settings.script),
        reminisce=ReminisceService(storage, app_settings.reminisce),
        chat=ChatService(embeddings, retrieval, models, app_settings.chat, app_settings.retrieval),
        quiz=QuizService(storage, models, app_settings.quiz),
    )


async def create_runtime(
    app_settings: Settings | None = None,
    storage: NoteStorage | None = None,
    models: ModelService | None = None,
    load_models: bool = True,
) -> Runtime:
    """
    Open the store, load the models and wire the services.

    Args:
        app_settings: Configuration; defaults to the global settings
        storage: Pre-built store (initialized here if needed)
        models: Pre-built model service; defaults to sentence-transformers
            plus the configured completion server
        load_models: Load every model context before returning

    Returns:
        Ready-to-use Runtime
    """
    if app_settings is None:
        from .config import settings as app_settings

    if storage is None:
        from .storage.factory import create_storage_instance

        storage = await create_storage_instance(app_settings.storage)
    else:
        await storage.initialize()

    if models is None:
        models = ModelService.from_settings(app_settings.model)

    if load_models:
        status = await models.load()
        logger.info(f"Model contexts: {status}")

    return build_services(app_settings, storage, models)
