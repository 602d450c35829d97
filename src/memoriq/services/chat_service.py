"""Chat Service - answer questions about the user's own memories."""

import logging
from collections.abc import AsyncIterator

from ..config import ChatSettings, RetrievalSettings
from ..inference.base import ModelNotReadyError, SamplingParams
from ..inference.model_service import ModelService
from ..models.responses import ChatAnswer, RetrievedNote
from ..utils.prompts import build_system_prompt
from .embedding_service import EmbeddingGenerator
from .retrieval_service import SimilarityRetrievalEngine

logger = logging.getLogger(__name__)


class ChatService:
    """Retrieval-augmented answers grounded on the best-matching note."""

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        retrieval: SimilarityRetrievalEngine,
        models: ModelService,
        settings: ChatSettings | None = None,
        retrieval_settings: RetrievalSettings | None = None,
    ):
        self.embeddings = embeddings
        self.retrieval = retrieval
        self.models = models
        self.settings = settings or ChatSettings()
        self.retrieval_settings = retrieval_settings or RetrievalSettings()
        self.params = SamplingParams.from_defaults(self.settings.sampling)

    async def retrieve_context(self, question: str, top_k: int | None = None) -> list[RetrievedNote]:
        """Notes relevant to ``question``; empty when the query cannot be embedded."""
        query_vector = await self.embeddings.generate_query_embedding(question)
        if query_vector is None:
            logger.debug("No query embedding, answering without notes")
            return []
        top_k = self.retrieval_settings.chat_top_k if top_k is None else top_k
        return await self.retrieval.retrieve(query_vector, top_k)

    async def answer(self, question: str, top_k: int | None = None) -> ChatAnswer:
        """
        Answer ``question`` from the journal.

        Raises:
            ModelNotReadyError: If the chat model is not loaded
        """
        if not self.models.is_rag_ready():
            raise ModelNotReadyError("rag")

        notes = await self.retrieve_context(question, top_k)
        text = await self.models.complete("rag", build_system_prompt(notes), question, self.params)
        return ChatAnswer(text=text.strip(), notes=notes)

    async def stream_answer(self, question: str, top_k: int | None = None) -> AsyncIterator[str]:
        """Like :meth:`answer`, yielding tokens as they are generated."""
        if not self.models.is_rag_ready():
            raise ModelNotReadyError("rag")

        notes = await self.retrieve_context(question, top_k)
        async for token in self.models.stream_complete("rag", build_system_prompt(notes), question, self.params):
            yield token
