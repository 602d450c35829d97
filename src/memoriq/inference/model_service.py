"""
Model service: the three inference contexts of the journal.

``rag`` answers chat questions, ``recall`` writes recall scripts and quiz
questions, ``embedding`` produces every vector.  Each context has its own
``asyncio.Lock``, so at most one inference runs against a context at a time
while different contexts may run concurrently.  The service is built
explicitly and injected into every consumer; there is no module-level
instance.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Generic, Literal, TypeVar

from ..config import ModelSettings
from .base import (
    CompletionCapability,
    EmbeddingCapability,
    EmbeddingKind,
    ModelBackend,
    ModelNotReadyError,
    SamplingParams,
)

logger = logging.getLogger(__name__)

CompletionContextName = Literal["rag", "recall"]

B = TypeVar("B", bound=ModelBackend)


class ModelContext(Generic[B]):
    """A named backend with its loading state and inference lock."""

    def __init__(self, name: str, backend: B | None):
        self.name = name
        self.backend = backend
        self._lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self.backend is not None and self.backend.is_loaded

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def load(self) -> bool:
        """Load the backend; a failure is logged and leaves the context not ready."""
        if self.backend is None:
            logger.info(f"Model context '{self.name}' has no backend configured")
            return False
        try:
            await self.backend.load()
        except Exception as e:
            logger.warning(f"Failed to load model context '{self.name}': {e}")
            return False
        logger.info(f"Model context '{self.name}' loaded")
        return True

    async def unload(self) -> None:
        if self.backend is None or not self.backend.is_loaded:
            return
        async with self._lock:
            try:
                await self.backend.unload()
            except Exception as e:
                logger.warning(f"Failed to unload model context '{self.name}': {e}")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[B]:
        """Hold this context exclusively for one inference.

        Raises:
            ModelNotReadyError: If the backend is not loaded.
        """
        if not self.is_ready:
            raise ModelNotReadyError(self.name)
        async with self._lock:
            # unloaded while waiting for the lock
            if not self.is_ready:
                raise ModelNotReadyError(self.name)
            yield self.backend


class ModelService:
    """Owns the ``rag``, ``recall`` and ``embedding`` contexts."""

    def __init__(
        self,
        embedder: EmbeddingCapability | None = None,
        rag: CompletionCapability | None = None,
        recall: CompletionCapability | None = None,
    ):
        self.embedding: ModelContext[EmbeddingCapability] = ModelContext("embedding", embedder)
        self.rag: ModelContext[CompletionCapability] = ModelContext("rag", rag)
        self.recall: ModelContext[CompletionCapability] = ModelContext("recall", recall)

    @classmethod
    def from_settings(cls, model_settings: ModelSettings) -> ModelService:
        """Build the default backends: sentence-transformers plus an OpenAI-compatible server."""
        from .providers import OpenAICompatibleCompleter, SentenceTransformerEmbedder

        api_key = model_settings.api_key.get_secret_value() if model_settings.api_key else None
        return cls(
            embedder=SentenceTransformerEmbedder(
                model_name=model_settings.embedding_model,
                device=model_settings.device,
            ),
            rag=OpenAICompatibleCompleter(
                base_url=model_settings.completion_base_url,
                model=model_settings.rag_model,
                api_key=api_key,
                timeout=model_settings.request_timeout_seconds,
            ),
            recall=OpenAICompatibleCompleter(
                base_url=model_settings.completion_base_url,
                model=model_settings.recall_model,
                api_key=api_key,
                timeout=model_settings.request_timeout_seconds,
            ),
        )

    @property
    def contexts(self) -> tuple[ModelContext, ...]:
        return (self.embedding, self.rag, self.recall)

    def _completion_context(self, name: CompletionContextName) -> ModelContext[CompletionCapability]:
        if name == "rag":
            return self.rag
        if name == "recall":
            return self.recall
        raise ValueError(f"Unknown completion context: {name}")

    # -- readiness -----------------------------------------------------------

    def is_embedding_ready(self) -> bool:
        return self.embedding.is_ready

    def is_rag_ready(self) -> bool:
        return self.rag.is_ready

    def is_recall_ready(self) -> bool:
        return self.recall.is_ready

    # -- lifecycle -----------------------------------------------------------

    async def load(self) -> dict[str, bool]:
        """Load every context concurrently; returns which ones came up."""
        results = await asyncio.gather(*(ctx.load() for ctx in self.contexts))
        return {ctx.name: ok for ctx, ok in zip(self.contexts, results)}

    async def unload(self) -> None:
        await asyncio.gather(*(ctx.unload() for ctx in self.contexts))

    # -- inference -----------------------------------------------------------

    async def embed(self, text: str, kind: EmbeddingKind = "document") -> list[float]:
        """Embed ``text`` on the embedding context.

        Raises:
            ModelNotReadyError: If the embedding model is not loaded.
        """
        async with self.embedding.acquire() as embedder:
            return list(await embedder.embed(text, kind))

    async def complete(
        self,
        context: CompletionContextName,
        system_prompt: str,
        user_prompt: str,
        params: SamplingParams,
    ) -> str:
        """Run one completion on ``context`` (``"rag"`` or ``"recall"``).

        Raises:
            ModelNotReadyError: If that context is not loaded.
        """
        async with self._completion_context(context).acquire() as completer:
            return await completer.complete(system_prompt, user_prompt, params)

    async def stream_complete(
        self,
        context: CompletionContextName,
        system_prompt: str,
        user_prompt: str,
        params: SamplingParams,
    ) -> AsyncIterator[str]:
        """Stream tokens from ``context``; the context stays locked until the stream ends."""
        async with self._completion_context(context).acquire() as completer:
            async for token in completer.stream(system_prompt, user_prompt, params):
                yield token

    def get_status(self) -> dict[str, dict[str, bool]]:
        return {ctx.name: {"ready": ctx.is_ready, "busy": ctx.is_busy} for ctx in self.contexts}
