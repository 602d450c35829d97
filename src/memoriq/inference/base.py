"""
Inference capability protocols.

The journal needs two kinds of model: an embedder (note text, image
captions, chat queries) and a text completer (chat answers, recall scripts,
quiz questions).  Backends implement these protocols and are wrapped by
:class:`~memoriq.inference.model_service.ModelContext`, which owns loading
state and per-context serialisation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..config import SamplingDefaults

EmbeddingKind = Literal["document", "query"]


class ModelNotReadyError(RuntimeError):
    """The model context needed for an operation is not loaded."""

    def __init__(self, context: str):
        super().__init__(f"Model context '{context}' is not loaded")
        self.context = context


class InferenceError(RuntimeError):
    """A loaded backend failed to produce a result."""


class SamplingParams(BaseModel):
    """Sampling parameters sent with one completion request."""

    n_predict: int = Field(default=256, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=1)
    min_p: float | None = Field(default=None, ge=0.0, le=1.0)
    stop: list[str] = Field(default_factory=list)

    @classmethod
    def from_defaults(cls, defaults: SamplingDefaults) -> SamplingParams:
        return cls(**defaults.model_dump())


@runtime_checkable
class ModelBackend(Protocol):
    """Something that can be loaded and released."""

    @property
    def is_loaded(self) -> bool: ...

    async def load(self) -> None: ...

    async def unload(self) -> None: ...


@runtime_checkable
class EmbeddingCapability(ModelBackend, Protocol):
    """Backend that turns text into a vector."""

    async def embed(self, text: str, kind: EmbeddingKind = "document") -> Sequence[float]:
        """Embed ``text``; an empty sequence means the backend produced nothing."""
        ...


@runtime_checkable
class CompletionCapability(ModelBackend, Protocol):
    """Backend that completes a system + user prompt pair."""

    async def complete(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> str: ...

    def stream(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> AsyncIterator[str]: ...
