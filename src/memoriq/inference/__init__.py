"""Inference backends and the model service that serialises access to them."""

from .base import (
    CompletionCapability,
    EmbeddingCapability,
    InferenceError,
    ModelNotReadyError,
    SamplingParams,
)
from .model_service import ModelContext, ModelService

__all__ = [
    "CompletionCapability",
    "EmbeddingCapability",
    "InferenceError",
    "ModelContext",
    "ModelNotReadyError",
    "ModelService",
    "SamplingParams",
]
