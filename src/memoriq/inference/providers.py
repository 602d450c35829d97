"""
Concrete inference backends.

- :class:`SentenceTransformerEmbedder` runs a local sentence-transformers
  model; encoding happens in the default executor so the event loop is not
  blocked.
- :class:`OpenAICompatibleCompleter` talks to a local llama.cpp-style server
  over ``/v1/chat/completions`` with ``httpx``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from .base import EmbeddingKind, InferenceError, SamplingParams

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """Embedding backend on top of ``sentence_transformers.SentenceTransformer``."""

    def __init__(self, model_name: str, device: str | None = None):
        self.model_name = model_name
        self.device = device
        self._model: Any = None
        self._model_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def _load_sync(self) -> None:
        # Double-checked so concurrent load() calls only build the model once
        if self._model is not None:
            return
        with self._model_lock:
            if self._model is not None:
                return
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self.model_name}")
            self._model = SentenceTransformer(self.model_name, device=self.device, trust_remote_code=True)
            logger.info(f"Loaded model: {self.model_name} on device: {self._model.device}")

    async def load(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load_sync)

    async def unload(self) -> None:
        with self._model_lock:
            self._model = None

    def _encode(self, text: str, kind: EmbeddingKind) -> list[float]:
        model = self._model
        if model is None:
            raise InferenceError("Embedding model is not loaded")

        # Instruction-tuned models (Nomic, E5) ship "query"/"document" prompts
        prompts = getattr(model, "prompts", None) or {}
        if kind in prompts:
            vector = model.encode(text, prompt_name=kind, convert_to_tensor=False)
        else:
            vector = model.encode(text, convert_to_tensor=False)
        return vector.tolist() if hasattr(vector, "tolist") else list(vector)

    async def embed(self, text: str, kind: EmbeddingKind = "document") -> Sequence[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, text, kind)


class OpenAICompatibleCompleter:
    """Completion backend for an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_loaded(self) -> bool:
        return self._client is not None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def load(self) -> None:
        """Open the HTTP client and check that the server answers."""
        client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )
        try:
            response = await client.get("/v1/models")
            response.raise_for_status()
        except httpx.HTTPError:
            await client.aclose()
            raise
        self._client = client

    async def unload(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _payload(self, system_prompt: str, user_prompt: str, params: SamplingParams, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": params.n_predict,
            "temperature": params.temperature,
            "top_p": params.top_p,
            "stream": stream,
        }
        # llama.cpp extensions; omitted when unset so stricter servers accept the request
        if params.top_k is not None:
            payload["top_k"] = params.top_k
        if params.min_p is not None:
            payload["min_p"] = params.min_p
        if params.stop:
            payload["stop"] = params.stop
        return payload

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise InferenceError(f"Completion backend for {self.model} is not loaded")
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> str:
        client = self._require_client()
        try:
            response = await client.post(
                "/v1/chat/completions",
                json=self._payload(system_prompt, user_prompt, params, stream=False),
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise InferenceError(f"Completion request failed: {e}") from e

        choices = data.get("choices") or []
        if not choices:
            logger.warning("Completion response has no choices")
            return ""
        message = choices[0].get("message") or {}
        return (message.get("content") or "").strip()

    async def stream(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent-events completion."""
        client = self._require_client()
        try:
            async with client.stream(
                "POST",
                "/v1/chat/completions",
                json=self._payload(system_prompt, user_prompt, params, stream=True),
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed stream chunk: {data[:80]}")
                        continue
                    for choice in chunk.get("choices") or []:
                        token = (choice.get("delta") or {}).get("content")
                        if token:
                            yield token
        except httpx.HTTPError as e:
            raise InferenceError(f"Streaming completion failed: {e}") from e
