import asyncio
import os
import sys

import pytest

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from memoriq.inference.model_service import ModelService  # noqa: E402
from memoriq.storage.sqlite_storage import SQLiteNoteStorage  # noqa: E402


class FakeEmbedder:
    """In-process embedding backend.

    ``vectors`` maps a lower-case substring to the vector returned for any
    text containing it; ``failures`` maps a substring to the exception raised.
    """

    def __init__(self, vectors=None, default=None, failures=None, loaded=True):
        self.vectors = dict(vectors or {})
        self.default = [1.0, 0.0, 0.0, 0.0] if default is None else default
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str]] = []
        self._loaded = loaded

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        self._loaded = True

    async def unload(self) -> None:
        self._loaded = False

    async def embed(self, text, kind="document"):
        self.calls.append((text, kind))
        lowered = text.lower()
        for key, error in self.failures.items():
            if key in lowered:
                raise error
        for key, vector in self.vectors.items():
            if key in lowered:
                return list(vector)
        return list(self.default)


class FakeCompleter:
    """In-process completion backend returning canned responses in order.

    The last response repeats once the list is exhausted.  An exception in
    the list is raised instead of returned.
    """

    def __init__(self, responses=None, loaded=True, delay=0.0):
        self.responses = list(responses or ["ok"])
        self.calls: list[dict] = []
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._loaded = loaded

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        self._loaded = True

    async def unload(self) -> None:
        self._loaded = False

    def _next(self):
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def complete(self, system_prompt, user_prompt, params):
        self.calls.append({"system": system_prompt, "user": user_prompt, "params": params})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self._next()
        finally:
            self.active -= 1
        if isinstance(response, BaseException):
            raise response
        return response

    async def stream(self, system_prompt, user_prompt, params):
        text = await self.complete(system_prompt, user_prompt, params)
        for token in text.split(" "):
            yield token + " "


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_recall():
    return FakeCompleter(["You went to the lake with your sister."])


@pytest.fixture
def fake_rag():
    return FakeCompleter(["You went to the lake."])


@pytest.fixture
def models(fake_embedder, fake_rag, fake_recall):
    """ModelService with every context backed by a fake."""
    return ModelService(embedder=fake_embedder, rag=fake_rag, recall=fake_recall)


@pytest.fixture
async def storage(tmp_path):
    """Real SQLite store in a temporary directory."""
    store = SQLiteNoteStorage(str(tmp_path / "memoriq.db"))
    await store.initialize()
    yield store
    await store.close()
