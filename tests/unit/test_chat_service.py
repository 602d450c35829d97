"""Unit tests for ChatService."""

from unittest.mock import AsyncMock

import numpy as np
import pytest

from conftest import FakeCompleter
from memoriq.config import ChatSettings, RetrievalSettings
from memoriq.inference.base import ModelNotReadyError
from memoriq.inference.model_service import ModelService
from memoriq.models.responses import RetrievedImage, RetrievedNote
from memoriq.services.chat_service import ChatService
from memoriq.services.embedding_service import EmbeddingGenerator
from memoriq.services.retrieval_service import SimilarityRetrievalEngine


def retrieved(note_id, title, score):
    return RetrievedNote(
        note_id=note_id,
        title=title,
        content=f"{title} content",
        tags=["family"],
        images=[RetrievedImage(uri="file://a.jpg", description="My sister")],
        similarity_score=score,
        match_type="text",
    )


@pytest.fixture
def embeddings():
    mock = AsyncMock(spec=EmbeddingGenerator)
    mock.generate_query_embedding.return_value = np.array([1.0, 0.0], dtype=np.float32)
    return mock


@pytest.fixture
def retrieval():
    mock = AsyncMock(spec=SimilarityRetrievalEngine)
    mock.retrieve.return_value = [retrieved(1, "Lake trip", 0.9), retrieved(2, "Picnic", 0.8)]
    return mock


@pytest.fixture
def service(embeddings, retrieval, models):
    return ChatService(embeddings, retrieval, models, ChatSettings(), RetrievalSettings())


class TestAnswer:
    @pytest.mark.asyncio
    async def test_grounds_on_top_note(self, service, fake_rag):
        answer = await service.answer("When did I go to the lake?")

        assert answer.text == "You went to the lake."
        assert [n.note_id for n in answer.notes] == [1, 2]
        call = fake_rag.calls[0]
        assert "Title: Lake trip" in call["system"]
        assert "Picnic" not in call["system"]
        assert "- Image 1: My sister" in call["system"]
        assert call["user"] == "When did I go to the lake?"

    @pytest.mark.asyncio
    async def test_sampling_params(self, service, fake_rag):
        await service.answer("question")

        params = fake_rag.calls[0]["params"]
        assert (params.n_predict, params.temperature, params.top_p, params.min_p) == (512, 0.5, 0.9, 0.05)

    @pytest.mark.asyncio
    async def test_default_top_k_is_chat_top_k(self, service, retrieval):
        await service.answer("question")
        assert retrieval.retrieve.await_args.args[1] == 3

    @pytest.mark.asyncio
    async def test_explicit_top_k(self, service, retrieval):
        await service.answer("question", top_k=1)
        assert retrieval.retrieve.await_args.args[1] == 1

    @pytest.mark.asyncio
    async def test_zero_top_k_is_not_replaced_by_default(self, service, retrieval):
        await service.answer("question", top_k=0)
        assert retrieval.retrieve.await_args.args[1] == 0

    @pytest.mark.asyncio
    async def test_no_query_embedding_answers_without_notes(self, service, embeddings, retrieval, fake_rag):
        embeddings.generate_query_embedding.return_value = None

        answer = await service.answer("question")

        retrieval.retrieve.assert_not_called()
        assert answer.notes == []
        assert "(None found)" in fake_rag.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_uses_rag_context_only(self, service, fake_recall):
        await service.answer("question")
        assert fake_recall.calls == []

    @pytest.mark.asyncio
    async def test_rag_not_ready(self, embeddings, retrieval):
        models = ModelService(rag=FakeCompleter(loaded=False))
        service = ChatService(embeddings, retrieval, models)

        with pytest.raises(ModelNotReadyError):
            await service.answer("question")
        embeddings.generate_query_embedding.assert_not_called()


class TestStreamAnswer:
    @pytest.mark.asyncio
    async def test_yields_tokens(self, service, fake_rag):
        fake_rag.responses = ["You went swimming."]

        tokens = [token async for token in service.stream_answer("question")]

        assert "".join(tokens).strip() == "You went swimming."
        assert len(tokens) == 3

    @pytest.mark.asyncio
    async def test_rag_not_ready(self, embeddings, retrieval):
        service = ChatService(embeddings, retrieval, ModelService())

        with pytest.raises(ModelNotReadyError):
            async for _ in service.stream_answer("question"):
                pass
