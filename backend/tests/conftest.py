"""Test fixtures and configuration."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from qdrant_client import AsyncQdrantClient

from fincontext.dependencies import get_answer_service, get_rag_service
from fincontext.main import app
from fincontext.services.answer_service import AnswerService
from fincontext.services.chunker import TextChunker
from fincontext.services.embeddings import EmbeddingError
from fincontext.services.rag_service import RAGService
from fincontext.services.vector_store import VectorStore

DIM = 4


class WordTokenizer:
    """One token per whitespace-separated word; decodes with single spaces."""

    def __init__(self) -> None:
        self._ids: dict[str, int] = {}
        self._words: list[str] = []

    def encode(self, text: str) -> list[int]:
        tokens = []
        for word in text.split():
            if word not in self._ids:
                self._ids[word] = len(self._words)
                self._words.append(word)
            tokens.append(self._ids[word])
        return tokens

    def decode(self, tokens: list[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


class FakeEmbedder:
    """Returns preset vectors per text, ``default`` otherwise."""

    model_name = "fake-embedder"
    dimensions = DIM

    def __init__(self) -> None:
        self.vectors: dict[str, list[float]] = {}
        self.default = [1.0, 0.0, 0.0, 0.0]
        self.fail = False
        self.calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("model exploded")
        self.calls.append(text)
        return self.vectors.get(text, self.default)

    async def warm_up(self) -> None:
        if self.fail:
            raise EmbeddingError("model exploded")

    async def embed(self, text: str) -> list[float]:
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]


class FakeGenerator:
    """Records prompts and replies with a fixed answer."""

    def __init__(self, reply: str = "Revenue grew 12% year on year [source].") -> None:
        self.reply = reply
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.reply


@pytest.fixture
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
async def store() -> AsyncIterator[VectorStore]:
    """In-memory Qdrant collection."""
    vector_store = VectorStore(
        lambda: AsyncQdrantClient(location=":memory:"),
        collection_name="test_documents",
        dimensions=DIM,
    )
    await vector_store.connect()
    yield vector_store
    await vector_store.close()


@pytest.fixture
async def rag_service(
    store: VectorStore, embedder: FakeEmbedder, tokenizer: WordTokenizer
) -> RAGService:
    service = RAGService(
        store,
        embedder,
        TextChunker(tokenizer, chunk_size=50, chunk_overlap=5),
        warm_up_embedder=False,
    )
    await service.initialize()
    return service


@pytest.fixture
def answer_service(
    rag_service: RAGService, generator: FakeGenerator, tokenizer: WordTokenizer
) -> AnswerService:
    return AnswerService(rag_service, generator, tokenizer, max_context_tokens=4000)


@pytest.fixture
async def client(
    rag_service: RAGService, answer_service: AnswerService
) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_rag_service] = lambda: rag_service
    app.dependency_overrides[get_answer_service] = lambda: answer_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
