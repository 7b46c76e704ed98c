"""Service construction and FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from qdrant_client import AsyncQdrantClient

from fincontext.config import Settings
from fincontext.services.answer_service import AnswerService
from fincontext.services.chunker import TextChunker, TiktokenTokenizer
from fincontext.services.embeddings import (
    Embedder,
    SentenceTransformerEmbedder,
    VertexEmbedder,
)
from fincontext.services.generation import ClaudeTextGenerator
from fincontext.services.rag_service import RAGService
from fincontext.services.vector_store import VectorStore


@dataclass
class Services:
    rag: RAGService
    answers: AnswerService


def create_qdrant_client(settings: Settings) -> AsyncQdrantClient:
    """Remote Qdrant when a URL is configured, on-disk local mode otherwise."""
    if settings.qdrant_url:
        kwargs: dict = {"url": settings.qdrant_url}
        if settings.qdrant_api_key:
            kwargs["api_key"] = settings.qdrant_api_key
        return AsyncQdrantClient(**kwargs)
    return AsyncQdrantClient(path=settings.qdrant_path)


def create_embedder(settings: Settings) -> Embedder:
    if settings.embedding_provider == "vertex":
        return VertexEmbedder(
            settings.embedding_model,
            settings.embedding_dimensions,
            project=settings.gcp_project_id,
            location=settings.gcp_location,
            api_key=settings.google_api_key,
        )
    return SentenceTransformerEmbedder(
        settings.embedding_model, settings.embedding_dimensions
    )


def build_services(settings: Settings) -> Services:
    tokenizer = TiktokenTokenizer(settings.tokenizer_encoding)
    store = VectorStore(
        lambda: create_qdrant_client(settings),
        collection_name=settings.qdrant_collection,
        dimensions=settings.embedding_dimensions,
    )
    rag = RAGService(
        store,
        create_embedder(settings),
        TextChunker(tokenizer, settings.chunk_size, settings.chunk_overlap),
        warm_up_embedder=settings.embedding_warmup,
    )
    answers = AnswerService(
        rag,
        ClaudeTextGenerator(settings.ai_model),
        tokenizer,
        max_context_tokens=settings.max_context_tokens,
    )
    return Services(rag=rag, answers=answers)


def get_rag_service(request: Request) -> RAGService:
    return request.app.state.services.rag


def get_answer_service(request: Request) -> AnswerService:
    return request.app.state.services.answers
