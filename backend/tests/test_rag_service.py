"""Unit tests for rag_service: indexing, search, ranking, deletion, stats."""

from __future__ import annotations

import datetime

import pytest
from qdrant_client import AsyncQdrantClient

from fincontext.models.rag import DocumentCategory, DocumentMetadata, SearchFilters
from fincontext.services.chunker import TextChunker, TokenizerError
from fincontext.services.rag_service import (
    RAGService,
    calculate_relevance,
    keyword_score,
)
from fincontext.services.vector_store import VectorStore, VectorStoreError

REVENUE_TEXT = "Quarterly revenue increased across all business divisions"


class _UnloadableTokenizer:
    """Tokenizer whose encoding never loads (no network for the BPE files)."""

    def __init__(self) -> None:
        self.fail = True
        self._words: list[str] = []

    def encode(self, text: str) -> list[int]:
        if self.fail:
            raise TokenizerError("Failed to load tiktoken encoding cl100k_base: offline")
        self._words.extend(text.split())
        return list(range(len(self._words) - len(text.split()), len(self._words)))

    def decode(self, tokens: list[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


def _metadata(
    file_name: str = "q3-report.txt",
    category: DocumentCategory = DocumentCategory.FINANCIAL_STATEMENT,
    user_id: str = "user-1",
    tags: list[str] | None = None,
) -> DocumentMetadata:
    return DocumentMetadata(
        source=f"/uploads/{file_name}",
        file_name=file_name,
        file_type="txt",
        uploaded_at=datetime.datetime(2025, 3, 1, tzinfo=datetime.UTC),
        user_id=user_id,
        tags=tags or [],
        category=category,
    )


def _numbered_words(count: int) -> str:
    return " ".join(f"w{i:04d}" for i in range(count))


# --- Keyword scoring ---


class TestKeywordScore:
    def test_partial_overlap(self) -> None:
        assert keyword_score("revenue growth", REVENUE_TEXT) == 0.5

    def test_substring_either_direction(self) -> None:
        assert keyword_score("divisions", "division totals") == 1.0
        assert keyword_score("div", "division totals") == 1.0

    def test_case_insensitive(self) -> None:
        assert keyword_score("REVENUE", "revenue up") == 1.0

    def test_empty_query(self) -> None:
        assert keyword_score("", "anything") == 0.0
        assert keyword_score("   ", "anything") == 0.0

    def test_relevance_blend(self) -> None:
        assert calculate_relevance("revenue growth", REVENUE_TEXT, 0.95) == (
            pytest.approx(0.86)
        )


# --- Indexing ---


class TestProcessDocument:
    async def test_indexes_all_chunks(
        self, rag_service: RAGService, store: VectorStore
    ) -> None:
        result = await rag_service.process_document(_numbered_words(320), _metadata())

        assert result.success is True
        assert result.chunks_created == 7
        assert result.document_id
        assert await store.count() == 7

        records = await store.get({"document_id": result.document_id})
        assert len(records.ids) == 7

    async def test_chunk_payload_consistent(
        self, rag_service: RAGService
    ) -> None:
        result = await rag_service.process_document(_numbered_words(320), _metadata())
        hits = await rag_service.semantic_search("w0001", limit=20, threshold=0.0)

        assert len(hits) == 7
        assert {h.chunk.document_id for h in hits} == {result.document_id}
        assert {h.chunk.total_chunks for h in hits} == {7}
        assert sorted(h.chunk.chunk_index for h in hits) == list(range(7))

    async def test_embedding_failure_writes_nothing(
        self, rag_service: RAGService, embedder, store: VectorStore
    ) -> None:
        embedder.fail = True
        result = await rag_service.process_document(_numbered_words(200), _metadata())

        assert result.success is False
        assert result.chunks_created == 0
        assert "model exploded" in result.error
        assert await store.count() == 0

    async def test_store_failure_reported(
        self, rag_service: RAGService, store: VectorStore, mocker
    ) -> None:
        mocker.patch.object(
            store, "upsert", side_effect=VectorStoreError("Upsert failed: timeout")
        )
        result = await rag_service.process_document(_numbered_words(200), _metadata())
        assert result.success is False
        assert "timeout" in result.error

    async def test_no_indexable_content(self, rag_service: RAGService) -> None:
        result = await rag_service.process_document("  \n\n ", _metadata())
        assert result.success is False
        assert result.chunks_created == 0
        assert "q3-report.txt" in result.error

    async def test_text_is_cleaned_before_chunking(
        self, rag_service: RAGService
    ) -> None:
        await rag_service.process_document(
            "Operating\r\nexpenses\t\tfell   sharply in the fourth quarter of the year",
            _metadata(),
        )
        hits = await rag_service.semantic_search("expenses", threshold=0.0)
        assert hits[0].chunk.content == (
            "Operating expenses fell sharply in the fourth quarter of the year"
        )


# --- Search ---


class TestSemanticSearch:
    async def test_relevance_example(
        self, rag_service: RAGService, embedder
    ) -> None:
        embedder.vectors["revenue growth"] = [1.0, 0.0, 0.0, 0.0]
        embedder.vectors[REVENUE_TEXT] = [0.95, 0.3122499, 0.0, 0.0]
        await rag_service.process_document(REVENUE_TEXT, _metadata())

        results = await rag_service.semantic_search(
            "revenue growth", limit=10, threshold=0.9
        )

        assert len(results) == 1
        assert results[0].similarity == pytest.approx(0.95, abs=1e-4)
        assert results[0].relevance == pytest.approx(0.86, abs=1e-4)
        assert results[0].chunk.content == REVENUE_TEXT

    async def test_threshold_excludes_weak_matches(
        self, rag_service: RAGService, embedder
    ) -> None:
        embedder.vectors["revenue growth"] = [1.0, 0.0, 0.0, 0.0]
        embedder.vectors[REVENUE_TEXT] = [0.95, 0.3122499, 0.0, 0.0]
        await rag_service.process_document(REVENUE_TEXT, _metadata())

        assert await rag_service.semantic_search("revenue growth", threshold=0.96) == []

    async def test_raising_threshold_never_adds_results(
        self, rag_service: RAGService, embedder
    ) -> None:
        texts = {
            "Cash reserves remain strong going into the new financial year": [1, 0, 0, 0],
            "Debt repayments were restructured over a longer period of time": [0.8, 0.6, 0, 0],
            "Marketing costs doubled compared with the same period last year": [0, 1, 0, 0],
        }
        for text, vector in texts.items():
            embedder.vectors[text] = vector
            await rag_service.process_document(text, _metadata())

        previous = None
        for threshold in (0.0, 0.5, 0.7, 0.9, 1.0):
            ids = {
                r.chunk.id
                for r in await rag_service.semantic_search("cash", threshold=threshold)
            }
            if previous is not None:
                assert ids <= previous
            previous = ids

    async def test_sorted_by_relevance(
        self, rag_service: RAGService, embedder
    ) -> None:
        close_text = "Unrelated wording that is semantically very close to the query"
        keyword_text = "Budget budget budget figures with a weaker vector match though"
        embedder.vectors["budget"] = [1.0, 0.0, 0.0, 0.0]
        embedder.vectors[close_text] = [1.0, 0.0, 0.0, 0.0]
        embedder.vectors[keyword_text] = [0.9, 0.43588989, 0.0, 0.0]
        await rag_service.process_document(close_text, _metadata())
        await rag_service.process_document(keyword_text, _metadata())

        results = await rag_service.semantic_search("budget", threshold=0.5)

        # 0.8 * 0.9 + 0.2 * 1.0 = 0.92 beats 0.8 * 1.0 + 0.0 = 0.80
        assert [r.chunk.content for r in results] == [keyword_text, close_text]
        assert results[0].relevance >= results[1].relevance

    async def test_limit(self, rag_service: RAGService) -> None:
        await rag_service.process_document(_numbered_words(320), _metadata())
        assert len(await rag_service.semantic_search("w0001", limit=3, threshold=0.0)) == 3

    async def test_category_filter(self, rag_service: RAGService) -> None:
        await rag_service.process_document(
            _numbered_words(60), _metadata(category=DocumentCategory.MARKET_RESEARCH)
        )
        await rag_service.process_document(
            _numbered_words(60), _metadata(category=DocumentCategory.BUSINESS_PLAN)
        )
        results = await rag_service.semantic_search(
            "w0001",
            threshold=0.0,
            filters=SearchFilters(category=DocumentCategory.BUSINESS_PLAN),
        )
        assert results
        assert {r.chunk.category for r in results} == {DocumentCategory.BUSINESS_PLAN}

    async def test_tags_match_any(self, rag_service: RAGService) -> None:
        await rag_service.process_document(
            _numbered_words(60), _metadata(file_name="a.txt", tags=["tax", "2024"])
        )
        await rag_service.process_document(
            _numbered_words(60), _metadata(file_name="b.txt", tags=["payroll"])
        )
        results = await rag_service.semantic_search(
            "w0001", threshold=0.0, filters=SearchFilters(tags=["2024", "audit"])
        )
        assert {r.chunk.file_name for r in results} == {"a.txt"}

    async def test_user_filter(self, rag_service: RAGService) -> None:
        await rag_service.process_document(_numbered_words(60), _metadata(user_id="alice"))
        await rag_service.process_document(_numbered_words(60), _metadata(user_id="bob"))
        results = await rag_service.semantic_search(
            "w0001", threshold=0.0, filters=SearchFilters(user_id="bob")
        )
        assert {r.chunk.user_id for r in results} == {"bob"}

    async def test_empty_store(self, rag_service: RAGService) -> None:
        assert await rag_service.semantic_search("anything", threshold=0.0) == []

    async def test_embedding_failure_returns_empty(
        self, rag_service: RAGService, embedder
    ) -> None:
        await rag_service.process_document(_numbered_words(60), _metadata())
        embedder.fail = True
        assert await rag_service.semantic_search("w0001", threshold=0.0) == []

    async def test_store_failure_returns_empty(
        self, rag_service: RAGService, store: VectorStore, mocker
    ) -> None:
        mocker.patch.object(
            store, "query", side_effect=VectorStoreError("Query failed: down")
        )
        assert await rag_service.semantic_search("anything") == []


# --- Deletion and stats ---


class TestDeleteDocument:
    async def test_delete_seven_chunks(
        self, rag_service: RAGService, store: VectorStore, mocker
    ) -> None:
        result = await rag_service.process_document(_numbered_words(320), _metadata())
        other = await rag_service.process_document(_numbered_words(60), _metadata())
        delete_spy = mocker.spy(store, "delete")

        assert await rag_service.delete_document(result.document_id) is True
        assert len(delete_spy.call_args.args[0]) == 7
        assert await store.count() == other.chunks_created

        assert await rag_service.delete_document(result.document_id) is False

    async def test_unknown_document(self, rag_service: RAGService) -> None:
        assert await rag_service.delete_document("no-such-document") is False


class TestCollectionStats:
    async def test_stats(self, rag_service: RAGService) -> None:
        await rag_service.process_document(_numbered_words(120), _metadata())
        stats = await rag_service.get_collection_stats()
        assert stats.total_documents == 3
        assert stats.collection_name == "test_documents"
        assert stats.embedding_model == "fake-embedder"
        assert stats.chunk_size == 50
        assert stats.is_initialized is True


# --- Unavailable vector store ---


class TestUninitialized:
    @pytest.fixture
    async def offline_service(self, embedder, tokenizer) -> RAGService:
        def _factory() -> AsyncQdrantClient:
            raise ConnectionError("connection refused")

        service = RAGService(
            VectorStore(_factory, "docs", dimensions=4),
            embedder,
            TextChunker(tokenizer, chunk_size=50, chunk_overlap=5),
        )
        assert await service.initialize() is False
        return service

    async def test_search_returns_empty(self, offline_service: RAGService) -> None:
        assert await offline_service.semantic_search("anything") == []

    async def test_process_fails(self, offline_service: RAGService) -> None:
        result = await offline_service.process_document(
            _numbered_words(100), _metadata()
        )
        assert result.success is False
        assert "not initialized" in result.error

    async def test_delete_returns_false(self, offline_service: RAGService) -> None:
        assert await offline_service.delete_document("doc-1") is False

    async def test_stats_report_unavailable(self, offline_service: RAGService) -> None:
        stats = await offline_service.get_collection_stats()
        assert stats.is_initialized is False
        assert stats.total_documents == 0
        assert stats.status == "Vector store unavailable"

    async def test_warm_up_failure(self, store: VectorStore, embedder, tokenizer) -> None:
        embedder.fail = True
        service = RAGService(
            store, embedder, TextChunker(tokenizer, chunk_size=50, chunk_overlap=5)
        )
        assert await service.initialize() is False
        assert service.is_initialized is False

    async def test_tokenizer_load_failure(self, store: VectorStore, embedder) -> None:
        service = RAGService(
            store,
            embedder,
            TextChunker(_UnloadableTokenizer(), chunk_size=50, chunk_overlap=5),
        )

        assert await service.initialize() is False
        result = await service.process_document(_numbered_words(100), _metadata())
        assert result.success is False
        assert "not initialized" in result.error
        assert await service.semantic_search("anything") == []


class TestTokenizerFailureAfterStartup:
    async def test_process_document_reports_failure(
        self, store: VectorStore, embedder
    ) -> None:
        tokenizer = _UnloadableTokenizer()
        tokenizer.fail = False
        service = RAGService(
            store,
            embedder,
            TextChunker(tokenizer, chunk_size=50, chunk_overlap=5),
            warm_up_embedder=False,
        )
        assert await service.initialize() is True

        tokenizer.fail = True
        result = await service.process_document(_numbered_words(100), _metadata())

        assert result.success is False
        assert "offline" in result.error
        assert await store.count() == 0
