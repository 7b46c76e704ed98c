"""RAG service: document indexing, semantic search, deletion and stats."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

from fincontext.models.rag import (
    CollectionStats,
    DocumentChunk,
    DocumentMetadata,
    DocumentProcessingResult,
    SearchFilters,
    SearchResult,
)
from fincontext.services.chunker import TextChunker, TokenizerError, clean_text
from fincontext.services.embeddings import Embedder, EmbeddingError
from fincontext.services.vector_store import VectorStore, VectorStoreError

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.8
KEYWORD_WEIGHT = 0.2


def keyword_score(query: str, content: str) -> float:
    """Fraction of query words found in (or containing) some content word."""
    query_words = query.lower().split()
    if not query_words:
        return 0.0
    content_words = content.lower().split()
    matches = sum(
        1
        for word in query_words
        if any(word in c_word or c_word in word for c_word in content_words)
    )
    return matches / len(query_words)


def calculate_relevance(query: str, content: str, similarity: float) -> float:
    """Blend vector similarity with lexical overlap."""
    return (
        SIMILARITY_WEIGHT * similarity
        + KEYWORD_WEIGHT * keyword_score(query, content)
    )


class RAGService:
    """Indexes documents and answers similarity queries over the vector store.

    The store and embedder are injected. If ``initialize()`` fails the service
    stays up but reports itself unavailable: reads return empty results and
    writes return failure results.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        chunker: TextChunker,
        *,
        warm_up_embedder: bool = True,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.chunker = chunker
        self.warm_up_embedder = warm_up_embedder
        self.is_initialized = False

    async def initialize(self) -> bool:
        try:
            await asyncio.to_thread(self.chunker.warm_up)
            await self.store.connect()
            if self.warm_up_embedder:
                await self.embedder.warm_up()
        except (TokenizerError, VectorStoreError, EmbeddingError) as e:
            logger.error("Failed to initialize RAG service: %s", e)
            logger.warning("RAG service will continue without vector search")
            self.is_initialized = False
            return False
        self.is_initialized = True
        logger.info(
            "RAG service initialized (collection=%s, model=%s)",
            self.store.collection_name,
            self.embedder.model_name,
        )
        return True

    async def close(self) -> None:
        await self.store.close()
        self.is_initialized = False

    # --- Indexing ---

    async def process_document(
        self, content: str, metadata: DocumentMetadata
    ) -> DocumentProcessingResult:
        """Clean, chunk, embed and index one document atomically."""
        if not self.is_initialized:
            return DocumentProcessingResult(
                success=False,
                chunks_created=0,
                document_id="",
                error="RAG service not initialized - vector store unavailable",
            )

        started = time.perf_counter()
        document_id = str(uuid.uuid4())
        try:
            chunks = self.chunker.split(
                clean_text(content), document_id=document_id, metadata=metadata
            )
            if chunks:
                vectors = await self.embedder.embed_batch([c.content for c in chunks])
                await self.store.upsert(
                    ids=[c.id for c in chunks],
                    vectors=vectors,
                    documents=[c.content for c in chunks],
                    metadatas=[c.to_payload() for c in chunks],
                )
        except (TokenizerError, EmbeddingError, VectorStoreError) as e:
            logger.exception(
                "Indexing failed for %s after %.0fms",
                metadata.file_name,
                (time.perf_counter() - started) * 1000,
            )
            return DocumentProcessingResult(
                success=False,
                chunks_created=0,
                document_id="",
                metadata=metadata,
                error=str(e),
            )

        if not chunks:
            logger.warning("No indexable content in %s", metadata.file_name)
            return DocumentProcessingResult(
                success=False,
                chunks_created=0,
                document_id="",
                metadata=metadata,
                error=f"No indexable content found in {metadata.file_name}",
            )

        logger.info(
            "Indexed %s as %s: %d chunks in %.0fms",
            metadata.file_name,
            document_id,
            len(chunks),
            (time.perf_counter() - started) * 1000,
        )
        return DocumentProcessingResult(
            success=True,
            chunks_created=len(chunks),
            document_id=document_id,
            metadata=metadata,
        )

    # --- Search ---

    async def semantic_search(
        self,
        query: str,
        limit: int = 10,
        threshold: float = 0.7,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """Embed query, search the store, drop weak matches, rank by relevance."""
        if not self.is_initialized:
            logger.warning("Semantic search requested but RAG service not initialized")
            return []

        logger.info(
            "RAG search: query=%r limit=%d threshold=%.2f filters=%s",
            query,
            limit,
            threshold,
            filters.to_where() if filters else None,
        )
        started = time.perf_counter()
        try:
            query_vector = await self.embedder.embed(query)
            hits = await self.store.query(
                query_vector,
                k=limit,
                where=filters.to_where() if filters else None,
            )
        except (EmbeddingError, VectorStoreError):
            logger.exception("Semantic search failed for query %r", query)
            return []

        results = []
        for hit in hits:
            similarity = 1.0 - hit.distance
            if similarity < threshold:
                continue
            chunk = DocumentChunk.from_payload(hit.id, hit.document, hit.metadata)
            results.append(
                SearchResult(
                    chunk=chunk,
                    similarity=similarity,
                    relevance=calculate_relevance(query, chunk.content, similarity),
                )
            )
        results.sort(key=lambda r: r.relevance, reverse=True)

        logger.info(
            "Store returned %d points, %d above threshold (%.0fms)",
            len(hits),
            len(results),
            (time.perf_counter() - started) * 1000,
        )
        for r in results:
            logger.debug(
                "  similarity=%.3f relevance=%.3f file=%r chunk=%d/%d",
                r.similarity,
                r.relevance,
                r.chunk.file_name,
                r.chunk.chunk_index + 1,
                r.chunk.total_chunks,
            )
        return results

    # --- Maintenance ---

    async def delete_document(self, document_id: str) -> bool:
        """Remove every chunk of a document. False if none were found."""
        if not self.is_initialized:
            logger.warning("Document deletion requested but RAG service not initialized")
            return False

        records = await self.store.get({"document_id": document_id})
        if not records.ids:
            logger.info("No chunks found for document %s", document_id)
            return False

        await self.store.delete(records.ids)
        logger.info("Deleted document %s (%d chunks)", document_id, len(records.ids))
        return True

    async def get_collection_stats(self) -> CollectionStats:
        stats = CollectionStats(
            total_documents=0,
            collection_name=self.store.collection_name,
            embedding_model=self.embedder.model_name,
            chunk_size=self.chunker.chunk_size,
            is_initialized=self.is_initialized,
        )
        if not self.is_initialized:
            stats.status = "Vector store unavailable"
            return stats
        stats.total_documents = await self.store.count()
        return stats
