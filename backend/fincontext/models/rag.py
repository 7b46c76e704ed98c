"""Pydantic models for RAG: documents, chunks, search results and answers."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class DocumentCategory(StrEnum):
    FINANCIAL_STATEMENT = "financial_statement"
    INVESTMENT_REPORT = "investment_report"
    MARKET_RESEARCH = "market_research"
    BUSINESS_PLAN = "business_plan"
    REGULATORY_DOC = "regulatory_doc"
    TRANSACTION_RECORD = "transaction_record"
    GENERAL = "general"


AnalysisType = Literal[
    "summary",
    "key_insights",
    "financial_metrics",
    "risk_assessment",
    "recommendations",
]


class DocumentMetadata(BaseModel):
    """Metadata of an uploaded document, inherited by each of its chunks."""

    source: str
    file_name: str
    file_type: str
    uploaded_at: datetime.datetime
    user_id: str = "system"
    tags: list[str] = []
    category: DocumentCategory = DocumentCategory.GENERAL


class DocumentChunk(DocumentMetadata):
    """A token-bounded slice of a document's cleaned text."""

    id: str
    content: str
    document_id: str
    chunk_index: int
    total_chunks: int
    token_count: int

    @model_validator(mode="after")
    def _check_position(self) -> DocumentChunk:
        if not 0 <= self.chunk_index < self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} outside 0..{self.total_chunks - 1}"
            )
        return self

    def to_payload(self) -> dict[str, Any]:
        """Vector-store payload: every field except id and content."""
        return self.model_dump(mode="json", exclude={"id", "content"})

    @classmethod
    def from_payload(
        cls, chunk_id: str, content: str, payload: dict[str, Any]
    ) -> DocumentChunk:
        data = {k: v for k, v in payload.items() if k != "text"}
        return cls(id=chunk_id, content=content, **data)


class SearchFilters(BaseModel):
    file_type: str | None = None
    category: DocumentCategory | None = None
    user_id: str | None = None
    tags: list[str] | None = None
    document_id: str | None = None

    def to_where(self) -> dict[str, str | list[str]]:
        """Flat metadata filter; list values mean "any of"."""
        where: dict[str, str | list[str]] = {}
        if self.file_type:
            where["file_type"] = self.file_type
        if self.category:
            where["category"] = self.category.value
        if self.user_id:
            where["user_id"] = self.user_id
        if self.tags:
            where["tags"] = list(self.tags)
        if self.document_id:
            where["document_id"] = self.document_id
        return where


class SearchResult(BaseModel):
    """A chunk returned by semantic search with its scores."""

    chunk: DocumentChunk
    similarity: float
    relevance: float


class RAGResponse(BaseModel):
    response: str
    sources: list[DocumentChunk]
    context_used: str
    token_count: int
    confidence: float = Field(ge=0.0, le=1.0)


class DocumentProcessingResult(BaseModel):
    success: bool
    chunks_created: int
    document_id: str
    metadata: DocumentMetadata | None = None
    error: str | None = None


class CollectionStats(BaseModel):
    total_documents: int
    collection_name: str
    embedding_model: str
    chunk_size: int
    is_initialized: bool
    status: str | None = None
