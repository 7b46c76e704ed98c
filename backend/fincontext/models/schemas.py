"""Pydantic request/response/error schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fincontext.models.rag import AnalysisType, DocumentCategory, SearchFilters


class SemanticSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=10, ge=1, le=50)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    file_type: str | None = None
    category: DocumentCategory | None = None
    tags: list[str] | None = None
    user_id: str | None = None

    def filters(self) -> SearchFilters:
        return SearchFilters(
            file_type=self.file_type,
            category=self.category,
            tags=self.tags,
            user_id=self.user_id,
        )


class RAGQueryRequest(BaseModel):
    query: str
    max_context_tokens: int = Field(default=4000, ge=100, le=8000)
    context_chunks: int = Field(default=5, ge=1, le=20)
    category: DocumentCategory | None = None
    domain: str | None = None


class FocusedQueryRequest(BaseModel):
    query: str = ""
    max_context_tokens: int = Field(default=4000, ge=100, le=8000)
    context_chunks: int = Field(default=5, ge=1, le=20)


class AnalyzeDocumentRequest(BaseModel):
    analysis_type: AnalysisType
    document_id: str | None = None
    focus_areas: list[str] | None = None


class RiskAssessmentRequest(BaseModel):
    document_id: str | None = None


class DailyInsightsRequest(BaseModel):
    user_id: str | None = None


class DeleteDocumentResponse(BaseModel):
    success: bool


# --- Error schema ---


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict = {}
