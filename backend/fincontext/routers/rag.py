"""RAG API endpoints: upload, search, grounded answers, analyses."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from fincontext.config import settings
from fincontext.dependencies import get_answer_service, get_rag_service
from fincontext.models.rag import (
    CollectionStats,
    DocumentCategory,
    DocumentProcessingResult,
    RAGResponse,
    SearchResult,
)
from fincontext.models.schemas import (
    AnalyzeDocumentRequest,
    DailyInsightsRequest,
    DeleteDocumentResponse,
    ErrorDetail,
    FocusedQueryRequest,
    RAGQueryRequest,
    RiskAssessmentRequest,
    SemanticSearchRequest,
)
from fincontext.services.answer_service import AnswerService, NoRelevantContentError
from fincontext.services.document_processor import (
    DocumentProcessingError,
    delete_file,
    process_file,
    save_uploaded_file,
    validate_upload,
)
from fincontext.services.generation import GenerationError
from fincontext.services.rag_service import RAGService
from fincontext.services.vector_store import VectorStoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/rag", tags=["rag"])

_FOCUS_ROUTES = {
    "portfolio-analysis": "portfolio_analysis",
    "market-insights": "market_insights",
    "compliance-check": "compliance_check",
}


def _generation_failed(e: GenerationError) -> HTTPException:
    logger.error("Text generation failed: %s (%s)", e.message, e.code)
    return HTTPException(
        status_code=502,
        detail=ErrorDetail(code=e.code, message=e.message).model_dump(),
    )


def _store_unavailable(e: VectorStoreError) -> HTTPException:
    logger.error("Vector store call failed: %s", e)
    return HTTPException(
        status_code=503,
        detail=ErrorDetail(code="VECTOR_STORE_UNAVAILABLE", message=str(e)).model_dump(),
    )


@router.post("/upload", response_model=DocumentProcessingResult)
async def upload_document(
    file: UploadFile = File(...),
    category: DocumentCategory | None = Form(None),
    tags: str | None = Form(None),
    user_id: str = Form("system"),
    rag: RAGService = Depends(get_rag_service),
) -> DocumentProcessingResult:
    if not file.filename:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="NO_FILE", message="No file provided").model_dump(),
        )

    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else []
    try:
        # file.size is None when the client sent no length
        validate_upload(file.filename, file.size or 0, settings.max_upload_bytes)
        data = await file.read(settings.max_upload_bytes + 1)
        validate_upload(file.filename, len(data), settings.max_upload_bytes)
        path = await asyncio.to_thread(
            save_uploaded_file, data, file.filename, user_id, Path(settings.upload_dir)
        )
        try:
            content, metadata = await asyncio.to_thread(
                process_file,
                path,
                file.filename,
                user_id,
                category=category,
                tags=tag_list,
            )
        finally:
            await asyncio.to_thread(delete_file, path)
    except DocumentProcessingError as e:
        logger.warning("Rejected upload %s: %s", file.filename, e)
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="INVALID_DOCUMENT", message=str(e)).model_dump(),
        )

    return await rag.process_document(content, metadata)


@router.post("/search", response_model=list[SearchResult])
async def semantic_search(
    request: SemanticSearchRequest,
    rag: RAGService = Depends(get_rag_service),
) -> list[SearchResult]:
    return await rag.semantic_search(
        request.query,
        limit=request.limit,
        threshold=request.threshold,
        filters=request.filters(),
    )


@router.post("/query", response_model=RAGResponse)
async def rag_query(
    request: RAGQueryRequest,
    answers: AnswerService = Depends(get_answer_service),
) -> RAGResponse:
    try:
        return await answers.answer(
            request.query,
            domain=request.domain,
            max_context_tokens=request.max_context_tokens,
            context_chunks=request.context_chunks,
            category=request.category,
        )
    except GenerationError as e:
        raise _generation_failed(e)


@router.post("/analyze", response_model=RAGResponse)
async def analyze_document(
    request: AnalyzeDocumentRequest,
    answers: AnswerService = Depends(get_answer_service),
) -> RAGResponse:
    try:
        return await answers.analyze_document(
            request.analysis_type,
            document_id=request.document_id,
            focus_areas=request.focus_areas,
        )
    except NoRelevantContentError as e:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="NO_RELEVANT_CONTENT", message=str(e)).model_dump(),
        )
    except GenerationError as e:
        raise _generation_failed(e)


@router.post("/financial/risk-assessment", response_model=RAGResponse)
async def risk_assessment(
    request: RiskAssessmentRequest,
    answers: AnswerService = Depends(get_answer_service),
) -> RAGResponse:
    try:
        return await answers.risk_assessment(request.document_id)
    except NoRelevantContentError as e:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="NO_RELEVANT_CONTENT", message=str(e)).model_dump(),
        )
    except GenerationError as e:
        raise _generation_failed(e)


@router.post("/financial/{focus}", response_model=RAGResponse)
async def focused_query(
    focus: Literal["portfolio-analysis", "market-insights", "compliance-check"],
    request: FocusedQueryRequest,
    answers: AnswerService = Depends(get_answer_service),
) -> RAGResponse:
    try:
        return await answers.focused_query(
            _FOCUS_ROUTES[focus],
            request.query,
            max_context_tokens=request.max_context_tokens,
            context_chunks=request.context_chunks,
        )
    except GenerationError as e:
        raise _generation_failed(e)


@router.post("/insights/daily", response_model=dict[str, RAGResponse])
async def daily_insights(
    request: DailyInsightsRequest,
    answers: AnswerService = Depends(get_answer_service),
) -> dict[str, RAGResponse]:
    try:
        return await answers.daily_insights(request.user_id)
    except GenerationError as e:
        raise _generation_failed(e)


@router.get("/stats", response_model=CollectionStats)
async def get_stats(rag: RAGService = Depends(get_rag_service)) -> CollectionStats:
    try:
        return await rag.get_collection_stats()
    except VectorStoreError as e:
        raise _store_unavailable(e)


@router.delete("/documents/{document_id}", response_model=DeleteDocumentResponse)
async def delete_document(
    document_id: str,
    rag: RAGService = Depends(get_rag_service),
) -> DeleteDocumentResponse:
    try:
        deleted = await rag.delete_document(document_id)
    except VectorStoreError as e:
        raise _store_unavailable(e)
    if not deleted:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="DOCUMENT_NOT_FOUND",
                message=f"Document {document_id} not found",
            ).model_dump(),
        )
    return DeleteDocumentResponse(success=True)
