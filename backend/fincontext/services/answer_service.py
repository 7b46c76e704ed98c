"""Grounded answers and document analyses on top of semantic search."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Literal

from fincontext.models.rag import (
    AnalysisType,
    DocumentCategory,
    RAGResponse,
    SearchFilters,
    SearchResult,
)
from fincontext.services.chunker import Tokenizer, count_tokens
from fincontext.services.context_builder import AssembledContext, build_context
from fincontext.services.generation import TextGenerator
from fincontext.services.rag_service import RAGService

logger = logging.getLogger(__name__)

ANSWER_THRESHOLD = 0.7
ANALYSIS_THRESHOLD = 0.6
ANALYSIS_LIMIT = 10
ANALYSIS_MAX_TOKENS = 6000

NO_RESULTS_MESSAGE = (
    "I couldn't find any relevant information in the knowledge base to answer "
    "your question. Please try rephrasing your query or upload relevant documents."
)


class NoRelevantContentError(Exception):
    """Raised when an analysis finds nothing to analyse."""


# --- Prompts ---

RAG_PROMPT = """\
You are a highly skilled financial advisor with access to relevant documents and research.
Provide a comprehensive, accurate response based on the context provided below.

<QUERY>
{query}
</QUERY>

<GUIDELINES>
- Base your response primarily on the provided context
- If the context doesn't contain enough information, clearly state this
- Reference the source documents when making claims
- Focus on actionable insights and practical recommendations
- Consider South African financial context and regulations where relevant
- Use clear, professional language suitable for financial decision-making{focus}
</GUIDELINES>

<CONTEXT>
{context}
</CONTEXT>

Please provide a detailed response that addresses the query using the available context:"""

SUMMARY_PROMPT = """\
Analyze the provided document content and write a comprehensive summary covering:

1. **Document Overview**: What kind of document this is and its purpose
2. **Key Points**: The most important information and findings
3. **Main Topics**: Core subjects covered
4. **Conclusions**: Conclusions or outcomes presented
5. **Actionable Items**: Recommendations or next steps mentioned

Use clear headings and bullet points."""

KEY_INSIGHTS_PROMPT = """\
Extract and analyze the key insights from the provided content:

1. **Strategic Insights**: High-level strategic observations and implications
2. **Financial Insights**: Key financial findings, trends or metrics
3. **Market Insights**: Market conditions, opportunities or trends
4. **Operational Insights**: Efficiency or process observations
5. **Risk Insights**: Potential risks or concerns{focus}

For each insight give the insight itself, supporting evidence from the \
document, its likely impact, and a recommended action where one applies."""

FINANCIAL_METRICS_PROMPT = """\
Identify and analyze every financial metric and key performance indicator in the content:

1. **Revenue Metrics**: Revenue figures, growth rates, trends
2. **Profitability Metrics**: Margins, EBITDA, net income
3. **Financial Ratios**: Liquidity, leverage, efficiency ratios
4. **Performance Indicators**: ROI, ROE and similar measures
5. **Market Metrics**: Market share, valuation metrics, multiples

For each metric present the values, explain what they mean, compare them to \
industry standards where the document does, and flag concerning or exceptional figures."""

RISK_ASSESSMENT_PROMPT = """\
Conduct a risk assessment based on the provided content:

1. **Financial Risks**: Credit, market and liquidity risk
2. **Operational Risks**: Process, technology and people risks
3. **Strategic Risks**: Competitive, regulatory and reputational risks
4. **Market Risks**: Economic and industry-specific risks{focus}

For each risk rate the impact (High/Medium/Low) and likelihood, suggest \
mitigations, and rank the risks by overall threat."""

RECOMMENDATIONS_PROMPT = """\
Based on the content provided, generate actionable recommendations:

1. **Immediate Actions**: Next 30 days
2. **Short-term Strategy**: Next 3-6 months
3. **Long-term Planning**: 6+ months
4. **Risk Mitigation**: Steps that address identified risks
5. **Performance Improvement**: Ways to improve efficiency or profitability

For each recommendation state the action, the rationale from the document, \
an owner, a timeline and the expected outcome."""


@dataclass(frozen=True)
class AnalysisSpec:
    search_query: str
    prompt: str


ANALYSES: dict[str, AnalysisSpec] = {
    "summary": AnalysisSpec(
        "document summary overview key points", SUMMARY_PROMPT
    ),
    "key_insights": AnalysisSpec(
        "insights findings conclusions recommendations", KEY_INSIGHTS_PROMPT
    ),
    "financial_metrics": AnalysisSpec(
        "financial metrics numbers ratios performance indicators",
        FINANCIAL_METRICS_PROMPT,
    ),
    "risk_assessment": AnalysisSpec(
        "risk assessment analysis threats opportunities", RISK_ASSESSMENT_PROMPT
    ),
    "recommendations": AnalysisSpec(
        "recommendations actions next steps suggestions", RECOMMENDATIONS_PROMPT
    ),
}

RISK_FOCUS_AREAS = [
    "market_risk",
    "credit_risk",
    "liquidity_risk",
    "operational_risk",
    "regulatory_risk",
]

FocusName = Literal["portfolio_analysis", "market_insights", "compliance_check"]


@dataclass(frozen=True)
class FocusedQuery:
    prefix: str
    category: DocumentCategory
    domain: str


FOCUSED_QUERIES: dict[str, FocusedQuery] = {
    "portfolio_analysis": FocusedQuery(
        "Analyze my investment portfolio based on the uploaded documents.",
        DocumentCategory.INVESTMENT_REPORT,
        "portfolio_management",
    ),
    "market_insights": FocusedQuery(
        "Based on the market research documents, provide insights on current "
        "market trends, opportunities, and potential threats.",
        DocumentCategory.MARKET_RESEARCH,
        "market_analysis",
    ),
    "compliance_check": FocusedQuery(
        "Review the regulatory documents and assess compliance with current "
        "regulations. Identify any potential compliance issues or recommendations.",
        DocumentCategory.REGULATORY_DOC,
        "regulatory_compliance",
    ),
}

DAILY_INSIGHT_QUERIES: dict[str, str] = {
    "spending": "Summarize recent spending patterns, unusual transactions and "
    "opportunities to reduce costs.",
    "risk": "What are the main financial risks in my current position, "
    "including liquidity and exposure concentration?",
    "business": "How is the business performing against its revenue targets "
    "and what should be prioritised next?",
}


def build_rag_prompt(query: str, context: str, domain: str | None = None) -> str:
    focus = f"\nFocus specifically on: {domain}" if domain else ""
    return RAG_PROMPT.format(query=query, context=context, focus=focus)


def build_analysis_prompt(
    analysis_type: AnalysisType, focus_areas: list[str] | None = None
) -> str:
    template = ANALYSES[analysis_type].prompt
    if "{focus}" not in template:
        return template
    focus = (
        f"\nPay special attention to these focus areas: {', '.join(focus_areas)}"
        if focus_areas
        else ""
    )
    return template.format(focus=focus)


def calculate_confidence(used: list[SearchResult], response: str) -> float:
    """Heuristic [0, 1] score from source similarity, source count and answer length."""
    if not used:
        avg_similarity = 0.0
    else:
        avg_similarity = sum(r.similarity for r in used) / len(used)
    sources_factor = min(len(used) / 5, 1.0)
    length_factor = min(len(response) / 1000, 1.0)
    confidence = 0.7 * avg_similarity + 0.2 * sources_factor + 0.1 * length_factor
    return max(0.0, min(confidence, 1.0))


async def run_all(
    jobs: dict[str, Coroutine[Any, Any, RAGResponse]],
) -> dict[str, RAGResponse]:
    """Await all jobs concurrently.

    The first failure cancels the jobs still running and is re-raised as is.
    """
    try:
        async with asyncio.TaskGroup() as group:
            tasks = {name: group.create_task(job) for name, job in jobs.items()}
    except ExceptionGroup as eg:
        raise eg.exceptions[0]
    return {name: task.result() for name, task in tasks.items()}


class AnswerService:
    """Retrieve, assemble context, and delegate to the text generator."""

    def __init__(
        self,
        rag: RAGService,
        generator: TextGenerator,
        tokenizer: Tokenizer,
        *,
        max_context_tokens: int = 4000,
    ) -> None:
        self.rag = rag
        self.generator = generator
        self.tokenizer = tokenizer
        self.max_context_tokens = max_context_tokens

    async def _generate(
        self, prompt: str, assembled: AssembledContext
    ) -> RAGResponse:
        response = await self.generator.generate(prompt)
        return RAGResponse(
            response=response,
            sources=assembled.sources,
            context_used=assembled.context,
            token_count=count_tokens(self.tokenizer, response),
            confidence=calculate_confidence(assembled.results, response),
        )

    async def answer(
        self,
        query: str,
        *,
        domain: str | None = None,
        max_context_tokens: int | None = None,
        context_chunks: int = 5,
        category: DocumentCategory | None = None,
        user_id: str | None = None,
    ) -> RAGResponse:
        """Answer ``query`` from the indexed documents."""
        started = time.perf_counter()
        results = await self.rag.semantic_search(
            query,
            limit=context_chunks,
            threshold=ANSWER_THRESHOLD,
            filters=SearchFilters(category=category, user_id=user_id),
        )
        if not results:
            logger.info("No relevant sources for query %r", query)
            return RAGResponse(
                response=NO_RESULTS_MESSAGE,
                sources=[],
                context_used="",
                token_count=0,
                confidence=0.0,
            )

        assembled = build_context(
            results, max_context_tokens or self.max_context_tokens, self.tokenizer
        )
        prompt = build_rag_prompt(query, assembled.context, domain)
        result = await self._generate(prompt, assembled)

        logger.info(
            "RAG answer: %d sources, %d context tokens, confidence=%.2f (%.0fms)",
            len(result.sources),
            assembled.token_count,
            result.confidence,
            (time.perf_counter() - started) * 1000,
        )
        return result

    async def focused_query(
        self,
        focus: FocusName,
        query: str = "",
        *,
        max_context_tokens: int | None = None,
        context_chunks: int = 5,
    ) -> RAGResponse:
        """Preset question scoped to one document category."""
        preset = FOCUSED_QUERIES[focus]
        return await self.answer(
            f"{preset.prefix} {query}".strip(),
            domain=preset.domain,
            category=preset.category,
            max_context_tokens=max_context_tokens,
            context_chunks=context_chunks,
        )

    async def analyze_document(
        self,
        analysis_type: AnalysisType,
        *,
        document_id: str | None = None,
        focus_areas: list[str] | None = None,
    ) -> RAGResponse:
        """Run a canned analysis over the corpus or a single document."""
        started = time.perf_counter()
        spec = ANALYSES[analysis_type]
        results = await self.rag.semantic_search(
            spec.search_query,
            limit=ANALYSIS_LIMIT,
            threshold=ANALYSIS_THRESHOLD,
            filters=SearchFilters(document_id=document_id) if document_id else None,
        )
        if not results:
            raise NoRelevantContentError("No relevant content found for analysis")

        assembled = build_context(results, ANALYSIS_MAX_TOKENS, self.tokenizer)
        prompt = (
            f"{build_analysis_prompt(analysis_type, focus_areas)}\n\n"
            f"<DOCUMENT_CONTENT>\n{assembled.context}\n</DOCUMENT_CONTENT>"
        )
        result = await self._generate(prompt, assembled)

        logger.info(
            "Analysis %s: %d sources, confidence=%.2f (%.0fms)",
            analysis_type,
            len(result.sources),
            result.confidence,
            (time.perf_counter() - started) * 1000,
        )
        return result

    async def risk_assessment(self, document_id: str | None = None) -> RAGResponse:
        return await self.analyze_document(
            "risk_assessment", document_id=document_id, focus_areas=RISK_FOCUS_AREAS
        )

    async def analyze_many(
        self,
        analysis_types: list[AnalysisType],
        *,
        document_id: str | None = None,
    ) -> dict[str, RAGResponse]:
        """Run several analyses concurrently; fails if any one fails."""
        return await run_all(
            {
                t: self.analyze_document(t, document_id=document_id)
                for t in dict.fromkeys(analysis_types)
            }
        )

    async def daily_insights(self, user_id: str | None = None) -> dict[str, RAGResponse]:
        """Answer the daily insight questions concurrently; fails if any one fails."""
        started = time.perf_counter()
        responses = await run_all(
            {
                name: self.answer(question, user_id=user_id)
                for name, question in DAILY_INSIGHT_QUERIES.items()
            }
        )
        logger.info(
            "Daily insights generated (%d) in %.0fms",
            len(responses),
            (time.perf_counter() - started) * 1000,
        )
        return responses
