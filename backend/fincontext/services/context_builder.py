"""Pack ranked search results into a token-bounded prompt context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fincontext.models.rag import DocumentChunk, SearchResult
from fincontext.services.chunker import Tokenizer, count_tokens

logger = logging.getLogger(__name__)


@dataclass
class AssembledContext:
    context: str = ""
    results: list[SearchResult] = field(default_factory=list)
    token_count: int = 0

    @property
    def sources(self) -> list[DocumentChunk]:
        return [r.chunk for r in self.results]


def format_source(result: SearchResult) -> str:
    return f"\n\n--- Source: {result.chunk.file_name} ---\n{result.chunk.content}"


def build_context(
    results: list[SearchResult], max_tokens: int, tokenizer: Tokenizer
) -> AssembledContext:
    """Greedily append results in order until the next one would not fit.

    Chunks are never truncated or reordered, so the context can be empty
    when the first result alone is over budget.
    """
    assembled = AssembledContext()
    for result in results:
        piece = format_source(result)
        piece_tokens = count_tokens(tokenizer, piece)
        if assembled.token_count + piece_tokens > max_tokens:
            break
        assembled.context += piece
        assembled.results.append(result)
        assembled.token_count += piece_tokens

    if results and not assembled.results:
        logger.warning(
            "First source alone exceeds the %d-token context budget", max_tokens
        )
    logger.debug(
        "Context: %d/%d sources, %d tokens (budget %d)",
        len(assembled.results),
        len(results),
        assembled.token_count,
        max_tokens,
    )
    return assembled
