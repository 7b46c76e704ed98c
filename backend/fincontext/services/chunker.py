"""Token-bounded, overlapping chunking of cleaned document text."""

from __future__ import annotations

import logging
import re
import uuid
from functools import cached_property
from typing import Protocol

import tiktoken

from fincontext.models.rag import DocumentChunk, DocumentMetadata

logger = logging.getLogger(__name__)

# Decoded windows shorter than this (after stripping) are not worth indexing.
MIN_CHUNK_CHARS = 50


class TokenizerError(Exception):
    """Raised when a tokenizer's encoding cannot be loaded."""


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


class TiktokenTokenizer:
    """BPE tokenizer backed by a tiktoken encoding, loaded on first use."""

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name

    @cached_property
    def _encoding(self) -> tiktoken.Encoding:
        logger.debug("Loading tiktoken encoding %r", self.encoding_name)
        try:
            return tiktoken.get_encoding(self.encoding_name)
        except Exception as e:
            raise TokenizerError(
                f"Failed to load tiktoken encoding {self.encoding_name}: {e}"
            ) from e

    def encode(self, text: str) -> list[int]:
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self._encoding.decode(tokens)


def count_tokens(tokenizer: Tokenizer, text: str) -> int:
    return len(tokenizer.encode(text))


def clean_text(text: str) -> str:
    """Normalise whitespace before chunking.

    Line endings become ``\\n``, runs of three or more newlines collapse to
    a blank line, tabs become spaces and repeated spaces collapse. Non-ASCII
    characters are kept.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = text.replace("\t", " ")
    text = re.sub(r" {2,}", " ", text)
    return text.strip()


class TextChunker:
    """Split text into windows of ``chunk_size`` tokens overlapping by ``chunk_overlap``."""

    def __init__(
        self, tokenizer: Tokenizer, chunk_size: int = 500, chunk_overlap: int = 50
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be >= 0 and smaller "
                f"than chunk_size ({chunk_size})"
            )
        self.tokenizer = tokenizer
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def warm_up(self) -> None:
        """Load the tokenizer's encoding; raises ``TokenizerError`` on failure."""
        count_tokens(self.tokenizer, "")

    def split_text(self, text: str) -> list[tuple[str, int]]:
        """Return ``(chunk_text, token_count)`` pairs in document order."""
        tokens = self.tokenizer.encode(text)
        total = len(tokens)
        pieces: list[tuple[str, int]] = []

        start = 0
        while start < total:
            end = min(start + self.chunk_size, total)
            window = tokens[start:end]
            piece = self.tokenizer.decode(window).strip()

            if len(piece) < MIN_CHUNK_CHARS:
                logger.debug(
                    "Dropping short window tokens[%d:%d] (%d chars)",
                    start,
                    end,
                    len(piece),
                )
                next_start = end
            else:
                pieces.append((piece, len(window)))
                next_start = end - self.chunk_overlap

            if end == total:
                break
            start = next_start

        return pieces

    def split(
        self, text: str, *, document_id: str, metadata: DocumentMetadata
    ) -> list[DocumentChunk]:
        """Chunk a document's cleaned text into ``DocumentChunk`` records.

        ``total_chunks`` is only known once every window has been produced,
        so chunks are built after the split completes.
        """
        pieces = self.split_text(text)
        total = len(pieces)
        chunks = [
            DocumentChunk(
                **metadata.model_dump(),
                id=str(uuid.uuid4()),
                content=piece,
                document_id=document_id,
                chunk_index=idx,
                total_chunks=total,
                token_count=token_count,
            )
            for idx, (piece, token_count) in enumerate(pieces)
        ]
        logger.debug(
            "Chunked document %s into %d chunks (size=%d, overlap=%d)",
            document_id,
            total,
            self.chunk_size,
            self.chunk_overlap,
        )
        return chunks
