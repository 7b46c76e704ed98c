"""Upload validation, staging, text extraction and categorisation."""

from __future__ import annotations

import datetime
import json
import logging
import re
import time
from pathlib import Path
from typing import Any

from docx import Document as DocxDocument
from pypdf import PdfReader

from fincontext.models.rag import DocumentCategory, DocumentMetadata
from fincontext.services.chunker import clean_text

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("pdf", "docx", "txt", "md", "json")

# Evaluated in order; the first rule with a keyword in the filename wins.
CATEGORY_RULES: list[tuple[tuple[str, ...], DocumentCategory]] = [
    (
        ("balance", "income", "statement", "financial", "p&l", "profit"),
        DocumentCategory.FINANCIAL_STATEMENT,
    ),
    (
        ("investment", "portfolio", "fund", "research", "analysis"),
        DocumentCategory.INVESTMENT_REPORT,
    ),
    (
        ("market", "trend", "sector", "industry", "outlook"),
        DocumentCategory.MARKET_RESEARCH,
    ),
    (
        ("business", "plan", "strategy", "model", "proposal"),
        DocumentCategory.BUSINESS_PLAN,
    ),
    (
        ("transaction", "trade", "record", "history", "log"),
        DocumentCategory.TRANSACTION_RECORD,
    ),
    (
        ("regulation", "compliance", "policy", "legal", "regulatory"),
        DocumentCategory.REGULATORY_DOC,
    ),
]


class DocumentProcessingError(Exception):
    """Raised when an uploaded file is rejected or its text cannot be extracted."""


def file_type_of(file_name: str) -> str:
    return Path(file_name).suffix.lower().lstrip(".")


def determine_category(file_name: str) -> DocumentCategory:
    name = file_name.lower()
    for keywords, category in CATEGORY_RULES:
        if any(keyword in name for keyword in keywords):
            return category
    return DocumentCategory.GENERAL


def validate_upload(file_name: str, size: int, max_bytes: int) -> None:
    file_type = file_type_of(file_name)
    if file_type not in SUPPORTED_TYPES:
        raise DocumentProcessingError(f"File type .{file_type} not supported")
    if size > max_bytes:
        raise DocumentProcessingError(
            f"File size exceeds {max_bytes // (1024 * 1024)}MB limit"
        )


# --- Upload staging ---


_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def _safe_path_component(value: str) -> str:
    safe = _UNSAFE_PATH_CHARS.sub("_", value)
    if safe in ("", ".", ".."):
        raise DocumentProcessingError(f"Invalid path component: {value!r}")
    return safe


def save_uploaded_file(
    data: bytes, file_name: str, user_id: str, upload_dir: Path
) -> Path:
    """Write an upload to ``upload_dir/<safe user_id>/<epoch_ms>_<safe name>``."""
    root = upload_dir.resolve()
    target_dir = (root / _safe_path_component(user_id)).resolve()
    if not target_dir.is_relative_to(root):
        raise DocumentProcessingError(f"Invalid user id: {user_id!r}")
    target_dir.mkdir(parents=True, exist_ok=True)
    safe_name = _safe_path_component(file_name)
    path = target_dir / f"{int(time.time() * 1000)}_{safe_name}"
    path.write_bytes(data)
    return path


def delete_file(path: Path) -> None:
    try:
        path.unlink()
    except OSError as e:
        logger.warning("Failed to delete file %s: %s", path, e)


# --- Text extraction ---


def json_to_text(value: Any, depth: int = 0) -> str:
    """Flatten parsed JSON into an indented ``key: value`` text tree."""
    indent = "  " * depth
    if isinstance(value, list):
        return "".join(
            f"{indent}[{i}]: {json_to_text(item, depth + 1)}\n"
            for i, item in enumerate(value)
        )
    if isinstance(value, dict):
        parts = []
        for key, item in value.items():
            if isinstance(item, (dict, list)):
                parts.append(f"{indent}{key}:\n{json_to_text(item, depth + 1)}")
            else:
                parts.append(f"{indent}{key}: {_scalar(item)}\n")
        return "".join(parts)
    return _scalar(value)


def _scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _extract_pdf(path: Path) -> str:
    reader = PdfReader(path)
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _extract_docx(path: Path) -> str:
    document = DocxDocument(str(path))
    return "\n".join(p.text for p in document.paragraphs)


def _extract_json(path: Path) -> str:
    return json_to_text(json.loads(path.read_text(encoding="utf-8")))


_EXTRACTORS = {
    "pdf": _extract_pdf,
    "docx": _extract_docx,
    "txt": lambda path: path.read_text(encoding="utf-8"),
    "md": lambda path: path.read_text(encoding="utf-8"),
    "json": _extract_json,
}


def extract_text(path: Path, file_type: str) -> str:
    extractor = _EXTRACTORS.get(file_type)
    if extractor is None:
        raise DocumentProcessingError(f"Unsupported file type: .{file_type}")
    try:
        return extractor(path)
    except Exception as e:
        raise DocumentProcessingError(
            f"{file_type.upper()} extraction failed: {e}"
        ) from e


def process_file(
    path: Path,
    file_name: str,
    user_id: str,
    *,
    category: DocumentCategory | None = None,
    tags: list[str] | None = None,
    source: str | None = None,
) -> tuple[str, DocumentMetadata]:
    """Extract and clean a file's text and build its document metadata.

    ``source`` defaults to ``file_name``; ``path`` may be a staging copy that
    does not outlive the request.
    """
    file_type = file_type_of(file_name)
    content = clean_text(extract_text(path, file_type))
    if not content:
        raise DocumentProcessingError(f"No text could be extracted from {file_name}")

    metadata = DocumentMetadata(
        source=source or file_name,
        file_name=file_name,
        file_type=file_type,
        uploaded_at=datetime.datetime.now(datetime.UTC),
        user_id=user_id,
        tags=tags or [],
        category=category or determine_category(file_name),
    )
    logger.info(
        "Extracted %d chars from %s (type=%s, category=%s)",
        len(content),
        file_name,
        file_type,
        metadata.category,
    )
    return content, metadata
