"""CLI script to ingest financial documents into the vector store.

Usage:
    cd backend
    uv run python ../scripts/ingest_docs.py --directory ../data/documents/
    uv run python ../scripts/ingest_docs.py --file ../data/documents/q3-income-statement.pdf --tags q3,2025
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add backend to path so imports work when run from backend/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from fincontext.config import settings
from fincontext.dependencies import build_services
from fincontext.models.rag import DocumentCategory
from fincontext.services.document_processor import (
    SUPPORTED_TYPES,
    DocumentProcessingError,
    file_type_of,
    process_file,
)
from fincontext.services.rag_service import RAGService


async def ingest_file(
    rag: RAGService,
    path: Path,
    user_id: str,
    category: DocumentCategory | None,
    tags: list[str],
) -> int:
    """Ingest a single file. Returns number of chunks indexed."""
    try:
        content, metadata = process_file(
            path,
            path.name,
            user_id,
            category=category,
            tags=tags,
            source=str(path.resolve()),
        )
    except DocumentProcessingError as e:
        print(f"  Skipped {path.name} ({e})")
        return 0

    print(f"  Extracted {len(content)} chars ({metadata.category})")
    result = await rag.process_document(content, metadata)
    if not result.success:
        print(f"  Failed: {result.error}")
        return 0

    print(f"  Indexed {result.chunks_created} chunks as {result.document_id}")
    return result.chunks_created


async def run(args: argparse.Namespace) -> int:
    services = build_services(settings)
    print("Connecting to vector store...")
    if not await services.rag.initialize():
        print("Error: vector store or embedding model unavailable")
        return 1

    tags = [t.strip() for t in args.tags.split(",") if t.strip()] if args.tags else []
    category = DocumentCategory(args.category) if args.category else None

    if args.file:
        if not args.file.exists():
            print(f"Error: File not found: {args.file}")
            return 1
        files = [args.file]
    else:
        if not args.directory.exists():
            print(f"Error: Directory not found: {args.directory}")
            return 1
        files = sorted(
            p for p in args.directory.iterdir() if file_type_of(p.name) in SUPPORTED_TYPES
        )
        if not files:
            print(f"No supported documents found in {args.directory}")
            return 1
        print(f"Found {len(files)} documents")

    total_chunks = 0
    try:
        for f in files:
            print(f"\nIngesting {f.name}...")
            total_chunks += await ingest_file(
                services.rag, f, args.user_id, category, tags
            )
    finally:
        await services.rag.close()

    print(f"\nDone! Indexed {total_chunks} total chunks.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest documents into the vector store")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--directory", type=Path, help="Directory of documents to ingest")
    group.add_argument("--file", type=Path, help="Single document to ingest")
    parser.add_argument(
        "--category",
        choices=[c.value for c in DocumentCategory],
        default=None,
        help="Category override (default: inferred from the filename)",
    )
    parser.add_argument("--tags", type=str, default=None, help="Comma separated tags")
    parser.add_argument("--user-id", type=str, default="system", help="Owning user id")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
