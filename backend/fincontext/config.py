"""Application configuration via environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env")

    debug: bool = False
    cors_origins: list[str] = ["http://localhost:5173"]

    # Text generation (Claude Agent SDK)
    anthropic_api_key: str = ""
    ai_model: str = "claude-sonnet-4-5"

    # Vector store / Qdrant
    # Set QDRANT_URL for a Qdrant server, otherwise an on-disk local
    # collection is kept under QDRANT_PATH.
    qdrant_url: str = ""
    qdrant_api_key: str = ""
    qdrant_path: str = "./storage/qdrant"
    qdrant_collection: str = "financial_documents"

    # Embeddings
    # "local" runs a sentence-transformers model in-process; "vertex" uses
    # Google AI embeddings (GOOGLE_API_KEY for API key auth, otherwise ADC).
    embedding_provider: Literal["local", "vertex"] = "local"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimensions: int = 384
    embedding_warmup: bool = True
    google_api_key: str = ""
    gcp_project_id: str = ""
    gcp_location: str = "us-central1"

    # Chunking / context
    tokenizer_encoding: str = "cl100k_base"
    chunk_size: int = 500
    chunk_overlap: int = 50
    max_context_tokens: int = 4000

    # Uploads
    upload_dir: str = "./storage/uploads"
    max_upload_bytes: int = 10 * 1024 * 1024

    @model_validator(mode="after")
    def _check_chunking(self) -> Settings:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be >= 0 and smaller "
                f"than chunk_size ({self.chunk_size})"
            )
        return self


settings = Settings()
