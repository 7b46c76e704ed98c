"""Embedding generation: text -> unit-length dense vector."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from typing import Protocol

import httpx
from google import genai
from google.genai import types
from sentence_transformers import SentenceTransformer, models

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding model cannot be loaded or inference fails."""


class Embedder(Protocol):
    model_name: str
    dimensions: int

    async def warm_up(self) -> None: ...

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


def normalize(vector: list[float]) -> list[float]:
    """Scale a vector to unit length (zero vectors are returned unchanged)."""
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return list(vector)
    return [v / norm for v in vector]


def _check_dimensions(vectors: list[list[float]], expected: int) -> None:
    for vector in vectors:
        if len(vector) != expected:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {expected}"
            )


# --- Local sentence-transformers model ---


def load_sentence_transformer(model_name: str) -> SentenceTransformer:
    """Build a transformer encoder followed by a mean-pooling layer."""
    word_embedding = models.Transformer(model_name)
    pooling = models.Pooling(
        word_embedding.get_word_embedding_dimension(), pooling_mode="mean"
    )
    return SentenceTransformer(modules=[word_embedding, pooling])


class SentenceTransformerEmbedder:
    """In-process embedding model, constructed once and shared by all callers."""

    def __init__(self, model_name: str, dimensions: int) -> None:
        self.model_name = model_name
        self.dimensions = dimensions
        self._model: SentenceTransformer | None = None
        self._lock = threading.Lock()

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            with self._lock:
                if self._model is None:
                    started = time.perf_counter()
                    logger.info("Loading embedding model %s", self.model_name)
                    try:
                        self._model = load_sentence_transformer(self.model_name)
                    except Exception as e:
                        raise EmbeddingError(
                            f"Failed to load embedding model {self.model_name}: {e}"
                        ) from e
                    logger.info(
                        "Embedding model loaded in %.1fs",
                        time.perf_counter() - started,
                    )
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._get_model()
        try:
            vectors = model.encode(
                texts, normalize_embeddings=True, convert_to_numpy=True
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}") from e
        result = [[float(v) for v in vector] for vector in vectors]
        _check_dimensions(result, self.dimensions)
        return result

    async def warm_up(self) -> None:
        await asyncio.to_thread(self._get_model)

    async def embed(self, text: str) -> list[float]:
        logger.debug(
            "Embedding text (%d chars): %r",
            len(text),
            text[:100] + ("..." if len(text) > 100 else ""),
        )
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        logger.info(
            "Embedding batch of %d texts (model=%s, dims=%d)",
            len(texts),
            self.model_name,
            self.dimensions,
        )
        return await asyncio.to_thread(self._encode, texts)


# --- Google AI / Vertex embeddings ---

_VERTEX_PREDICT_URL = (
    "https://{location}-aiplatform.googleapis.com/v1/projects/{project}"
    "/locations/{location}/publishers/google/models/{model}:predict"
)


class VertexEmbedder:
    """Vertex AI text embeddings, via API key (REST) or ADC (google-genai)."""

    def __init__(
        self,
        model_name: str,
        dimensions: int,
        *,
        project: str,
        location: str,
        api_key: str = "",
    ) -> None:
        self.model_name = model_name
        self.dimensions = dimensions
        self.project = project
        self.location = location
        self.api_key = api_key
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                vertexai=True, project=self.project, location=self.location
            )
        return self._client

    async def _embed_via_api_key(
        self, texts: list[str], task_type: str
    ) -> list[list[float]]:
        url = _VERTEX_PREDICT_URL.format(
            location=self.location, project=self.project, model=self.model_name
        )
        body = {
            "instances": [{"content": t, "task_type": task_type} for t in texts],
            "parameters": {"outputDimensionality": self.dimensions},
        }
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                url, params={"key": self.api_key}, json=body, timeout=30
            )
        resp.raise_for_status()
        return [p["embeddings"]["values"] for p in resp.json()["predictions"]]

    async def _embed(self, texts: list[str], task_type: str) -> list[list[float]]:
        try:
            if self.api_key:
                raw = await self._embed_via_api_key(texts, task_type)
            else:
                response = await self._get_client().aio.models.embed_content(
                    model=self.model_name,
                    contents=texts,
                    config=types.EmbedContentConfig(
                        output_dimensionality=self.dimensions,
                        task_type=task_type,
                    ),
                )
                raw = [list(e.values) for e in response.embeddings]
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}") from e
        vectors = [normalize([float(v) for v in vector]) for vector in raw]
        _check_dimensions(vectors, self.dimensions)
        return vectors

    async def warm_up(self) -> None:
        if self.api_key:
            return
        try:
            self._get_client()
        except Exception as e:
            raise EmbeddingError(f"Failed to create GenAI client: {e}") from e

    async def embed(self, text: str) -> list[float]:
        vectors = await self._embed([text], "RETRIEVAL_QUERY")
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        logger.info(
            "Embedding batch of %d texts (model=%s, dims=%d)",
            len(texts),
            self.model_name,
            self.dimensions,
        )
        return await self._embed(texts, "RETRIEVAL_DOCUMENT")
