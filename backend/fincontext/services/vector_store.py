"""Qdrant-backed vector store: chunk vectors plus metadata, cosine distance."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

logger = logging.getLogger(__name__)

Where = dict[str, str | list[str]]

_TEXT_KEY = "text"
_SCROLL_PAGE_SIZE = 256
_INDEXED_FIELDS = ("document_id", "file_type", "category", "user_id", "tags")


class VectorStoreError(Exception):
    """Raised when the vector store cannot be reached or rejects a call."""


@dataclass
class VectorHit:
    id: str
    document: str
    metadata: dict[str, Any]
    distance: float


@dataclass
class VectorRecords:
    ids: list[str] = field(default_factory=list)
    documents: list[str] = field(default_factory=list)


def build_filter(where: Where | None) -> Filter | None:
    """Translate a flat ``{key: value}`` dict into a Qdrant filter.

    List values match when the stored field shares any element with them.
    """
    if not where:
        return None
    conditions = []
    for key, value in where.items():
        if isinstance(value, list):
            conditions.append(FieldCondition(key=key, match=MatchAny(any=value)))
        else:
            conditions.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return Filter(must=conditions)


class VectorStore:
    """One Qdrant collection holding (id, vector, text, metadata) points."""

    def __init__(
        self,
        client_factory: Callable[[], AsyncQdrantClient],
        collection_name: str,
        dimensions: int,
    ) -> None:
        self.collection_name = collection_name
        self.dimensions = dimensions
        self._client_factory = client_factory
        self._client: AsyncQdrantClient | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> AsyncQdrantClient:
        if self._client is None:
            raise VectorStoreError("Vector store is not connected")
        return self._client

    async def connect(self) -> None:
        """Open the client and create the collection if it doesn't exist."""
        async with self._connect_lock:
            if self._client is not None:
                return
            try:
                client = self._client_factory()
                await self._ensure_collection(client)
            except Exception as e:
                raise VectorStoreError(
                    f"Failed to connect to vector store: {e}"
                ) from e
            self._client = client

    async def _ensure_collection(self, client: AsyncQdrantClient) -> None:
        response = await client.get_collections()
        if self.collection_name in [c.name for c in response.collections]:
            logger.info("Qdrant collection '%s' already exists", self.collection_name)
            return
        await client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
        )
        # Payload indexes for filtering
        for field_name in _INDEXED_FIELDS:
            await client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field_name,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        logger.info("Created Qdrant collection '%s'", self.collection_name)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def upsert(
        self,
        ids: Sequence[str],
        vectors: Sequence[list[float]],
        documents: Sequence[str],
        metadatas: Sequence[dict[str, Any]],
    ) -> None:
        """Write all points in a single call."""
        if not len(ids) == len(vectors) == len(documents) == len(metadatas):
            raise ValueError(
                f"Length mismatch: {len(ids)} ids, {len(vectors)} vectors, "
                f"{len(documents)} documents, {len(metadatas)} metadatas"
            )
        if len(set(ids)) != len(ids):
            raise ValueError("Point ids must be unique")

        points = [
            PointStruct(id=point_id, vector=vector, payload={**meta, _TEXT_KEY: doc})
            for point_id, vector, doc, meta in zip(
                ids, vectors, documents, metadatas, strict=True
            )
        ]
        try:
            await self.client.upsert(
                collection_name=self.collection_name, points=points, wait=True
            )
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Upsert failed: {e}") from e
        logger.info("Upserted %d points into '%s'", len(points), self.collection_name)

    async def query(
        self, vector: list[float], k: int, where: Where | None = None
    ) -> list[VectorHit]:
        """Return up to ``k`` nearest points, closest first."""
        query_filter = build_filter(where)
        logger.debug(
            "Querying Qdrant collection=%r k=%d filter=%s",
            self.collection_name,
            k,
            query_filter,
        )
        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=query_filter,
                limit=k,
                with_payload=True,
            )
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Query failed: {e}") from e

        hits = []
        for point in response.points:
            payload = dict(point.payload or {})
            document = payload.pop(_TEXT_KEY, "")
            # Cosine collections report similarity as the score.
            hits.append(
                VectorHit(
                    id=str(point.id),
                    document=document,
                    metadata=payload,
                    distance=1.0 - point.score,
                )
            )
        return hits

    async def get(self, where: Where) -> VectorRecords:
        """Return ids and texts of every point matching ``where``."""
        records = VectorRecords()
        offset = None
        try:
            while True:
                points, offset = await self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=build_filter(where),
                    limit=_SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
                for point in points:
                    records.ids.append(str(point.id))
                    records.documents.append((point.payload or {}).get(_TEXT_KEY, ""))
                if offset is None:
                    break
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Get failed: {e}") from e
        return records

    async def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        try:
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=PointIdsList(points=list(ids)),
                wait=True,
            )
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Delete failed: {e}") from e
        logger.info("Deleted %d points from '%s'", len(ids), self.collection_name)

    async def count(self) -> int:
        try:
            result = await self.client.count(
                collection_name=self.collection_name, exact=True
            )
        except VectorStoreError:
            raise
        except Exception as e:
            raise VectorStoreError(f"Count failed: {e}") from e
        return result.count
