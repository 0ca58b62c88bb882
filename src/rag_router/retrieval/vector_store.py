"""Vector store and chunk lookup interfaces plus an in-memory implementation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from rag_router.types import IndexedChunk, VectorMatch


class VectorStore(Protocol):
    """Minimal vector store contract for passage retrieval."""

    async def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return up to `top_k` matches ranked by score descending."""


class ChunkLookup(Protocol):
    """Resolves chunk ids to stored chunks and walks the document hierarchy."""

    async def resolve(self, chunk_ids: list[str]) -> list[IndexedChunk]:
        """Return the chunks for `chunk_ids`, skipping unknown ids."""

    async def neighbors(self, chunk_id: str, window: int) -> list[IndexedChunk]:
        """Return sibling chunks of the same document within `window` positions."""

    async def parents(self, chunk_id: str) -> list[IndexedChunk]:
        """Return the chain of enclosing section chunks."""


@dataclass(slots=True)
class _StoredVector:
    chunk: IndexedChunk
    embedding: np.ndarray


class InMemoryChunkIndex:
    """Deterministic vector store and chunk lookup for tests and local use.

    `query` is a linear cosine scan, so it only suits small corpora. The
    `scope` metadata key partitions tenants: pass it in `metadata_filter`.
    """

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}

    def __len__(self) -> int:
        return len(self._store)

    def upsert(self, chunks: list[IndexedChunk], embeddings: list[list[float]]) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            self._store[chunk.chunk_id] = _StoredVector(
                chunk=chunk, embedding=np.asarray(embedding, dtype=float)
            )

    async def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        candidates = [
            record
            for record in self._store.values()
            if _metadata_match(record.chunk.metadata, metadata_filter)
        ]
        if not candidates or top_k <= 0:
            return []

        query_vector = np.asarray(vector, dtype=float)
        scored = [
            (record, _cosine_similarity(query_vector, record.embedding)) for record in candidates
        ]
        ranked = sorted(scored, key=lambda item: item[1], reverse=True)
        return [
            VectorMatch(id=record.chunk.chunk_id, score=score, metadata=_match_metadata(record.chunk))
            for record, score in ranked[:top_k]
        ]

    async def resolve(self, chunk_ids: list[str]) -> list[IndexedChunk]:
        return [self._store[chunk_id].chunk for chunk_id in chunk_ids if chunk_id in self._store]

    async def neighbors(self, chunk_id: str, window: int) -> list[IndexedChunk]:
        record = self._store.get(chunk_id)
        if record is None or window <= 0:
            return []
        anchor = record.chunk
        siblings = [
            other.chunk
            for other in self._store.values()
            if other.chunk.doc_id == anchor.doc_id
            and other.chunk.chunk_id != anchor.chunk_id
            and abs(other.chunk.chunk_index - anchor.chunk_index) <= window
        ]
        return sorted(siblings, key=lambda chunk: chunk.chunk_index)

    async def parents(self, chunk_id: str) -> list[IndexedChunk]:
        chain: list[IndexedChunk] = []
        seen = {chunk_id}
        record = self._store.get(chunk_id)
        while record is not None and record.chunk.parent_id and record.chunk.parent_id not in seen:
            seen.add(record.chunk.parent_id)
            record = self._store.get(record.chunk.parent_id)
            if record is not None:
                chain.append(record.chunk)
        return chain


def _match_metadata(chunk: IndexedChunk) -> dict[str, Any]:
    return {
        **chunk.metadata,
        "chunk_id": chunk.chunk_id,
        "doc_id": chunk.doc_id,
        "chunk_index": chunk.chunk_index,
        "updated_at": chunk.updated_at,
    }


def _metadata_match(
    metadata: dict[str, Any], metadata_filter: dict[str, Any] | None
) -> bool:
    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        if metadata.get(key) != value:
            return False
    return True


def _cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0:
        return 0.0
    return float(a @ b) / norm
