"""Labeled-example store with cached embeddings and cosine k-NN search."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from hashlib import md5

import numpy as np

from rag_router.config import EmbeddingConfig
from rag_router.embedding.cache import EmbeddingCache
from rag_router.embedding.provider import EmbeddingProvider
from rag_router.errors import ProviderUnavailable
from rag_router.runtime import call_provider
from rag_router.types import Intent, IntentStats, LabeledExample, SimilarExample

logger = logging.getLogger(__name__)


class EmbeddingStore:
    """Owns labeled examples and their embeddings.

    Search is a linear scan over an in-memory matrix, which is fine for a few
    hundred labeled examples but does not scale; an ANN index can replace
    `search_similar` without touching callers.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
        *,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or EmbeddingConfig(dimension=provider.dimension)
        self.dimension = provider.dimension
        self.cache = cache or EmbeddingCache(self.config.cache_path)
        self._examples: list[LabeledExample] = []
        self._sequence = itertools.count()

    async def embed(self, text: str, *, cancel_event: asyncio.Event | None = None) -> list[float]:
        """Return the embedding for `text`, or a zero vector if the provider fails."""

        cached = await self.cache.aget(text)
        if cached is not None:
            return cached

        try:
            vector = await call_provider(
                self.provider.embed(text),
                timeout=self.config.timeout_seconds,
                what="embedding",
                cancel_event=cancel_event,
            )
        except ProviderUnavailable as exc:
            logger.warning("Embedding failed, using zero vector: %s", exc)
            return [0.0] * self.dimension

        if len(vector) != self.dimension:
            logger.warning(
                "Embedding dimension %d does not match store dimension %d",
                len(vector),
                self.dimension,
            )
            return [0.0] * self.dimension

        await self.cache.aput(text, vector)
        return vector

    async def add_example(self, query: str, intent: Intent | str, confidence: float = 1.0) -> str:
        intent = Intent(intent)
        embedding = await self.embed(query)
        timestamp = time.time()
        example_id = md5(
            f"{query}-{intent.value}-{next(self._sequence)}".encode("utf-8")
        ).hexdigest()[:16]
        self._examples.append(
            LabeledExample(
                id=example_id,
                query=query,
                intent=intent,
                confidence=max(0.0, min(1.0, confidence)),
                embedding=tuple(embedding),
                timestamp=timestamp,
            )
        )
        return example_id

    async def search_similar(
        self,
        query: str,
        top_k: int = 5,
        intent_filter: Intent | str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[SimilarExample]:
        """Rank stored examples by cosine similarity; ties keep insertion order."""

        candidates = self._examples
        if intent_filter is not None:
            wanted = Intent(intent_filter)
            candidates = [example for example in candidates if example.intent is wanted]
        if not candidates or top_k <= 0:
            return []

        query_vector = np.asarray(await self.embed(query, cancel_event=cancel_event), dtype=float)
        matrix = np.asarray([example.embedding for example in candidates], dtype=float)
        similarities = _cosine_similarities(query_vector, matrix)

        order = np.argsort(-similarities, kind="stable")[:top_k]
        return [
            SimilarExample(
                id=candidates[i].id,
                similarity=float(similarities[i]),
                query=candidates[i].query,
                intent=candidates[i].intent,
                confidence=candidates[i].confidence,
            )
            for i in order
        ]

    async def intent_distribution(
        self,
        query: str,
        top_k: int = 10,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[Intent, IntentStats]:
        """Aggregate count, mean label confidence and best similarity per intent.

        Neighbors with no positive similarity carry no evidence, so a zero query
        vector (provider outage) yields an empty distribution.
        """

        results = await self.search_similar(query, top_k, cancel_event=cancel_event)
        distribution: dict[Intent, IntentStats] = {}
        for result in results:
            if result.similarity <= 0.0:
                continue
            stats = distribution.setdefault(result.intent, IntentStats())
            stats.count += 1
            stats.avg_confidence += result.confidence
            stats.max_similarity = max(stats.max_similarity, result.similarity)

        for stats in distribution.values():
            stats.avg_confidence /= stats.count
        return distribution

    async def few_shot_examples(
        self, query: str, intent: Intent | str, count: int = 3
    ) -> list[SimilarExample]:
        results = await self.search_similar(query, count * 2, intent)
        return results[:count]

    def examples(self) -> list[LabeledExample]:
        return list(self._examples)

    def stats(self) -> dict[str, object]:
        distribution: dict[str, int] = {}
        for example in self._examples:
            distribution[example.intent.value] = distribution.get(example.intent.value, 0) + 1
        return {"total_vectors": len(self._examples), "intent_distribution": distribution}

    def clear(self) -> None:
        self._examples = []
        self.cache.clear()


def _cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    if matrix.ndim != 2 or query.shape[0] != matrix.shape[1]:
        return np.zeros(len(matrix))
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    dots = matrix @ query
    return np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)
