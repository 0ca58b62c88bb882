"""Embedding provider abstractions and concrete adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from rag_router.config import EmbeddingConfig, ProviderSettings


class EmbeddingProvider(ABC):
    """Embeds one text into a vector of fixed `dimension`."""

    dimension: int

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-tokens embedding without external model calls.

    Used by tests and when no API key is configured. Tokens are hashed into
    signed buckets and the result is L2-normalized, so texts sharing tokens
    have positive cosine similarity.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = [token.strip("?!.,;:\"'()") for token in text.lower().split()]
        tokens = [token for token in tokens if token]
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings through the LangChain integration."""

    def __init__(
        self,
        settings: ProviderSettings,
        config: EmbeddingConfig | None = None,
        *,
        client: Any | None = None,
    ) -> None:
        self.config = config or EmbeddingConfig(model=settings.embedding_model)
        self.dimension = self.config.dimension
        if client is not None:
            self._client = client
            return

        api_key = settings.require_api_key()
        from langchain_openai import OpenAIEmbeddings

        self._client = OpenAIEmbeddings(model=self.config.model, api_key=api_key)

    async def embed(self, text: str) -> list[float]:
        vector = await self._client.aembed_query(text.strip())
        return [float(value) for value in vector]
