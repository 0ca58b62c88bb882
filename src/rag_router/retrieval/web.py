"""Live web lookup contract used for recency-sensitive requests."""

from __future__ import annotations

from typing import Protocol

from rag_router.types import WebResult


class WebSearchProvider(Protocol):
    async def search(self, query: str, limit: int) -> list[WebResult]:
        """Return up to `limit` results for `query`."""


class StaticWebSearchProvider:
    """Serves canned results; stands in for a live search API in tests and demos."""

    def __init__(self, results: list[WebResult] | None = None) -> None:
        self.results = list(results or [])
        self.queries: list[str] = []

    async def search(self, query: str, limit: int) -> list[WebResult]:
        self.queries.append(query)
        return self.results[:limit]
