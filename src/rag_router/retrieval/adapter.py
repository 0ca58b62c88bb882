"""Passage retrieval, hierarchy expansion, budgeted packing and evidence scoring."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import replace
from typing import Any

from rag_router.config import RetrievalConfig
from rag_router.embedding.store import EmbeddingStore
from rag_router.errors import ProviderUnavailable
from rag_router.obs.tracing import estimate_token_count
from rag_router.retrieval.vector_store import ChunkLookup, VectorStore
from rag_router.runtime import call_provider
from rag_router.types import EvidenceBundle, IndexedChunk, RagChunk, Task, VectorMatch, WebResult

logger = logging.getLogger(__name__)

_MARKDOWN_HEADING = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_SENTENCE_LINE = re.compile(r"^[A-Z][^.!?\n]*[.!?]$", re.MULTILINE)


class RetrievalAdapter:
    """Turns a query into a ranked, budget-constrained list of `RagChunk`s.

    Every vector-store and lookup call is bounded by `config.timeout_seconds`.
    Search failures give an empty result and expansion failures give back the
    input chunks, so the caller always receives a usable (possibly empty) set.
    """

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        vector_store: VectorStore,
        chunk_lookup: ChunkLookup | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.embedding_store = embedding_store
        self.vector_store = vector_store
        self.chunk_lookup = chunk_lookup
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        scope: str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[RagChunk]:
        """Return chunks ranked by retrieval score descending."""

        vector = await self.embedding_store.embed(query, cancel_event=cancel_event)
        if not any(vector):
            logger.warning("Skipping retrieval: no usable query embedding")
            return []

        metadata_filter = {"scope": scope} if scope else None
        try:
            matches = await call_provider(
                self.vector_store.query(vector, top_k or self.config.top_k, metadata_filter),
                timeout=self.config.timeout_seconds,
                what="vector store",
                cancel_event=cancel_event,
            )
            resolved = await self._resolve_missing_text(matches, cancel_event)
        except ProviderUnavailable as exc:
            logger.warning("Retrieval failed, returning no chunks: %s", exc)
            return []

        chunks = [self._to_rag_chunk(match, resolved) for match in matches]
        chunks = [chunk for chunk in chunks if chunk is not None]
        return sorted(chunks, key=lambda chunk: chunk.score, reverse=True)

    async def expand_hierarchy(
        self,
        chunks: list[RagChunk],
        neighbors: int | None = None,
        include_parents: bool | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[RagChunk]:
        """Union of `chunks`, their siblings and their parents, deduplicated by id."""

        neighbors = self.config.neighbors if neighbors is None else neighbors
        include_parents = (
            self.config.include_parents if include_parents is None else include_parents
        )
        if self.chunk_lookup is None or not chunks:
            return list(chunks)

        expanded: dict[str, RagChunk] = {chunk.id: chunk for chunk in chunks}
        try:
            if neighbors > 0:
                for chunk in chunks:
                    siblings = await call_provider(
                        self.chunk_lookup.neighbors(chunk.id, neighbors),
                        timeout=self.config.timeout_seconds,
                        what="chunk lookup",
                        cancel_event=cancel_event,
                    )
                    for sibling in siblings:
                        expanded.setdefault(sibling.chunk_id, self._derived(sibling, chunk))
            if include_parents:
                for chunk in chunks:
                    parents = await call_provider(
                        self.chunk_lookup.parents(chunk.id),
                        timeout=self.config.timeout_seconds,
                        what="chunk lookup",
                        cancel_event=cancel_event,
                    )
                    for parent in parents:
                        expanded.setdefault(parent.chunk_id, self._derived(parent, chunk))
        except ProviderUnavailable as exc:
            logger.warning("Hierarchy expansion failed, keeping original chunks: %s", exc)
            return list(chunks)

        return list(expanded.values())

    def pack_context(
        self, chunks: list[RagChunk], budget_tokens: int | None = None
    ) -> list[RagChunk]:
        """Greedily fit the best-scoring chunks into `budget_tokens`.

        Whole chunks are accepted in score order. The first chunk that does not
        fit is truncated into the remaining budget when more than
        `min_partial_tokens` remain, and packing stops there.
        """

        budget = self.config.budget_tokens if budget_tokens is None else budget_tokens
        packed: list[RagChunk] = []
        used = 0
        for chunk in sorted(chunks, key=lambda item: item.score, reverse=True):
            if used + chunk.tokens <= budget:
                packed.append(chunk)
                used += chunk.tokens
                continue

            remaining = budget - used
            if remaining > self.config.min_partial_tokens:
                packed.append(
                    replace(
                        chunk,
                        text=truncate_text(chunk.text, remaining, self.config.chars_per_token),
                        tokens=remaining,
                    )
                )
            break
        return packed

    def confidence(self, chunks: list[RagChunk]) -> float:
        return chunk_confidence(chunks)

    def coverage(
        self, chunks: list[RagChunk], web_results: list[WebResult], task: Task
    ) -> float:
        return compute_coverage(chunks, web_results, task, self.config)

    async def _resolve_missing_text(
        self, matches: list[VectorMatch], cancel_event: asyncio.Event | None
    ) -> dict[str, IndexedChunk]:
        missing = [match.id for match in matches if not match.metadata.get("text")]
        if not missing or self.chunk_lookup is None:
            return {}
        chunks = await call_provider(
            self.chunk_lookup.resolve(missing),
            timeout=self.config.timeout_seconds,
            what="chunk lookup",
            cancel_event=cancel_event,
        )
        return {chunk.chunk_id: chunk for chunk in chunks}

    def _to_rag_chunk(
        self, match: VectorMatch, resolved: dict[str, IndexedChunk]
    ) -> RagChunk | None:
        metadata: dict[str, Any] = dict(match.metadata)
        stored = resolved.get(match.id)
        text = metadata.get("text") or (stored.text if stored else "")
        if not text:
            logger.warning("Dropping chunk %s: no text available", match.id)
            return None

        doc_id = str(metadata.get("doc_id") or (stored.doc_id if stored else "unknown"))
        chunk_index = metadata.get("chunk_index", stored.chunk_index if stored else 0)
        return RagChunk(
            id=match.id,
            doc_id=doc_id,
            anchor=f"{doc_id}#p{chunk_index}",
            text=text,
            score=max(0.0, min(1.0, float(match.score))),
            headings=tuple(extract_headings(text)),
            updated_at=str(metadata.get("updated_at") or (stored.updated_at if stored else "")),
            tokens=estimate_token_count(text, self.config.chars_per_token),
        )

    def _derived(self, chunk: IndexedChunk, origin: RagChunk) -> RagChunk:
        return RagChunk(
            id=chunk.chunk_id,
            doc_id=chunk.doc_id,
            anchor=f"{chunk.doc_id}#p{chunk.chunk_index}",
            text=chunk.text,
            score=origin.score * self.config.expansion_score_factor,
            headings=tuple(extract_headings(chunk.text)),
            updated_at=chunk.updated_at,
            tokens=estimate_token_count(chunk.text, self.config.chars_per_token),
        )


def truncate_text(text: str, max_tokens: int, chars_per_token: int = 4) -> str:
    """Cut `text` to roughly `max_tokens`, preferring a sentence end near the limit."""
    max_chars = max_tokens * chars_per_token
    if len(text) <= max_chars:
        return text
    truncated = text[:max_chars]
    sentence_end = truncated.rfind(".")
    if sentence_end > max_chars * 0.7:
        return truncated[: sentence_end + 1]
    return truncated[: max(0, max_chars - 3)] + "..."


def chunk_confidence(chunks: list[RagChunk]) -> float:
    """`0.7 * mean + 0.3 * max` of chunk scores, capped at 1; 0 for no chunks."""
    if not chunks:
        return 0.0
    scores = [chunk.score for chunk in chunks]
    mean = sum(scores) / len(scores)
    return min(1.0, 0.7 * mean + 0.3 * max(scores))


def unique_source_count(chunks: list[RagChunk]) -> int:
    return len({chunk.doc_id for chunk in chunks})


def compute_coverage(
    chunks: list[RagChunk],
    web_results: list[WebResult],
    task: Task,
    config: RetrievalConfig | None = None,
) -> float:
    config = config or RetrievalConfig()
    rag_coverage = 0.0
    if chunks:
        source_share = min(1.0, unique_source_count(chunks) / config.full_coverage_sources)
        weight = config.coverage_confidence_weight
        rag_coverage = weight * chunk_confidence(chunks) + (1 - weight) * source_share
    web_coverage = min(config.max_web_coverage, len(web_results) * config.web_result_coverage)

    total = min(1.0, rag_coverage + web_coverage)
    if task.allows_low_coverage:
        if not chunks and not web_results:
            return 0.0
        return max(config.writing_coverage_floor, total)
    return total


def build_evidence_bundle(
    rag_chunks: list[RagChunk], web_results: list[WebResult] | None = None
) -> EvidenceBundle:
    web = list(web_results or [])
    total = sum(chunk.tokens for chunk in rag_chunks) + sum(result.tokens for result in web)
    return EvidenceBundle(rag=list(rag_chunks), web=web, total_tokens=total)


def extract_headings(text: str, limit: int = 5) -> list[str]:
    headings = [match.strip() for match in _MARKDOWN_HEADING.findall(text)]
    if not headings:
        headings = _SENTENCE_LINE.findall(text)[:3]
    return headings[:limit]
