import asyncio

import pytest

from rag_router.config import RetrievalConfig
from rag_router.embedding.provider import HashingEmbeddingProvider
from rag_router.embedding.store import EmbeddingStore
from rag_router.retrieval.adapter import (
    RetrievalAdapter,
    build_evidence_bundle,
    chunk_confidence,
    compute_coverage,
    extract_headings,
    truncate_text,
)
from rag_router.retrieval.vector_store import InMemoryChunkIndex
from rag_router.types import IndexedChunk, RagChunk, Task, WebResult


def _chunk(chunk_id: str, *, tokens: int = 10, score: float = 0.5, doc_id: str = "doc-1", text: str | None = None) -> RagChunk:
    return RagChunk(
        id=chunk_id,
        doc_id=doc_id,
        anchor=f"{doc_id}#p0",
        text=text if text is not None else "x" * tokens * 4,
        score=score,
        tokens=tokens,
    )


def _adapter(config: RetrievalConfig | None = None) -> tuple[RetrievalAdapter, InMemoryChunkIndex, EmbeddingStore]:
    store = EmbeddingStore(HashingEmbeddingProvider(dimension=128))
    index = InMemoryChunkIndex()
    return RetrievalAdapter(store, index, index, config), index, store


def _index_document(index: InMemoryChunkIndex, store: EmbeddingStore, chunks: list[IndexedChunk]) -> None:
    async def embed_all() -> list[list[float]]:
        return [await store.embed(chunk.text) for chunk in chunks]

    index.upsert(chunks, asyncio.run(embed_all()))


class ExplodingVectorStore:
    async def query(self, vector, top_k, metadata_filter=None):
        raise RuntimeError("index offline")


class ExplodingLookup:
    async def resolve(self, chunk_ids):
        return []

    async def neighbors(self, chunk_id, window):
        raise RuntimeError("lookup offline")

    async def parents(self, chunk_id):
        raise RuntimeError("lookup offline")


def test_pack_context_drops_second_chunk_when_remainder_is_small() -> None:
    adapter, _, _ = _adapter()
    first = _chunk("c1", tokens=500, score=0.9)
    second = _chunk("c2", tokens=700, score=0.5)

    packed = adapter.pack_context([second, first], budget_tokens=600)

    assert [chunk.id for chunk in packed] == ["c1"]
    assert packed[0] == first
    assert sum(chunk.tokens for chunk in packed) <= 600


def test_pack_context_truncates_one_boundary_chunk_then_stops() -> None:
    adapter, _, _ = _adapter()
    sentence = "Solar capacity grew quickly. "
    long_text = sentence * 60
    chunks = [
        _chunk("c1", tokens=300, score=0.9),
        _chunk("c2", tokens=400, score=0.8, text=long_text),
        _chunk("c3", tokens=50, score=0.1),
    ]

    packed = adapter.pack_context(chunks, budget_tokens=500)

    assert [chunk.id for chunk in packed] == ["c1", "c2"]
    assert packed[1].tokens == 200
    assert sum(chunk.tokens for chunk in packed) <= 500
    assert packed[1].text.endswith(".")
    assert len(packed[1].text) <= 200 * 4


def test_truncate_text_hard_cut_keeps_ellipsis_within_budget() -> None:
    text = "word " * 100

    truncated = truncate_text(text, max_tokens=10)

    assert truncated == text[:37] + "..."
    assert len(truncated) <= 10 * 4


def test_truncate_text_keeps_short_text() -> None:
    assert truncate_text("Short.", max_tokens=10) == "Short."


def test_confidence_is_zero_for_no_chunks_and_monotone_in_scores() -> None:
    adapter, _, _ = _adapter()
    assert adapter.confidence([]) == 0.0

    low = [_chunk("a", score=0.2), _chunk("b", score=0.4)]
    high = [_chunk("a", score=0.6), _chunk("b", score=0.4)]

    assert adapter.confidence(low) == pytest.approx(0.7 * 0.3 + 0.3 * 0.4)
    assert adapter.confidence(high) >= adapter.confidence(low)
    assert chunk_confidence([_chunk("a", score=1.0)]) == 1.0


def test_coverage_combines_confidence_sources_and_web() -> None:
    chunks = [_chunk("a", score=1.0, doc_id="d1"), _chunk("b", score=1.0, doc_id="d2")]
    web = [WebResult(url="https://example.com/a"), WebResult(url="https://example.org/b")]

    coverage = compute_coverage(chunks, web, Task.RAG)

    assert coverage == pytest.approx(min(1.0, 0.6 * 1.0 + 0.4 * (2 / 8) + 0.2))


def test_web_coverage_is_capped() -> None:
    web = [WebResult(url=f"https://site{i}.com") for i in range(10)]

    assert compute_coverage([], web, Task.WEB_SEARCH) == pytest.approx(0.5)


def test_writing_tasks_get_a_floor_only_with_some_evidence() -> None:
    web = [WebResult(url="https://example.com")]

    assert compute_coverage([], [], Task.WRITE) == 0.0
    assert compute_coverage([], web, Task.WRITE) == pytest.approx(0.3)
    assert compute_coverage([], web, Task.SUMMARIZE) == pytest.approx(0.1)


def test_search_ranks_chunks_and_respects_scope() -> None:
    adapter, index, store = _adapter()
    _index_document(
        index,
        store,
        [
            IndexedChunk("a-0", "doc-a", "# Solar\nSolar panels convert sunlight into power.", 0, metadata={"scope": "tenant-a"}),
            IndexedChunk("a-1", "doc-a", "Wind turbines convert wind into power.", 1, metadata={"scope": "tenant-a"}),
            IndexedChunk("b-0", "doc-b", "Solar panels convert sunlight into power.", 0, metadata={"scope": "tenant-b"}),
        ],
    )

    results = asyncio.run(adapter.search("solar panels sunlight", scope="tenant-a"))

    assert [chunk.id for chunk in results][0] == "a-0"
    assert {chunk.doc_id for chunk in results} == {"doc-a"}
    assert results == sorted(results, key=lambda chunk: chunk.score, reverse=True)
    top = results[0]
    assert top.anchor == "doc-a#p0"
    assert top.headings == ("Solar",)
    assert top.tokens == -(-len(top.text) // 4)
    assert all(0.0 <= chunk.score <= 1.0 for chunk in results)


def test_search_returns_empty_when_vector_store_fails() -> None:
    store = EmbeddingStore(HashingEmbeddingProvider(dimension=32))
    adapter = RetrievalAdapter(store, ExplodingVectorStore())

    assert asyncio.run(adapter.search("anything at all")) == []


def test_search_returns_empty_without_query_embedding() -> None:
    adapter, index, store = _adapter()
    _index_document(index, store, [IndexedChunk("a-0", "doc-a", "Some text.", 0)])

    assert asyncio.run(adapter.search("?!")) == []


def test_expand_hierarchy_adds_siblings_and_parents_once() -> None:
    adapter, index, store = _adapter()
    _index_document(
        index,
        store,
        [
            IndexedChunk("sec", "doc-a", "## Section\nOverview of the section.", 0),
            IndexedChunk("p1", "doc-a", "First paragraph.", 1, parent_id="sec"),
            IndexedChunk("p2", "doc-a", "Second paragraph.", 2, parent_id="sec"),
            IndexedChunk("p3", "doc-a", "Third paragraph.", 3, parent_id="sec"),
            IndexedChunk("other", "doc-b", "Unrelated.", 2),
        ],
    )
    seed = RagChunk(id="p2", doc_id="doc-a", anchor="doc-a#p2", text="Second paragraph.", score=0.9, tokens=5)

    expanded = asyncio.run(adapter.expand_hierarchy([seed], neighbors=1, include_parents=True))

    ids = [chunk.id for chunk in expanded]
    assert ids[0] == "p2"
    assert sorted(ids) == ["p1", "p2", "p3", "sec"]
    assert len(ids) == len(set(ids))
    derived = {chunk.id: chunk for chunk in expanded}
    assert derived["p1"].score == pytest.approx(0.9 * 0.8)
    assert derived["sec"].headings == ("Section",)


def test_expand_hierarchy_returns_input_on_lookup_failure() -> None:
    store = EmbeddingStore(HashingEmbeddingProvider(dimension=32))
    adapter = RetrievalAdapter(store, InMemoryChunkIndex(), ExplodingLookup())
    chunks = [_chunk("c1"), _chunk("c2")]

    assert asyncio.run(adapter.expand_hierarchy(chunks)) == chunks


def test_evidence_bundle_counts_web_tokens() -> None:
    bundle = build_evidence_bundle([_chunk("a", tokens=40)], [WebResult(url="https://a.io"), WebResult(url="https://b.io", tokens=30)])

    assert bundle.total_tokens == 40 + 100 + 30


def test_extract_headings_falls_back_to_sentence_lines() -> None:
    assert extract_headings("# One\ntext\n## Two") == ["One", "Two"]
    assert extract_headings("Intro line here.\nlowercase line.\nAnother Line!") == [
        "Intro line here.",
        "Another Line!",
    ]
