"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Intent(str, Enum):
    ASK = "ask"
    WEB_SEARCH = "web_search"
    RAG_QUERY = "rag_query"
    EDIT_REQUEST = "edit_request"
    EDITOR_WRITE = "editor_write"
    OTHER = "other"


class EditTarget(str, Enum):
    SELECTION = "selection"
    FILE = "file"
    SECTION = "section"


class OutputKind(str, Enum):
    ANSWER = "answer"
    LINKS = "links"
    SUMMARY = "summary"
    DIFF = "diff"
    PATCH = "patch"


class RouteMethod(str, Enum):
    CLASSIFIER = "classifier"
    EMBEDDING = "embedding"
    META_CLASSIFIER = "meta_classifier"


class Task(str, Enum):
    """Downstream task kinds, with explicit verification flags."""

    ASK = "ask"
    WEB_SEARCH = "web_search"
    RAG = "rag"
    EDIT = "edit"
    WRITE = "write"
    SUMMARIZE = "summarize"
    FACT_CHECK = "fact_check"

    @property
    def allows_low_coverage(self) -> bool:
        return self is Task.WRITE

    @property
    def is_factual(self) -> bool:
        return self in (Task.SUMMARIZE, Task.FACT_CHECK)


INTENTS: tuple[Intent, ...] = tuple(Intent)


@dataclass(frozen=True, slots=True)
class LabeledExample:
    """A labeled query stored in the embedding store."""

    id: str
    query: str
    intent: Intent
    confidence: float
    embedding: tuple[float, ...]
    timestamp: float


@dataclass(frozen=True, slots=True)
class SimilarExample:
    """A nearest-neighbor hit from the embedding store."""

    id: str
    similarity: float
    query: str
    intent: Intent
    confidence: float


@dataclass(slots=True)
class IntentStats:
    count: int = 0
    avg_confidence: float = 0.0
    max_similarity: float = 0.0


@dataclass(frozen=True, slots=True)
class RagChunk:
    """A retrieved passage, valid for the lifetime of one request."""

    id: str
    doc_id: str
    anchor: str
    text: str
    score: float
    headings: tuple[str, ...] = ()
    updated_at: str = ""
    tokens: int = 0


@dataclass(frozen=True, slots=True)
class WebResult:
    """A live web lookup result supplied by a web search provider."""

    url: str
    title: str = ""
    snippet: str = ""
    score: float = 0.8
    tokens: int = 100


@dataclass(slots=True)
class IndexedChunk:
    """A chunk as held by a vector store / chunk lookup."""

    chunk_id: str
    doc_id: str
    text: str
    chunk_index: int = 0
    parent_id: str | None = None
    updated_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class VectorMatch:
    """A raw vector-store hit before chunk resolution."""

    id: str
    score: float
    metadata: dict[str, Any]


@dataclass(slots=True)
class EvidenceBundle:
    rag: list[RagChunk]
    web: list[WebResult]
    total_tokens: int
