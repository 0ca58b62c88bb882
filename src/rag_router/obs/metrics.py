"""Running router metrics with atomic per-request updates."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from rag_router.types import Intent, RouteMethod


@dataclass(frozen=True, slots=True)
class RouterMetrics:
    """Read-only snapshot of router activity."""

    total_requests: int = 0
    classifier_hits: int = 0
    embedding_hits: int = 0
    meta_classifier_hits: int = 0
    fallback_responses: int = 0
    average_confidence: float = 0.0
    average_processing_time_ms: float = 0.0
    intent_distribution: dict[str, int] = field(default_factory=dict)


class RouterMetricsCollector:
    """Thread-safe accumulator owned by one router instance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._hits: dict[RouteMethod, int] = {method: 0 for method in RouteMethod}
        self._fallbacks = 0
        self._confidence_sum = 0.0
        self._latency_sum = 0.0
        self._intents: dict[str, int] = {}

    def record(
        self,
        *,
        intent: Intent,
        confidence: float,
        latency_ms: float,
        method: RouteMethod | None,
    ) -> None:
        """Record one completed request; `method=None` marks a top-level fallback."""
        with self._lock:
            self._total += 1
            if method is None:
                self._fallbacks += 1
            else:
                self._hits[method] += 1
            self._confidence_sum += confidence
            self._latency_sum += latency_ms
            self._intents[intent.value] = self._intents.get(intent.value, 0) + 1

    def snapshot(self) -> RouterMetrics:
        with self._lock:
            total = self._total
            return RouterMetrics(
                total_requests=total,
                classifier_hits=self._hits[RouteMethod.CLASSIFIER],
                embedding_hits=self._hits[RouteMethod.EMBEDDING],
                meta_classifier_hits=self._hits[RouteMethod.META_CLASSIFIER],
                fallback_responses=self._fallbacks,
                average_confidence=self._confidence_sum / total if total else 0.0,
                average_processing_time_ms=self._latency_sum / total if total else 0.0,
                intent_distribution=dict(self._intents),
            )
