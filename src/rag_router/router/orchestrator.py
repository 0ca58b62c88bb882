"""Confidence-gated routing cascade across the three intent classifiers."""

from __future__ import annotations

import asyncio
import logging

from rag_router.config import RouterConfig
from rag_router.embedding.store import EmbeddingStore
from rag_router.errors import ProviderUnavailable
from rag_router.obs.metrics import RouterMetrics, RouterMetricsCollector
from rag_router.obs.tracing import Timer
from rag_router.router.classifier import (
    ClassificationResult,
    ClassifierMetrics,
    LinearIntentClassifier,
    TrainingExample,
)
from rag_router.router.few_shot import FewShotClassifier
from rag_router.router.heuristics import (
    build_classification,
    extract_features,
    fallback_classification,
    keyword_intent,
)
from rag_router.router.schema import (
    ClassificationExplanation,
    IntentClassification,
    RouterContext,
    RouterResponse,
    SimilarExampleRef,
)
from rag_router.router.seeds import seed_examples
from rag_router.runtime import call_provider
from rag_router.types import Intent, IntentStats, RouteMethod

logger = logging.getLogger(__name__)


class HybridRouter:
    """Routes a query through classifier, embedding neighbors and a low-confidence tier.

    The embedding-distribution lookup and the linear classifier run concurrently.
    The few-shot tier, when configured, only runs after both missed their
    thresholds; if it is absent, not warranted, or falls back, the keyword
    heuristic answers instead. Either way the method is `meta_classifier`.
    """

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        classifier: LinearIntentClassifier | None = None,
        few_shot: FewShotClassifier | None = None,
        config: RouterConfig | None = None,
        *,
        metrics: RouterMetricsCollector | None = None,
    ) -> None:
        self.embedding_store = embedding_store
        self.classifier = classifier or LinearIntentClassifier(embedding_store)
        self.few_shot = few_shot
        self.config = config or RouterConfig()
        self.metrics = metrics or RouterMetricsCollector()
        self._feedback: list[TrainingExample] = []
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._init_task: asyncio.Future[None] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load the seed examples and train the classifier once."""
        async with self._init_lock:
            if self._initialized:
                return
            seeds = seed_examples()
            logger.info("Seeding router with %d labeled examples", len(seeds))
            for example in seeds:
                await self.embedding_store.add_example(
                    example.query, example.intent, example.confidence
                )
            await self.classifier.train(seeds)
            self._initialized = True

    async def classify_intent(
        self,
        query: str,
        context: RouterContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RouterResponse:
        """Classify `query`; never raises and always answers within the request timeout."""

        context = context or RouterContext()
        with Timer() as timer:
            try:
                classification, explanation, method, max_sim = await asyncio.wait_for(
                    self._route(query, context, cancel_event),
                    timeout=self.config.request_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Routing timed out after %.2fs, returning fallback",
                    self.config.request_timeout_seconds,
                )
                return self._fallback_response(query, context, timer)
            except _Cancelled:
                logger.info("Routing cancelled by caller, returning fallback")
                return self._fallback_response(query, context, timer)
            except Exception:
                logger.exception("Router classification failed, returning fallback")
                return self._fallback_response(query, context, timer)

            self.metrics.record(
                intent=classification.intent,
                confidence=classification.confidence,
                latency_ms=timer.peek_ms(),
                method=method,
            )
            return RouterResponse(
                classification=classification,
                features=extract_features(query, context, max_sim),
                processing_time_ms=timer.peek_ms(),
                fallback_used=classification.confidence < self.config.fallback_used_below,
                explanation=explanation,
            )

    async def add_feedback(
        self,
        query: str,
        correct_intent: Intent | str,
        predicted_intent: Intent | str,
        confidence: float,
    ) -> None:
        """Store a corrected example; retraining is a separate `retrain()` call."""

        correct = Intent(correct_intent)
        predicted = Intent(predicted_intent)
        if correct is predicted:
            return
        await self.embedding_store.add_example(query, correct, 1.0)
        self._feedback.append(TrainingExample(query=query, intent=correct, confidence=1.0))
        logger.info(
            "Feedback stored: %r %s -> %s (predicted confidence %.2f)",
            query,
            predicted.value,
            correct.value,
            confidence,
        )

    async def retrain(self) -> ClassifierMetrics:
        if not self._initialized:
            await self.initialize()
        examples = seed_examples() + list(self._feedback)
        return await self.classifier.train(examples)

    def get_metrics(self) -> RouterMetrics:
        return self.metrics.snapshot()

    def status(self) -> dict[str, object]:
        return {
            "initialized": self._initialized,
            "embedding_stats": self.embedding_store.stats(),
            "classifier_status": self.classifier.status(),
            "feedback_examples": len(self._feedback),
            "total_requests": self.metrics.snapshot().total_requests,
        }

    async def _route(
        self,
        query: str,
        context: RouterContext,
        cancel_event: asyncio.Event | None,
    ) -> tuple[IntentClassification, ClassificationExplanation, RouteMethod, float]:
        await self._wait_initialized(cancel_event)
        return await self._cascade(query, context, cancel_event)

    async def _wait_initialized(self, cancel_event: asyncio.Event | None) -> None:
        """Wait for seeding without letting a timed-out request abort it.

        Initialization runs as one background task shared by all requests. A
        request that times out or is cancelled stops waiting, but seeding keeps
        going and a later request picks up the finished state.
        """

        if self._initialized:
            return
        _raise_if_cancelled(cancel_event)
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self.initialize())
        try:
            await call_provider(
                asyncio.shield(self._init_task),
                timeout=self.config.request_timeout_seconds,
                what="router initialization",
                cancel_event=cancel_event,
            )
        except ProviderUnavailable as exc:
            if exc.reason == "cancelled":
                raise _Cancelled() from exc
            raise

    async def _cascade(
        self,
        query: str,
        context: RouterContext,
        cancel_event: asyncio.Event | None,
    ) -> tuple[IntentClassification, ClassificationExplanation, RouteMethod, float]:
        distribution, predicted = await asyncio.gather(
            self.embedding_store.intent_distribution(
                query, self.config.neighbor_k, cancel_event=cancel_event
            ),
            self.classifier.classify(query, cancel_event=cancel_event),
        )
        _raise_if_cancelled(cancel_event)

        embedding_confidence = distribution_confidence(distribution)
        embedding_intent = top_intent(distribution)
        max_sim = max((stats.max_similarity for stats in distribution.values()), default=0.0)

        if predicted.confidence >= self.config.classifier_threshold:
            return (
                build_classification(predicted.intent, predicted.confidence, context),
                ClassificationExplanation(
                    method=RouteMethod.CLASSIFIER,
                    confidence=predicted.confidence,
                    probabilities=predicted.probabilities,
                ),
                RouteMethod.CLASSIFIER,
                max_sim,
            )

        if embedding_confidence >= self.config.embedding_threshold:
            similar = await self.embedding_store.search_similar(
                query, 3, embedding_intent, cancel_event=cancel_event
            )
            return (
                build_classification(embedding_intent, embedding_confidence, context),
                ClassificationExplanation(
                    method=RouteMethod.EMBEDDING,
                    confidence=embedding_confidence,
                    similar_examples=[
                        SimilarExampleRef(
                            query=hit.query, intent=hit.intent, similarity=hit.similarity
                        )
                        for hit in similar
                    ],
                ),
                RouteMethod.EMBEDDING,
                max_sim,
            )

        classification, explanation = await self._low_confidence_tier(
            query, context, predicted, embedding_confidence, cancel_event
        )
        _raise_if_cancelled(cancel_event)
        return classification, explanation, RouteMethod.META_CLASSIFIER, max_sim

    async def _low_confidence_tier(
        self,
        query: str,
        context: RouterContext,
        predicted: ClassificationResult,
        embedding_confidence: float,
        cancel_event: asyncio.Event | None,
    ) -> tuple[IntentClassification, ClassificationExplanation]:
        if self.few_shot is not None and self.few_shot.should_use_meta_classifier(
            predicted.confidence, embedding_confidence
        ):
            result = await self.few_shot.classify(query, context, cancel_event=cancel_event)
            if not result.fallback_used:
                return result.classification, ClassificationExplanation(
                    method=RouteMethod.META_CLASSIFIER,
                    confidence=result.classification.confidence,
                    reasoning=result.reasoning,
                    similar_examples=[
                        SimilarExampleRef(
                            query=hit.query, intent=hit.intent, similarity=hit.similarity
                        )
                        for hit in result.examples_used
                    ],
                )
            logger.info("Few-shot tier fell back, using keyword heuristic")

        confidence = self.config.heuristic_confidence
        return build_classification(keyword_intent(query, context), confidence, context), (
            ClassificationExplanation(
                method=RouteMethod.META_CLASSIFIER,
                confidence=confidence,
                reasoning="Low confidence from both embedding and classifier, "
                "using heuristic fallback",
            )
        )

    def _fallback_response(
        self, query: str, context: RouterContext, timer: Timer
    ) -> RouterResponse:
        classification = fallback_classification(context, self.config.fallback_confidence)
        self.metrics.record(
            intent=classification.intent,
            confidence=classification.confidence,
            latency_ms=timer.peek_ms(),
            method=None,
        )
        return RouterResponse(
            classification=classification,
            features=extract_features(query, context),
            processing_time_ms=timer.peek_ms(),
            fallback_used=True,
        )


class _Cancelled(Exception):
    pass


def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise _Cancelled()


def distribution_confidence(distribution: dict[Intent, IntentStats]) -> float:
    """Share of the top-k neighbors held by the most frequent intent."""
    total = sum(stats.count for stats in distribution.values())
    if total == 0:
        return 0.0
    return max(stats.count for stats in distribution.values()) / total


def top_intent(distribution: dict[Intent, IntentStats]) -> Intent:
    """Most frequent neighbor intent; ties go to the intent seen nearest first."""
    best: Intent | None = None
    for intent, stats in distribution.items():
        if best is None or stats.count > distribution[best].count:
            best = intent
    return best if best is not None else Intent.ASK
