import asyncio
import json
import time

import pytest

from rag_router.config import FewShotConfig, RouterConfig
from rag_router.embedding.provider import EmbeddingProvider, HashingEmbeddingProvider
from rag_router.embedding.store import EmbeddingStore
from rag_router.router.classifier import ClassificationResult, ClassifierMetrics, LinearIntentClassifier
from rag_router.router.few_shot import FewShotClassifier
from rag_router.router.orchestrator import HybridRouter, distribution_confidence, top_intent
from rag_router.router.schema import RouterContext
from rag_router.router.seeds import seed_examples
from rag_router.types import INTENTS, Intent, IntentStats, RouteMethod


class ZeroEmbeddingProvider(EmbeddingProvider):
    dimension = 8

    async def embed(self, text: str) -> list[float]:
        return [0.0] * self.dimension


class LaggingProvider(HashingEmbeddingProvider):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.completed = 0

    async def embed(self, text: str) -> list[float]:
        await asyncio.sleep(self.delay)
        self.completed += 1
        return await super().embed(text)


class DownProvider(EmbeddingProvider):
    dimension = 8

    async def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service down")


class UnsureClassifier:
    """Always answers `ask` with low confidence; optionally stalls or fails."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.trained_on = 0

    async def train(self, examples) -> ClassifierMetrics:
        self.trained_on = len(examples)
        return ClassifierMetrics(accuracy=1.0, precision={}, recall={}, f1={})

    async def classify(self, query: str, *, cancel_event=None) -> ClassificationResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        share = 0.2 / (len(INTENTS) - 1)
        probabilities = {intent: share for intent in INTENTS}
        probabilities[Intent.ASK] = 0.2
        return ClassificationResult(intent=Intent.ASK, confidence=0.2, probabilities=probabilities)

    def status(self) -> dict[str, object]:
        return {"is_trained": self.trained_on > 0}


class ScriptedCompletion:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls = 0

    async def complete(self, messages, *, model, temperature, max_tokens) -> str:
        self.calls += 1
        return self.reply


def _hashing_router() -> HybridRouter:
    return HybridRouter(EmbeddingStore(HashingEmbeddingProvider()))


def _low_confidence_router(completion=None, classifier=None) -> HybridRouter:
    # Zero embeddings give no neighbor evidence, so neither of the first two tiers can win.
    store = EmbeddingStore(ZeroEmbeddingProvider())
    few_shot = FewShotClassifier(store, completion) if completion is not None else None
    return HybridRouter(store, classifier or UnsureClassifier(), few_shot)


def test_general_question_routes_to_ask_with_high_confidence() -> None:
    router = _hashing_router()

    response = asyncio.run(router.classify_intent("What is machine learning?", RouterContext()))

    assert response.classification.intent is Intent.ASK
    assert response.classification.confidence >= 0.7
    assert response.explanation is not None
    assert response.explanation.method is not RouteMethod.META_CLASSIFIER
    assert not response.fallback_used
    assert response.features.max_sim == pytest.approx(1.0)


def test_news_question_routes_to_web_search_with_recency() -> None:
    router = _hashing_router()

    response = asyncio.run(
        router.classify_intent("What's the latest news about Tesla?", RouterContext())
    )

    assert response.classification.intent is Intent.WEB_SEARCH
    assert response.classification.slots.needs_recency
    assert response.classification.slots.outputs.value == "links"
    assert response.features.volatile


def test_rag_route_carries_attached_doc_ids() -> None:
    router = _hashing_router()
    context = RouterContext(has_attached_docs=True, doc_ids=["doc-9"])

    response = asyncio.run(
        router.classify_intent("What does my research document say about climate change?", context)
    )

    assert response.classification.intent is Intent.RAG_QUERY
    assert response.classification.slots.target_docs == ("doc-9",)
    assert response.features.has_docs


def test_initialize_seeds_store_once() -> None:
    router = _hashing_router()

    async def scenario() -> None:
        await asyncio.gather(router.initialize(), router.initialize())
        await router.initialize()

    asyncio.run(scenario())

    assert router.is_initialized
    assert router.embedding_store.stats()["total_vectors"] == len(seed_examples()) == 36


def test_low_confidence_falls_back_to_keyword_heuristic() -> None:
    router = _low_confidence_router()

    response = asyncio.run(router.classify_intent("Rewrite my intro", RouterContext(is_selection_present=True)))

    assert response.classification.intent is Intent.EDIT_REQUEST
    assert response.classification.confidence == pytest.approx(0.4)
    assert response.classification.slots.edit_target.value == "selection"
    assert response.explanation.method is RouteMethod.META_CLASSIFIER
    assert "heuristic" in response.explanation.reasoning
    assert response.fallback_used


def test_low_confidence_uses_few_shot_tier_when_configured() -> None:
    reply = json.dumps(
        {
            "intent": "editor_write",
            "confidence": 0.77,
            "slots": {"topic": "onboarding", "needs_recency": False, "outputs": "answer"},
            "reasoning": "request for new content",
        }
    )
    completion = ScriptedCompletion(reply)
    router = _low_confidence_router(completion)

    response = asyncio.run(router.classify_intent("Put together onboarding notes", RouterContext()))

    assert completion.calls == 1
    assert response.classification.intent is Intent.EDITOR_WRITE
    assert response.classification.confidence == pytest.approx(0.77)
    assert response.explanation.method is RouteMethod.META_CLASSIFIER
    assert response.explanation.reasoning == "request for new content"
    assert not response.fallback_used
    assert router.get_metrics().meta_classifier_hits == 1


def test_few_shot_fallback_drops_to_heuristic() -> None:
    completion = ScriptedCompletion("not json")
    router = _low_confidence_router(completion)

    response = asyncio.run(router.classify_intent("latest price of gold", RouterContext()))

    assert completion.calls == 1
    assert response.classification.intent is Intent.WEB_SEARCH
    assert response.classification.confidence == pytest.approx(0.4)


def test_request_timeout_returns_safe_fallback() -> None:
    store = EmbeddingStore(ZeroEmbeddingProvider())
    router = HybridRouter(
        store,
        UnsureClassifier(delay=2.0),
        config=RouterConfig(request_timeout_seconds=0.05),
    )

    response = asyncio.run(router.classify_intent("anything", RouterContext(has_attached_docs=True, doc_ids=["d"])))

    assert response.fallback_used
    assert response.classification.intent is Intent.RAG_QUERY
    assert response.classification.confidence == pytest.approx(0.3)
    assert response.explanation is None
    assert router.get_metrics().fallback_responses == 1


def test_unexpected_error_returns_safe_fallback() -> None:
    router = _low_confidence_router(classifier=UnsureClassifier(error=RuntimeError("weights corrupted")))

    response = asyncio.run(router.classify_intent("Who is Ada Lovelace?", RouterContext()))

    assert response.fallback_used
    assert response.classification.intent is Intent.ASK
    assert 0.0 <= response.classification.confidence <= 1.0


def test_cancelled_request_returns_fallback() -> None:
    router = _hashing_router()
    asyncio.run(router.initialize())

    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        return await router.classify_intent("What is machine learning?", RouterContext(), cancel)

    response = asyncio.run(scenario())

    assert response.fallback_used
    assert response.classification.confidence == pytest.approx(0.3)


def test_feedback_only_stores_corrections_and_retrain_uses_them() -> None:
    classifier = UnsureClassifier()
    router = HybridRouter(EmbeddingStore(HashingEmbeddingProvider(dimension=64)), classifier)

    async def scenario() -> None:
        await router.initialize()
        await router.add_feedback("Who won the match yesterday?", "web_search", "ask", 0.55)
        await router.add_feedback("Who is Ada Lovelace?", Intent.ASK, Intent.ASK, 0.9)
        await router.retrain()

    asyncio.run(scenario())

    assert router.embedding_store.stats()["total_vectors"] == 37
    assert classifier.trained_on == 37
    assert router.status()["feedback_examples"] == 1


def test_metrics_track_methods_and_intents() -> None:
    router = _hashing_router()

    async def scenario() -> None:
        await router.classify_intent("What is machine learning?")
        await router.classify_intent("Breaking news about AI")

    asyncio.run(scenario())
    metrics = router.get_metrics()

    assert metrics.total_requests == 2
    assert metrics.classifier_hits + metrics.embedding_hits + metrics.meta_classifier_hits == 2
    assert sum(metrics.intent_distribution.values()) == 2
    assert 0.0 < metrics.average_confidence <= 1.0


def test_real_classifier_is_trained_during_initialize() -> None:
    store = EmbeddingStore(HashingEmbeddingProvider())
    classifier = LinearIntentClassifier(store)
    router = HybridRouter(store, classifier)

    asyncio.run(router.initialize())

    assert classifier.is_trained
    assert router.status()["classifier_status"]["is_trained"]


def test_distribution_helpers() -> None:
    distribution = {
        Intent.WEB_SEARCH: IntentStats(count=3),
        Intent.ASK: IntentStats(count=3),
        Intent.EDIT_REQUEST: IntentStats(count=4),
    }

    assert distribution_confidence(distribution) == pytest.approx(0.4)
    assert top_intent(distribution) is Intent.EDIT_REQUEST
    assert top_intent({Intent.WEB_SEARCH: IntentStats(count=2), Intent.ASK: IntentStats(count=2)}) is Intent.WEB_SEARCH
    assert distribution_confidence({}) == 0.0
    assert top_intent({}) is Intent.ASK


def test_first_request_stays_within_timeout_while_seeding_continues() -> None:
    provider = LaggingProvider(delay=0.02)
    router = HybridRouter(
        EmbeddingStore(provider), config=RouterConfig(request_timeout_seconds=0.1)
    )

    async def scenario():
        started = time.perf_counter()
        first = await router.classify_intent("hello there", RouterContext())
        elapsed = time.perf_counter() - started
        await router.initialize()
        second = await router.classify_intent("What is machine learning?", RouterContext())
        return first, elapsed, second

    first, elapsed, second = asyncio.run(scenario())

    assert elapsed < 0.5
    assert first.fallback_used
    assert first.classification.confidence == pytest.approx(0.3)
    assert router.is_initialized
    assert router.embedding_store.stats()["total_vectors"] == len(seed_examples())
    assert second.classification.intent is Intent.ASK
    assert not second.fallback_used


def test_cancel_during_seeding_returns_promptly() -> None:
    router = HybridRouter(EmbeddingStore(LaggingProvider(delay=0.05)))

    async def scenario():
        cancel = asyncio.Event()

        async def _trip() -> None:
            await asyncio.sleep(0.05)
            cancel.set()

        trip = asyncio.ensure_future(_trip())
        started = time.perf_counter()
        response = await router.classify_intent("hello there", RouterContext(), cancel)
        elapsed = time.perf_counter() - started
        await trip
        return response, elapsed

    response, elapsed = asyncio.run(scenario())

    assert response.fallback_used
    assert elapsed < 1.0
    assert not router.is_initialized


def test_request_timeout_aborts_in_flight_embedding_calls() -> None:
    provider = LaggingProvider(delay=0.0)
    router = HybridRouter(
        EmbeddingStore(provider), config=RouterConfig(request_timeout_seconds=0.05)
    )

    async def scenario():
        await router.initialize()
        provider.delay = 0.3
        completed_before = provider.completed
        response = await router.classify_intent("an uncached question about tides")
        await asyncio.sleep(0.5)
        return response, provider.completed - completed_before

    response, completed_after_timeout = asyncio.run(scenario())

    assert response.fallback_used
    assert completed_after_timeout == 0


def test_embedding_outage_degrades_to_low_confidence_route() -> None:
    store = EmbeddingStore(DownProvider())
    router = HybridRouter(store, LinearIntentClassifier(store))

    response = asyncio.run(router.classify_intent("Rewrite my paragraph please", RouterContext()))

    assert response.explanation.method is RouteMethod.META_CLASSIFIER
    assert response.classification.intent is Intent.EDIT_REQUEST
    assert response.classification.confidence == pytest.approx(0.4)
    assert response.fallback_used
    assert response.features.max_sim == 0.0
