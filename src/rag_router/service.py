"""Routing and evidence-assembly facade consumed by the HTTP layer and callers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from rag_router.config import (
    EmbeddingConfig,
    FewShotConfig,
    InstructionConfig,
    ProviderSettings,
    RetrievalConfig,
    RouterConfig,
)
from rag_router.embedding.provider import (
    EmbeddingProvider,
    HashingEmbeddingProvider,
    OpenAIEmbeddingProvider,
)
from rag_router.embedding.store import EmbeddingStore
from rag_router.errors import ProviderUnavailable
from rag_router.instruction.builder import build_instruction, infer_task
from rag_router.instruction.schema import Instruction, VerificationOptions, VerificationResult
from rag_router.instruction.verifier import verify_instruction
from rag_router.llm.completion import OpenAIChatCompletionProvider
from rag_router.obs.metrics import RouterMetrics
from rag_router.retrieval.adapter import RetrievalAdapter
from rag_router.retrieval.vector_store import InMemoryChunkIndex
from rag_router.retrieval.web import WebSearchProvider
from rag_router.router.classifier import ClassifierMetrics, LinearIntentClassifier
from rag_router.router.few_shot import FewShotClassifier
from rag_router.router.orchestrator import HybridRouter
from rag_router.router.schema import RouterContext, RouterResponse
from rag_router.runtime import call_provider
from rag_router.types import Intent, RagChunk, Task, WebResult

logger = logging.getLogger(__name__)

_DOC_GROUNDED = frozenset({Intent.RAG_QUERY, Intent.EDITOR_WRITE})


@dataclass(slots=True)
class InstructionBundle:
    instruction: Instruction
    verification: VerificationResult
    chunks: list[RagChunk] = field(default_factory=list)
    web_results: list[WebResult] = field(default_factory=list)


class RoutingService:
    """Classifies requests and assembles verified, budget-packed instructions."""

    def __init__(
        self,
        router: HybridRouter,
        retrieval: RetrievalAdapter,
        web_search: WebSearchProvider | None = None,
        verification_options: VerificationOptions | None = None,
        instruction_config: InstructionConfig | None = None,
    ) -> None:
        self.router = router
        self.retrieval = retrieval
        self.web_search = web_search
        self.verification_options = verification_options or VerificationOptions()
        self.instruction_config = instruction_config or InstructionConfig()

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings | None = None,
        *,
        router_config: RouterConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
        web_search: WebSearchProvider | None = None,
    ) -> "RoutingService":
        """Wire OpenAI providers when a key is configured, offline ones otherwise."""

        settings = settings or ProviderSettings.from_env()
        provider: EmbeddingProvider
        few_shot_completion = None
        if settings.openai_api_key:
            embedding_config = EmbeddingConfig(
                model=settings.embedding_model, cache_path=settings.embedding_cache_path
            )
            provider = OpenAIEmbeddingProvider(settings, embedding_config)
            few_shot_completion = OpenAIChatCompletionProvider(settings)
        else:
            logger.info("No OpenAI API key configured, using offline hashing embeddings")
            provider = HashingEmbeddingProvider()
            embedding_config = EmbeddingConfig(
                dimension=provider.dimension, cache_path=settings.embedding_cache_path
            )

        store = EmbeddingStore(provider, embedding_config)
        few_shot = (
            FewShotClassifier(
                store, few_shot_completion, FewShotConfig(model=settings.routing_model)
            )
            if few_shot_completion is not None
            else None
        )
        router = HybridRouter(store, LinearIntentClassifier(store), few_shot, router_config)
        index = InMemoryChunkIndex()
        retrieval = RetrievalAdapter(store, index, index, retrieval_config)
        return cls(router, retrieval, web_search=web_search)

    async def classify_intent(
        self,
        query: str,
        context: RouterContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RouterResponse:
        return await self.router.classify_intent(query, context, cancel_event)

    async def build_and_verify_instruction(
        self,
        router_response: RouterResponse,
        query: str,
        selection: str | None = None,
        scope: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> InstructionBundle:
        """Gather evidence for the routed intent, build the instruction and verify it."""

        classification = router_response.classification
        task = infer_task(classification, query)

        doc_grounded = classification.intent in _DOC_GROUNDED
        web_grounded = (
            classification.intent is Intent.WEB_SEARCH
            or classification.slots.needs_recency
            or task is Task.WRITE
        )

        hits: list[RagChunk] = []
        chunks: list[RagChunk] = []
        if doc_grounded:
            hits, chunks = await self._gather_chunks(query, scope, cancel_event)
            if self._evidence_is_weak(hits, task):
                logger.info("Document evidence is weak, adding web search")
                web_grounded = True
        web_results: list[WebResult] = []
        if web_grounded:
            web_results = await self._search_web(query, cancel_event)

        instruction = build_instruction(
            classification,
            query,
            selection=selection,
            chunks=chunks,
            web_results=web_results,
            rag_conf=self.retrieval.confidence(hits),
            coverage=self.retrieval.coverage(chunks, web_results, task),
            task=task,
            config=self.instruction_config,
        )
        options = self.verification_options
        if not (doc_grounded or web_grounded):
            # No evidence was gathered, so coverage cannot be required.
            options = options.model_copy(update={"require_min_coverage": False})
        verification = verify_instruction(instruction, chunks, options)
        logger.info(
            "Instruction built: task=%s chunks=%d web=%d coverage=%.2f valid=%s",
            task.value,
            len(chunks),
            len(web_results),
            instruction.telemetry.coverage,
            verification.is_valid,
        )
        return InstructionBundle(
            instruction=instruction,
            verification=verification,
            chunks=chunks,
            web_results=web_results,
        )

    async def add_feedback(
        self,
        query: str,
        correct_intent: Intent | str,
        predicted_intent: Intent | str,
        confidence: float,
    ) -> None:
        await self.router.add_feedback(query, correct_intent, predicted_intent, confidence)

    async def retrain(self) -> ClassifierMetrics:
        return await self.router.retrain()

    def get_metrics(self) -> RouterMetrics:
        return self.router.get_metrics()

    def status(self) -> dict[str, object]:
        return {
            **self.router.status(),
            "web_search_configured": self.web_search is not None,
            "few_shot_configured": self.router.few_shot is not None,
        }

    async def _gather_chunks(
        self, query: str, scope: str | None, cancel_event: asyncio.Event | None
    ) -> tuple[list[RagChunk], list[RagChunk]]:
        """Return the raw search hits and the expanded, budget-packed context."""
        hits = await self.retrieval.search(query, scope=scope, cancel_event=cancel_event)
        expanded = await self.retrieval.expand_hierarchy(hits, cancel_event=cancel_event)
        return hits, self.retrieval.pack_context(expanded)

    def _evidence_is_weak(self, hits: list[RagChunk], task: Task) -> bool:
        config = self.retrieval.config
        return (
            self.retrieval.confidence(hits) < config.web_fallback_confidence
            or self.retrieval.coverage(hits, [], task) < config.web_fallback_coverage
        )

    async def _search_web(
        self, query: str, cancel_event: asyncio.Event | None
    ) -> list[WebResult]:
        if self.web_search is None:
            return []
        config = self.retrieval.config
        try:
            return await call_provider(
                self.web_search.search(query, config.web_result_limit),
                timeout=config.timeout_seconds,
                what="web search",
                cancel_event=cancel_event,
            )
        except ProviderUnavailable as exc:
            logger.warning("Web search failed, continuing without web results: %s", exc)
            return []
