"""Generative few-shot fallback classifier (third routing tier)."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from rag_router.config import FewShotConfig
from rag_router.embedding.store import EmbeddingStore
from rag_router.errors import MalformedResponse, ProviderUnavailable
from rag_router.llm.completion import CompletionProvider
from rag_router.obs.tracing import Timer
from rag_router.router.heuristics import extract_topic
from rag_router.router.schema import IntentClassification, IntentSlots, RouterContext
from rag_router.runtime import call_provider
from rag_router.types import EditTarget, Intent, OutputKind, SimilarExample

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """
You are an expert intent classifier for an AI writing assistant. Classify the
user query into the single most appropriate intent.

INTENT CATEGORIES:
- ask: general questions answerable from knowledge ("What is machine learning?", "Who is Daniel Ek?")
- web_search: current or recent information, news, prices, status changes ("Did Daniel Ek step down as CEO?")
- rag_query: questions about the user's own documents or files ("What does my research say about climate?")
- edit_request: modify existing text ("Rewrite this paragraph")
- editor_write: create new content ("Write an essay about renewable energy")
- other: unclear or ambiguous requests

IMPORTANT DISTINCTIONS:
- "Who is [person]?" and "Who founded [company]?" are ask.
- "Did [person] step down/leave/retire?" and "Is [person] still CEO?" are web_search.
- Stock prices, market data and "latest news" are web_search.

CONTEXT SIGNALS:
- has_attached_docs: {has_attached_docs}
- is_selection_present: {is_selection_present}
- conversation_length: {conversation_length}
- recent_tools: {recent_tools}

CONFIDENCE GUIDELINES:
- 0.9-1.0 very clear intent with strong context signals
- 0.7-0.9 clear intent with some ambiguity
- 0.5-0.7 somewhat ambiguous
- 0.0-0.5 best guess

Respond with ONLY valid JSON matching this exact schema:
{{
  "intent": "ask|web_search|rag_query|edit_request|editor_write|other",
  "confidence": 0.0-1.0,
  "slots": {{
    "topic": "extracted topic or null",
    "needs_recency": true/false,
    "target_docs": ["doc_id"] or [],
    "edit_target": "selection|file|section|null",
    "outputs": "answer|links|summary|diff|patch"
  }},
  "reasoning": "brief explanation"
}}
""".strip()


@dataclass(slots=True)
class FewShotResult:
    classification: IntentClassification
    reasoning: str
    examples_used: list[SimilarExample] = field(default_factory=list)
    processing_time_ms: float = 0.0
    fallback_used: bool = False
    below_threshold: bool = False


class FewShotClassifier:
    """Most expensive routing tier: one low-temperature completion per query.

    Any provider error, timeout, cancellation or malformed response yields the
    safe `ask`/0.3 classification flagged with `fallback_used=True`.
    """

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        completion: CompletionProvider,
        config: FewShotConfig | None = None,
    ) -> None:
        self.embedding_store = embedding_store
        self.completion = completion
        self.config = config or FewShotConfig()

    async def classify(
        self,
        query: str,
        context: RouterContext,
        confidence_threshold: float | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> FewShotResult:
        threshold = (
            self.config.confidence_threshold
            if confidence_threshold is None
            else confidence_threshold
        )
        examples: list[SimilarExample] = []
        with Timer() as timer:
            try:
                examples = await self.embedding_store.search_similar(
                    query, self.config.max_examples, cancel_event=cancel_event
                )
                messages = build_messages(query, context, examples)
                raw = await call_provider(
                    self.completion.complete(
                        messages,
                        model=self.config.model,
                        temperature=self.config.temperature,
                        max_tokens=self.config.max_tokens,
                    ),
                    timeout=self.config.timeout_seconds,
                    what="completion",
                    cancel_event=cancel_event,
                )
                payload = extract_json_object(raw)
                classification = parse_classification(payload)
                reasoning = str(payload.get("reasoning") or "No reasoning provided")
                fallback = False
            except (ProviderUnavailable, MalformedResponse) as exc:
                logger.warning("Few-shot classification fell back: %s", exc)
                classification = IntentClassification(
                    intent=Intent.ASK,
                    confidence=0.3,
                    slots=IntentSlots(topic=extract_topic(query)),
                )
                reasoning = f"Fallback due to classification error: {exc}"
                fallback = True

        return FewShotResult(
            classification=classification,
            reasoning=reasoning,
            examples_used=[] if fallback else examples,
            processing_time_ms=timer.elapsed_ms,
            fallback_used=fallback,
            below_threshold=classification.confidence < threshold,
        )

    async def confidence(self, query: str, context: RouterContext) -> float:
        result = await self.classify(query, context)
        return result.classification.confidence

    def should_use_meta_classifier(
        self, classifier_confidence: float, embedding_confidence: float
    ) -> bool:
        average = (classifier_confidence + embedding_confidence) / 2
        return average < self.config.confidence_threshold


def build_messages(
    query: str, context: RouterContext, examples: list[SimilarExample]
) -> list[BaseMessage]:
    messages: list[BaseMessage] = [
        SystemMessage(
            content=_SYSTEM_PROMPT.format(
                has_attached_docs=str(context.has_attached_docs).lower(),
                is_selection_present=str(context.is_selection_present).lower(),
                conversation_length=context.conversation_length,
                recent_tools=json.dumps(context.recent_tools),
            )
        )
    ]
    for example in examples:
        messages.append(HumanMessage(content=f'Classify this query: "{example.query}"'))
        messages.append(
            AIMessage(
                content=json.dumps(
                    {"intent": example.intent.value, "confidence": round(example.confidence, 2)}
                )
            )
        )

    signals = {
        "has_attached_docs": context.has_attached_docs,
        "is_selection_present": context.is_selection_present,
        "conversation_length": context.conversation_length,
    }
    messages.append(
        HumanMessage(content=f'Classify this query: "{query}"\n\nContext: {json.dumps(signals)}')
    )
    return messages


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first balanced JSON object in `text`, tolerating prose around it."""

    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end == -1:
            break
        try:
            payload = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return payload
        start = text.find("{", start + 1)
    raise MalformedResponse(f"no JSON object found in response: {text[:120]!r}")


def parse_classification(payload: dict[str, Any]) -> IntentClassification:
    for key in ("intent", "confidence", "slots"):
        if key not in payload:
            raise MalformedResponse(f"classification is missing '{key}'")

    slots = payload["slots"]
    if not isinstance(slots, dict):
        raise MalformedResponse("classification 'slots' must be an object")

    try:
        confidence = max(0.0, min(1.0, float(payload["confidence"])))
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"invalid confidence: {payload['confidence']!r}") from exc

    target_docs = slots.get("target_docs")
    try:
        return IntentClassification(
            intent=payload["intent"],
            confidence=confidence,
            slots=IntentSlots(
                topic=slots.get("topic") or None,
                needs_recency=bool(slots.get("needs_recency")),
                target_docs=tuple(str(doc) for doc in target_docs)
                if isinstance(target_docs, list)
                else (),
                edit_target=_enum_or_none(EditTarget, slots.get("edit_target")),
                outputs=_enum_or_none(OutputKind, slots.get("outputs")) or OutputKind.ANSWER,
            ),
        )
    except ValidationError as exc:
        raise MalformedResponse(f"classification failed validation: {exc}") from exc


def _enum_or_none(enum_cls: Any, value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _matching_brace(text: str, start: int) -> int:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1
