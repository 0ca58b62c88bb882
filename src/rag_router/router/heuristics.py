"""Deterministic slot synthesis, feature extraction and keyword fallback."""

from __future__ import annotations

import re

from rag_router.router.schema import (
    IntentClassification,
    IntentSlots,
    RouterContext,
    RouterFeatures,
)
from rag_router.types import EditTarget, Intent, OutputKind

_VOLATILE = re.compile(r"\b(latest|today|breaking|current|recent|now)\b", re.IGNORECASE)
_RECENCY = re.compile(r"\b(latest|current|today|breaking|recent|now|price|stock|news)\b")
_EDIT_VERBS = re.compile(r"\b(rewrite|edit|fix|improve|change|modify|correct)\b")
_WRITE_VERBS = re.compile(r"\b(write|create|generate|compose|draft|make)\b")
_DOC_REFERENCES = re.compile(r"\b(my|document|file|note|notes|research)\b")

_TOPICS: dict[Intent, str] = {
    Intent.ASK: "general knowledge",
    Intent.WEB_SEARCH: "current information",
    Intent.RAG_QUERY: "document content",
    Intent.EDIT_REQUEST: "text modification",
    Intent.EDITOR_WRITE: "content creation",
    Intent.OTHER: "unclear request",
}

_OUTPUTS: dict[Intent, OutputKind] = {
    Intent.ASK: OutputKind.ANSWER,
    Intent.WEB_SEARCH: OutputKind.LINKS,
    Intent.RAG_QUERY: OutputKind.ANSWER,
    Intent.EDIT_REQUEST: OutputKind.DIFF,
    Intent.EDITOR_WRITE: OutputKind.ANSWER,
    Intent.OTHER: OutputKind.ANSWER,
}


def build_classification(
    intent: Intent, confidence: float, context: RouterContext
) -> IntentClassification:
    """Synthesize slots from the winning intent."""
    edit_target = (
        EditTarget.SELECTION
        if intent is Intent.EDIT_REQUEST and context.is_selection_present
        else None
    )
    return IntentClassification(
        intent=intent,
        confidence=max(0.0, min(1.0, confidence)),
        slots=IntentSlots(
            topic=_TOPICS.get(intent),
            needs_recency=intent is Intent.WEB_SEARCH,
            target_docs=tuple(context.doc_ids) if intent is Intent.RAG_QUERY else (),
            edit_target=edit_target,
            outputs=_OUTPUTS.get(intent, OutputKind.ANSWER),
        ),
    )


def keyword_intent(query: str, context: RouterContext) -> Intent:
    lowered = query.lower()
    if _RECENCY.search(lowered):
        return Intent.WEB_SEARCH
    if _EDIT_VERBS.search(lowered):
        return Intent.EDIT_REQUEST
    if _WRITE_VERBS.search(lowered):
        return Intent.EDITOR_WRITE
    if context.has_attached_docs or _DOC_REFERENCES.search(lowered):
        return Intent.RAG_QUERY
    return Intent.ASK


def fallback_classification(
    context: RouterContext, confidence: float = 0.3
) -> IntentClassification:
    """Last-resort answer when the cascade itself fails or is cancelled."""
    intent = Intent.RAG_QUERY if context.has_attached_docs else Intent.ASK
    return IntentClassification(
        intent=intent,
        confidence=confidence,
        slots=IntentSlots(
            target_docs=tuple(context.doc_ids) if context.has_attached_docs else (),
        ),
    )


def extract_features(query: str, context: RouterContext, max_sim: float = 0.0) -> RouterFeatures:
    return RouterFeatures(
        has_docs=context.has_attached_docs,
        max_sim=max_sim,
        volatile=bool(_VOLATILE.search(query)),
        recent_tools=list(context.recent_tools),
        selection_present=context.is_selection_present,
        conversation_context=context.conversation_length > 0,
    )


def extract_topic(query: str) -> str | None:
    words = [word for word in query.split() if len(word) > 3]
    return words[0] if words else None
