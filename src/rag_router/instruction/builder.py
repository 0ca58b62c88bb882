"""Builds generation instructions from a routing decision and packed evidence."""

from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError

from rag_router.config import InstructionConfig
from rag_router.instruction.schema import (
    ContextRef,
    ContextRefType,
    Instruction,
    Policies,
    ResponseFormat,
    Telemetry,
)
from rag_router.retrieval.adapter import build_evidence_bundle
from rag_router.router.schema import IntentClassification
from rag_router.types import Intent, OutputKind, RagChunk, Task, WebResult

_SUMMARIZE = re.compile(r"\b(summari[sz]e|summary|tl;?dr|overview)\b", re.IGNORECASE)
_FACT_CHECK = re.compile(r"\b(fact[- ]?check|verify|is it true|true that)\b", re.IGNORECASE)
_WRITE = re.compile(r"\b(write|draft|compose|create|generate)\b", re.IGNORECASE)

_INTENT_TASKS: dict[Intent, Task] = {
    Intent.ASK: Task.ASK,
    Intent.WEB_SEARCH: Task.WEB_SEARCH,
    Intent.EDIT_REQUEST: Task.EDIT,
    Intent.EDITOR_WRITE: Task.WRITE,
    Intent.OTHER: Task.ASK,
}

_DOC_REASONS: dict[Task, str] = {
    Task.EDIT: "content for editing",
    Task.SUMMARIZE: "source material",
    Task.WRITE: "context for expansion",
    Task.FACT_CHECK: "factual information",
}

_WEB_REASONS: dict[Task, str] = {
    Task.EDIT: "current style guide",
    Task.SUMMARIZE: "additional context",
    Task.WRITE: "supplementary information",
    Task.FACT_CHECK: "independent verification",
}


def infer_task(classification: IntentClassification, query: str) -> Task:
    """Map an intent onto a task; document queries are refined by their wording."""
    if classification.intent is not Intent.RAG_QUERY:
        return _INTENT_TASKS[classification.intent]
    if _FACT_CHECK.search(query):
        return Task.FACT_CHECK
    if _SUMMARIZE.search(query):
        return Task.SUMMARIZE
    if _WRITE.search(query):
        return Task.WRITE
    return Task.RAG


def build_instruction(
    classification: IntentClassification,
    query: str,
    *,
    selection: str | None = None,
    chunks: list[RagChunk] | None = None,
    web_results: list[WebResult] | None = None,
    rag_conf: float = 0.0,
    coverage: float = 0.0,
    task: Task | None = None,
    config: InstructionConfig | None = None,
) -> Instruction:
    config = config or InstructionConfig()
    task = task or infer_task(classification, query)
    chunks = list(chunks or [])
    web_results = list(web_results or [])

    context_refs = [
        ContextRef(
            type=ContextRefType.DOC,
            id=chunk.id,
            anchor=chunk.anchor,
            why=_DOC_REASONS.get(task, "relevant information"),
            score=_clamp(chunk.score),
        )
        for chunk in chunks
    ]
    context_refs.extend(
        ContextRef(
            type=ContextRefType.WEB,
            id=result.url or f"web-{index}",
            why=_WEB_REASONS.get(task, "current information"),
            score=_clamp(result.score),
            content=result.snippet or result.title or "Web search result",
        )
        for index, result in enumerate(web_results)
    )

    bundle = build_evidence_bundle(chunks, web_results)
    return Instruction(
        task=task,
        inputs=_task_inputs(task, classification, query, selection, config),
        context_refs=context_refs,
        policies=Policies(
            cite_every_claim=classification.slots.outputs is OutputKind.ANSWER,
            no_external_sources=classification.intent is Intent.RAG_QUERY,
            max_tokens=config.max_tokens,
            format=ResponseFormat(config.format),
        ),
        telemetry=Telemetry(
            route_conf=_clamp(classification.confidence),
            rag_conf=_clamp(rag_conf),
            coverage=_clamp(coverage),
            total_tokens=bundle.total_tokens,
        ),
    )


def repair_instruction(raw: Any) -> Instruction:
    """Coerce a loosely-shaped instruction payload into a valid `Instruction`.

    Missing or invalid fields get neutral defaults and context refs that fail
    validation are dropped.
    """

    data = raw if isinstance(raw, dict) else {}
    policies = data.get("policies") if isinstance(data.get("policies"), dict) else {}
    telemetry = data.get("telemetry") if isinstance(data.get("telemetry"), dict) else {}

    try:
        task = Task(data.get("task"))
    except ValueError:
        task = Task.ASK

    refs: list[ContextRef] = []
    raw_refs = data.get("context_refs")
    for item in raw_refs if isinstance(raw_refs, list) else []:
        try:
            refs.append(ContextRef.model_validate(item))
        except ValidationError:
            continue

    max_tokens = policies.get("max_tokens")
    try:
        response_format = ResponseFormat(policies.get("format") or ResponseFormat.TEXT)
    except ValueError:
        response_format = ResponseFormat.TEXT

    return Instruction(
        task=task,
        inputs=data.get("inputs") if isinstance(data.get("inputs"), dict) else {},
        context_refs=refs,
        policies=Policies(
            cite_every_claim=bool(policies.get("cite_every_claim")),
            no_external_sources=bool(policies.get("no_external_sources")),
            max_tokens=max_tokens if isinstance(max_tokens, int) and max_tokens >= 1 else None,
            format=response_format,
        ),
        telemetry=Telemetry(
            route_conf=_clamp(_number(telemetry.get("route_conf"), 0.5)),
            rag_conf=_clamp(_number(telemetry.get("rag_conf"), 0.5)),
            coverage=_clamp(_number(telemetry.get("coverage"), 0.5)),
            total_tokens=max(0, int(_number(telemetry.get("total_tokens"), 0))),
        ),
    )


def _task_inputs(
    task: Task,
    classification: IntentClassification,
    query: str,
    selection: str | None,
    config: InstructionConfig,
) -> dict[str, Any]:
    inputs: dict[str, Any] = {"query": query, "style": "medium", "precision": "medium"}
    if task is Task.EDIT:
        inputs.update(original_text=selection or "", preserve_meaning=True)
    elif task is Task.SUMMARIZE:
        inputs.update(
            max_words=config.summary_max_words, style="bullets", include_key_points=True
        )
    elif task is Task.WRITE:
        inputs.update(
            topic=classification.slots.topic,
            current_content=selection or "",
            maintain_style=True,
        )
    elif task is Task.FACT_CHECK:
        inputs.update(
            claims_to_verify=query,
            require_sources=True,
            confidence_threshold=config.fact_check_confidence,
        )
    elif task is Task.RAG:
        inputs.update(target_docs=list(classification.slots.target_docs))
    elif task is Task.WEB_SEARCH:
        inputs.update(needs_recency=classification.slots.needs_recency)
    return inputs


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        return default
    return float(value)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))
