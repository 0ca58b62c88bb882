"""Instruction verification, response validation and reporting."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from rag_router.instruction.builder import repair_instruction
from rag_router.instruction.schema import (
    ContextRef,
    ContextRefType,
    Instruction,
    ResponseFormat,
    ResponseValidation,
    VerificationOptions,
    VerificationResult,
)
from rag_router.obs.tracing import estimate_token_count
from rag_router.types import RagChunk

_CITATION_MARKER = re.compile(r"\[(\d+)\]")


def verify_instruction(
    instruction: Instruction | dict[str, Any],
    available_chunks: list[RagChunk],
    options: VerificationOptions | None = None,
) -> VerificationResult:
    """Check structure, citation integrity, coverage and source diversity.

    Problems are reported as `errors` and `warnings`; nothing is raised. A
    payload that fails schema validation is still checked further through its
    repaired form so the caller sees every problem at once.
    """

    options = options or VerificationOptions()
    errors: list[str] = []
    warnings: list[str] = []

    structural_ok = True
    if isinstance(instruction, Instruction):
        checked = instruction
    else:
        try:
            checked = Instruction.model_validate(instruction)
        except ValidationError as exc:
            structural_ok = False
            errors.append(f"Schema validation failed: {_summarize_validation(exc)}")
            checked = repair_instruction(instruction)

    citation_errors, citation_warnings = _check_citations(
        checked.doc_refs(), available_chunks, options.check_chunk_content
    )
    errors.extend(citation_errors)
    warnings.extend(citation_warnings)
    citations_valid = not citation_errors

    writing = checked.task.allows_low_coverage
    threshold = (
        options.writing_coverage_threshold if writing else options.min_coverage_threshold
    )
    coverage = checked.telemetry.coverage
    coverage_adequate = coverage >= threshold
    if not coverage_adequate:
        if writing:
            warnings.append(
                f"Low coverage for writing task: {coverage:.2f} < {threshold:.2f}"
            )
        elif options.require_min_coverage:
            errors.append(f"Inadequate coverage: {coverage:.2f} < {threshold:.2f}")

    if checked.task.is_factual and source_domain_count(checked.context_refs) <= 1:
        warnings.append(
            "Only one source domain in context for a factual task; "
            "consider expanding the search"
        )

    is_valid = (
        structural_ok
        and citations_valid
        and (coverage_adequate or not options.require_min_coverage or writing)
    )
    return VerificationResult(
        is_valid=is_valid,
        errors=errors,
        warnings=warnings,
        citations_valid=citations_valid,
        coverage_adequate=coverage_adequate,
    )


def validate_response(response: str, instruction: Instruction) -> ResponseValidation:
    """Check a generated answer against the instruction's citation and format policies."""

    errors: list[str] = []
    warnings: list[str] = []

    if instruction.policies.cite_every_claim:
        markers = [int(marker) for marker in _CITATION_MARKER.findall(response)]
        if not markers:
            errors.append("Response must include citations but none found")
        valid = range(1, len(instruction.context_refs) + 1)
        invalid = [marker for marker in markers if marker not in valid]
        if invalid:
            errors.append(
                "Invalid citations found: [" + ", ".join(str(i) for i in invalid) + "]"
            )

    response_tokens = estimate_token_count(response)
    max_tokens = instruction.policies.max_tokens
    if max_tokens and response_tokens > max_tokens:
        warnings.append(f"Response exceeds token limit: {response_tokens} > {max_tokens}")

    if instruction.policies.format is ResponseFormat.MARKDOWN and "#" not in response:
        warnings.append("Response should be in markdown format but no headers found")

    return ResponseValidation(is_valid=not errors, errors=errors, warnings=warnings)


def source_domain_count(context_refs: list[ContextRef]) -> int:
    """Distinct documents plus distinct web hostnames among `context_refs`."""
    domains: set[tuple[ContextRefType, str]] = set()
    for ref in context_refs:
        if ref.type is ContextRefType.DOC:
            domains.add((ref.type, (ref.anchor or ref.id).split("#", 1)[0]))
        else:
            domains.add((ref.type, urlparse(ref.id).hostname or ref.id))
    return len(domains)


def render_verification_report(
    instruction: Instruction,
    result: VerificationResult,
    response_validation: ResponseValidation | None = None,
) -> str:
    lines = [
        "# Verification Report",
        "",
        "## Instruction Validation",
        f"- Valid: {_mark(result.is_valid)}",
        f"- Citations Valid: {_mark(result.citations_valid)}",
        f"- Coverage Adequate: {_mark(result.coverage_adequate)}",
        "",
    ]
    if result.errors:
        lines += ["## Errors", *[f"- {error}" for error in result.errors], ""]
    if result.warnings:
        lines += ["## Warnings", *[f"- {warning}" for warning in result.warnings], ""]

    if response_validation is not None:
        lines += ["## Response Validation", f"- Valid: {_mark(response_validation.is_valid)}"]
        if response_validation.errors:
            lines += ["### Response Errors", *[f"- {e}" for e in response_validation.errors]]
        if response_validation.warnings:
            lines += ["### Response Warnings", *[f"- {w}" for w in response_validation.warnings]]
        lines.append("")

    telemetry = instruction.telemetry
    lines += [
        "## Telemetry",
        f"- Route Confidence: {telemetry.route_conf:.2f}",
        f"- RAG Confidence: {telemetry.rag_conf:.2f}",
        f"- Coverage: {telemetry.coverage:.2f}",
        f"- Total Tokens: {telemetry.total_tokens}",
    ]
    return "\n".join(lines) + "\n"


def _check_citations(
    doc_refs: list[ContextRef], available_chunks: list[RagChunk], check_content: bool
) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    by_id = {chunk.id: chunk for chunk in available_chunks}
    for ref in doc_refs:
        chunk = by_id.get(ref.id)
        if chunk is None:
            errors.append(f"Citation [{ref.id}] not found in available chunks")
        elif check_content and not chunk.text.strip():
            warnings.append(f"Citation [{ref.id}] has empty or invalid content")
    return errors, warnings


def _summarize_validation(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "instruction"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def _mark(ok: bool) -> str:
    return "yes" if ok else "no"
