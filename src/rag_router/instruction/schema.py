"""Pydantic models for generation instructions and their verification results."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from rag_router.types import Task


class ContextRefType(str, Enum):
    DOC = "doc"
    WEB = "web"


class ResponseFormat(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"
    HTML = "html"


class ContextRef(BaseModel):
    """One piece of evidence the generator may cite, by 1-based position."""

    type: ContextRefType
    id: str = Field(min_length=1)
    anchor: str | None = None
    why: str
    score: float | None = Field(default=None, ge=0.0, le=1.0)
    content: str | None = None


class Policies(BaseModel):
    cite_every_claim: bool
    no_external_sources: bool
    max_tokens: int | None = Field(default=None, ge=1)
    format: ResponseFormat | None = None


class Telemetry(BaseModel):
    route_conf: float = Field(ge=0.0, le=1.0)
    rag_conf: float = Field(ge=0.0, le=1.0)
    coverage: float = Field(ge=0.0, le=1.0)
    total_tokens: int = Field(ge=0)


class Instruction(BaseModel):
    task: Task
    inputs: dict[str, Any] = Field(default_factory=dict)
    context_refs: list[ContextRef] = Field(default_factory=list)
    policies: Policies
    telemetry: Telemetry

    def doc_refs(self) -> list[ContextRef]:
        return [ref for ref in self.context_refs if ref.type is ContextRefType.DOC]

    def web_refs(self) -> list[ContextRef]:
        return [ref for ref in self.context_refs if ref.type is ContextRefType.WEB]


class VerificationOptions(BaseModel):
    """Configures instruction verification."""

    require_min_coverage: bool = True
    min_coverage_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    writing_coverage_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    check_chunk_content: bool = True


class VerificationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    citations_valid: bool
    coverage_adequate: bool


class ResponseValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
