"""Pydantic models for router inputs and outputs."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from rag_router.types import EditTarget, Intent, OutputKind, RouteMethod


class IntentSlots(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: str | None = None
    needs_recency: bool = False
    target_docs: tuple[str, ...] = ()
    edit_target: EditTarget | None = None
    outputs: OutputKind = OutputKind.ANSWER


class IntentClassification(BaseModel):
    """One routing decision; never mutated after construction."""

    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    slots: IntentSlots = Field(default_factory=IntentSlots)


class RouterContext(BaseModel):
    """Caller-supplied request context; never persisted."""

    has_attached_docs: bool = False
    doc_ids: list[str] = Field(default_factory=list)
    is_selection_present: bool = False
    selection_length: int = Field(default=0, ge=0)
    recent_tools: list[str] = Field(default_factory=list)
    conversation_length: int = Field(default=0, ge=0)
    user_id: str = ""
    document_id: str | None = None


class RouterFeatures(BaseModel):
    has_docs: bool
    max_sim: float
    volatile: bool
    recent_tools: list[str]
    selection_present: bool
    conversation_context: bool


class SimilarExampleRef(BaseModel):
    query: str
    intent: Intent
    similarity: float


class ClassificationExplanation(BaseModel):
    method: RouteMethod
    confidence: float
    reasoning: str | None = None
    similar_examples: list[SimilarExampleRef] = Field(default_factory=list)
    probabilities: dict[Intent, float] = Field(default_factory=dict)


class RouterResponse(BaseModel):
    classification: IntentClassification
    features: RouterFeatures
    processing_time_ms: float
    fallback_used: bool
    explanation: ClassificationExplanation | None = None
