"""Configuration models for the routing and evidence pipeline."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from rag_router.errors import ConfigurationError


class EmbeddingConfig(BaseModel):
    """Configures the embedding provider and vector cache."""

    model: str = "text-embedding-3-small"
    dimension: int = Field(default=1536, ge=1)
    timeout_seconds: float = Field(default=5.0, gt=0.0)
    cache_path: str | None = None


class ClassifierConfig(BaseModel):
    """Configures one-vs-all logistic regression training."""

    learning_rate: float = Field(default=0.01, gt=0.0)
    max_iterations: int = Field(default=1000, ge=1)
    regularization: float = Field(default=0.01, ge=0.0)
    convergence_threshold: float = Field(default=0.01, gt=0.0)
    init_scale: float = Field(default=0.01, ge=0.0)
    seed: int = 7


class RouterConfig(BaseModel):
    """Configures the confidence-gated classification cascade."""

    classifier_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    embedding_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    neighbor_k: int = Field(default=10, ge=1)
    heuristic_confidence: float = Field(default=0.4, ge=0.0, le=1.0)
    fallback_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    fallback_used_below: float = Field(default=0.5, ge=0.0, le=1.0)
    request_timeout_seconds: float = Field(default=10.0, gt=0.0)


class FewShotConfig(BaseModel):
    """Configures the generative few-shot fallback tier."""

    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)
    max_examples: int = Field(default=5, ge=0)
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=8.0, gt=0.0)


class RetrievalConfig(BaseModel):
    """Configures retrieval, hierarchy expansion, packing and coverage."""

    top_k: int = Field(default=30, ge=1)
    neighbors: int = Field(default=1, ge=0)
    include_parents: bool = True
    expansion_score_factor: float = Field(default=0.8, ge=0.0, le=1.0)
    max_context_tokens: int = Field(default=2000, ge=1)
    context_budget_ratio: float = Field(default=0.7, gt=0.0, le=1.0)
    min_partial_tokens: int = Field(default=100, ge=0)
    chars_per_token: int = Field(default=4, ge=1)
    full_coverage_sources: int = Field(default=8, ge=1)
    coverage_confidence_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    web_result_coverage: float = Field(default=0.1, ge=0.0, le=1.0)
    max_web_coverage: float = Field(default=0.5, ge=0.0, le=1.0)
    writing_coverage_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    web_result_limit: int = Field(default=5, ge=0)
    web_fallback_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    web_fallback_coverage: float = Field(default=0.5, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=5.0, gt=0.0)

    @property
    def budget_tokens(self) -> int:
        return int(self.max_context_tokens * self.context_budget_ratio)


class InstructionConfig(BaseModel):
    """Configures the policies attached to built instructions."""

    max_tokens: int = Field(default=2000, ge=1)
    format: str = "markdown"
    summary_max_words: int = Field(default=200, ge=1)
    fact_check_confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class ProviderSettings(BaseModel):
    """Credentials and model names resolved from the environment."""

    openai_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"
    routing_model: str = "gpt-4o-mini"
    embedding_cache_path: str | None = None

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            routing_model=os.getenv("OPENAI_ROUTING_MODEL", "gpt-4o-mini"),
            embedding_cache_path=os.getenv("RAG_ROUTER_EMBEDDING_CACHE") or None,
        )

    def require_api_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for OpenAI providers")
        return self.openai_api_key
