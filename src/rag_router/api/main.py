"""FastAPI entrypoint for routing, feedback and instruction endpoints."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI
from pydantic import BaseModel, Field

from rag_router.router.schema import RouterContext
from rag_router.service import RoutingService
from rag_router.types import Intent


class ClassifyRequest(BaseModel):
    query: str = Field(min_length=1)
    context: RouterContext = Field(default_factory=RouterContext)


class FeedbackRequest(BaseModel):
    query: str = Field(min_length=1)
    correct_intent: Intent
    predicted_intent: Intent
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class InstructionRequest(BaseModel):
    query: str = Field(min_length=1)
    context: RouterContext = Field(default_factory=RouterContext)
    selection: str | None = None
    scope: str | None = None


def create_app(service: RoutingService) -> FastAPI:
    app = FastAPI(title="RAG Router", version="0.1.0")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", **service.status()}

    @app.post("/router/classify")
    async def classify(request: ClassifyRequest) -> dict[str, Any]:
        response = await service.classify_intent(request.query, request.context)
        return response.model_dump(mode="json")

    @app.post("/router/feedback")
    async def feedback(request: FeedbackRequest) -> dict[str, Any]:
        await service.add_feedback(
            request.query,
            request.correct_intent,
            request.predicted_intent,
            request.confidence,
        )
        return {"recorded": request.correct_intent is not request.predicted_intent}

    @app.post("/router/retrain")
    async def retrain() -> dict[str, Any]:
        metrics = await service.retrain()
        return {
            "accuracy": metrics.accuracy,
            "precision": {intent.value: value for intent, value in metrics.precision.items()},
            "recall": {intent.value: value for intent, value in metrics.recall.items()},
            "f1": {intent.value: value for intent, value in metrics.f1.items()},
        }

    @app.get("/router/metrics")
    def metrics() -> dict[str, Any]:
        return asdict(service.get_metrics())

    @app.post("/instructions")
    async def instructions(request: InstructionRequest) -> dict[str, Any]:
        routed = await service.classify_intent(request.query, request.context)
        bundle = await service.build_and_verify_instruction(
            routed, request.query, selection=request.selection, scope=request.scope
        )
        return {
            "routing": routed.model_dump(mode="json"),
            "instruction": bundle.instruction.model_dump(mode="json"),
            "verification": bundle.verification.model_dump(mode="json"),
            "chunks": [asdict(chunk) for chunk in bundle.chunks],
        }

    return app


app = create_app(RoutingService.from_settings())
