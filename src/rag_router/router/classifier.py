"""One-vs-all logistic regression over z-score normalized embeddings."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import numpy as np

from rag_router.config import ClassifierConfig
from rag_router.embedding.store import EmbeddingStore
from rag_router.types import INTENTS, Intent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrainingExample:
    query: str
    intent: Intent
    confidence: float = 1.0


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    intent: Intent
    confidence: float
    probabilities: dict[Intent, float]


@dataclass(frozen=True, slots=True)
class ClassifierMetrics:
    accuracy: float
    precision: dict[Intent, float]
    recall: dict[Intent, float]
    f1: dict[Intent, float]


@dataclass(frozen=True, eq=False)
class ClassifierWeights:
    """Immutable weight snapshot: one row per intent plus normalization stats."""

    weights: np.ndarray  # (n_intents, dimension)
    biases: np.ndarray  # (n_intents,)
    feature_means: np.ndarray
    feature_stds: np.ndarray

    def probabilities(self, features: np.ndarray) -> np.ndarray:
        """Sigmoid per intent, renormalized to sum to 1 across intents."""
        normalized = (features - self.feature_means) / self.feature_stds
        raw = _sigmoid(normalized @ self.weights.T + self.biases)
        total = raw.sum(axis=-1, keepdims=True)
        uniform = np.full_like(raw, 1.0 / raw.shape[-1])
        return np.divide(raw, total, out=uniform, where=total > 0)


class LinearIntentClassifier:
    """Trains and serves the second routing tier.

    Inference reads `self._weights` once per call and training replaces it with
    a single assignment, so a classify call never sees half-trained weights.
    """

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        config: ClassifierConfig | None = None,
        intents: Iterable[Intent] = INTENTS,
    ) -> None:
        self.embedding_store = embedding_store
        self.config = config or ClassifierConfig()
        self.intents: tuple[Intent, ...] = tuple(intents)
        self._weights: ClassifierWeights | None = None
        self._train_lock = asyncio.Lock()

    @property
    def is_trained(self) -> bool:
        return self._weights is not None

    async def train(self, examples: list[TrainingExample]) -> ClassifierMetrics:
        if not examples:
            raise ValueError("cannot train on an empty example set")

        async with self._train_lock:
            logger.info("Training intent classifier on %d examples", len(examples))
            features = np.asarray(
                [await self.embedding_store.embed(example.query) for example in examples],
                dtype=float,
            )
            labels = [example.intent for example in examples]
            weights = await asyncio.to_thread(self._fit, features, labels)
            self._weights = weights

        metrics = self._evaluate(weights, features, labels)
        logger.info("Classifier trained: accuracy=%.3f", metrics.accuracy)
        return metrics

    async def classify(
        self, query: str, *, cancel_event: asyncio.Event | None = None
    ) -> ClassificationResult:
        weights = self._weights
        if weights is None:
            return self._uniform()

        features = np.asarray(
            await self.embedding_store.embed(query, cancel_event=cancel_event), dtype=float
        )
        if not features.any():
            # Zero vector: the embedding provider failed, there is nothing to score.
            return self._uniform()
        probs = weights.probabilities(features)
        best = int(np.argmax(probs))
        return ClassificationResult(
            intent=self.intents[best],
            confidence=float(probs[best]),
            probabilities={intent: float(p) for intent, p in zip(self.intents, probs, strict=True)},
        )

    def _uniform(self) -> ClassificationResult:
        uniform = 1.0 / len(self.intents)
        return ClassificationResult(
            intent=self.intents[0],
            confidence=uniform,
            probabilities={intent: uniform for intent in self.intents},
        )

    def status(self) -> dict[str, object]:
        return {
            "is_trained": self.is_trained,
            "intents": [intent.value for intent in self.intents],
        }

    def save(self, path: str | Path) -> None:
        weights = self._weights
        if weights is None:
            raise RuntimeError("classifier is not trained")
        np.savez(
            Path(path),
            weights=weights.weights,
            biases=weights.biases,
            feature_means=weights.feature_means,
            feature_stds=weights.feature_stds,
            intents=np.asarray([intent.value for intent in self.intents]),
        )

    def load(self, path: str | Path) -> None:
        with np.load(Path(path)) as data:
            intents = tuple(Intent(value) for value in data["intents"].tolist())
            if intents != self.intents:
                raise ValueError(f"weight file intents {intents} do not match {self.intents}")
            self._weights = ClassifierWeights(
                weights=data["weights"],
                biases=data["biases"],
                feature_means=data["feature_means"],
                feature_stds=data["feature_stds"],
            )

    def _fit(self, features: np.ndarray, labels: list[Intent]) -> ClassifierWeights:
        means = features.mean(axis=0)
        stds = features.std(axis=0)
        stds[stds == 0] = 1.0
        normalized = (features - means) / stds

        rng = np.random.default_rng(self.config.seed)
        dimension = features.shape[1]
        weight_rows = []
        biases = []
        for intent in self.intents:
            # Intents missing from the batch see only negatives and learn "never".
            targets = np.asarray([1.0 if label is intent else 0.0 for label in labels])
            initial = (rng.random(dimension) - 0.5) * self.config.init_scale
            weight, bias = self._fit_one(normalized, targets, initial)
            weight_rows.append(weight)
            biases.append(bias)

        return ClassifierWeights(
            weights=np.vstack(weight_rows),
            biases=np.asarray(biases),
            feature_means=means,
            feature_stds=stds,
        )

    def _fit_one(
        self, features: np.ndarray, targets: np.ndarray, weight: np.ndarray
    ) -> tuple[np.ndarray, float]:
        bias = 0.0
        lr = self.config.learning_rate
        for _ in range(self.config.max_iterations):
            residual = _sigmoid(features @ weight + bias) - targets
            gradient = features.T @ residual + self.config.regularization * weight
            weight = weight - lr * gradient
            bias -= lr * float(residual.sum())
            if float(np.abs(residual).mean()) < self.config.convergence_threshold:
                break
        return weight, bias

    def _evaluate(
        self, weights: ClassifierWeights, features: np.ndarray, labels: list[Intent]
    ) -> ClassifierMetrics:
        predicted = [self.intents[int(i)] for i in np.argmax(weights.probabilities(features), axis=1)]
        seen = list(dict.fromkeys(labels))
        precision: dict[Intent, float] = {}
        recall: dict[Intent, float] = {}
        f1: dict[Intent, float] = {}

        for intent in seen:
            tp = sum(1 for p, t in zip(predicted, labels) if p is intent and t is intent)
            fp = sum(1 for p, t in zip(predicted, labels) if p is intent and t is not intent)
            fn = sum(1 for p, t in zip(predicted, labels) if p is not intent and t is intent)
            precision[intent] = tp / (tp + fp) if tp + fp else 0.0
            recall[intent] = tp / (tp + fn) if tp + fn else 0.0
            denom = precision[intent] + recall[intent]
            f1[intent] = 2 * precision[intent] * recall[intent] / denom if denom else 0.0

        correct = sum(1 for p, t in zip(predicted, labels) if p is t)
        return ClassifierMetrics(
            accuracy=correct / len(labels),
            precision=precision,
            recall=recall,
            f1=f1,
        )


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -500, 500)))
