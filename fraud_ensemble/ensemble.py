"""
Guardian Ensemble Scoring - Ensemble Logic
===========================================

Weighted combination of the three model scores, the threshold decision,
and the aggregator that fans a request out to the remote models.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

from .confidence import calculate_confidence
from .config import MODEL_NAMES
from .errors import EnsembleError, ModelInvocationError
from .explainer import calculate_model_contributions
from .schemas import FeatureVector, ModelWeights, PredictionResult, ScoreSource

logger = logging.getLogger(__name__)


def compute_final_score(
    model_scores: Mapping[str, float],
    weights: Mapping[str, float],
) -> float:
    """
    Compute the weighted ensemble score.

    Args:
        model_scores: Dict mapping model names to their scores (0.0-1.0).
        weights: Dict mapping model names to their weights.

    Returns:
        Sum of weight * score over MODEL_NAMES. Not clipped or rounded.
    """
    return sum(weights[name] * model_scores[name] for name in MODEL_NAMES)


def determine_prediction(final_score: float, threshold: float) -> bool:
    """Fraud iff the score is strictly above the threshold."""
    return final_score > threshold


def build_prediction_result(
    model_scores: Mapping[str, float],
    weights: ModelWeights,
    source: ScoreSource,
    model_version: str,
    noise: float = 0.0,
    transaction_id: Optional[Union[int, str]] = None,
    processing_time_ms: float = 0.0,
    fallback_reason: Optional[str] = None,
    feature_importance: Optional[Dict[str, float]] = None,
) -> PredictionResult:
    """
    Assemble a PredictionResult from per-model scores.

    Both the real and the simulated path go through here, so the final
    score, decision and confidence are computed identically.
    """
    weight_map = weights.as_dict()
    final_score = compute_final_score(model_scores, weight_map)

    return PredictionResult(
        transaction_id=transaction_id,
        model_scores=dict(model_scores),
        weights=weights,
        final_score=final_score,
        prediction=determine_prediction(final_score, weights.threshold),
        confidence=calculate_confidence(final_score, noise),
        threshold=weights.threshold,
        model_version=model_version,
        processing_time_ms=round(processing_time_ms, 2),
        source=source,
        fallback_reason=fallback_reason,
        feature_importance=feature_importance,
        model_contributions=calculate_model_contributions(model_scores, weight_map),
    )


class EnsembleAggregator:
    """
    Fan-out/fan-in over the remote models.

    All models are invoked concurrently with the same feature vector. If
    any invocation fails, the remaining ones are cancelled and a single
    EnsembleError is raised; scores are never aggregated from a subset.
    """

    def __init__(
        self,
        invoker,
        version_resolver=None,
        model_names: Sequence[str] = MODEL_NAMES,
        noise: Optional[Callable[[], float]] = None,
        default_version: str = "unknown",
    ):
        self.invoker = invoker
        self.version_resolver = version_resolver
        self.model_names = tuple(model_names)
        self.noise = noise or (lambda: 0.0)
        self.default_version = default_version

    async def predict(self, features: FeatureVector, weights: ModelWeights) -> PredictionResult:
        start_time = time.perf_counter()

        scores = await self._gather_scores(features)
        model_version = await self._resolve_version()

        processing_time = (time.perf_counter() - start_time) * 1000
        result = build_prediction_result(
            scores,
            weights,
            source=ScoreSource.REAL,
            model_version=model_version,
            noise=self.noise(),
            transaction_id=features.transaction_id,
            processing_time_ms=processing_time,
        )

        logger.debug(
            "Real model prediction completed for transaction %s: final_score=%.6f, prediction=%s",
            features.transaction_id, result.final_score, result.prediction,
        )
        return result

    async def _gather_scores(self, features: FeatureVector) -> Dict[str, float]:
        tasks = {
            name: asyncio.create_task(self.invoker.invoke(name, features), name=f"invoke-{name}")
            for name in self.model_names
        }

        try:
            done, pending = await asyncio.wait(
                tasks.values(), return_when=asyncio.FIRST_EXCEPTION
            )
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            raise

        failures: Dict[str, BaseException] = {}
        for name, task in tasks.items():
            if task not in done:
                continue
            if task.cancelled():
                failures[name] = ModelInvocationError(name, "invocation was cancelled")
            elif task.exception() is not None:
                failures[name] = task.exception()

        if failures:
            # Outstanding siblings are abandoned; their results are never read.
            for task in pending:
                task.cancel()
            for name, exc in failures.items():
                logger.debug("Model %s failed for transaction %s: %s", name, features.transaction_id, exc)
            raise EnsembleError(failures)

        return {name: task.result() for name, task in tasks.items()}

    async def _resolve_version(self) -> str:
        if self.version_resolver is None:
            return self.default_version
        info = await self.version_resolver.current_version()
        return info.version
