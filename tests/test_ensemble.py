"""
Tests for ensemble scoring, confidence and the fan-out aggregator.
"""

import asyncio

import pytest

from conftest import FakeInvoker, make_resolver
from fraud_ensemble.confidence import ConfidenceNoise, calculate_confidence
from fraud_ensemble.ensemble import (
    EnsembleAggregator,
    build_prediction_result,
    compute_final_score,
    determine_prediction,
)
from fraud_ensemble.errors import EnsembleError, MalformedResponseError, UpstreamError
from fraud_ensemble.explainer import calculate_model_contributions
from fraud_ensemble.schemas import ModelWeights, ScoreSource

WEIGHTS = ModelWeights(lgbm=0.5, xgboost=0.3, catboost=0.2, threshold=0.5)
SCORES = {"lgbm": 0.2, "xgboost": 0.6, "catboost": 0.4}


# ============================================================================
# PURE FUNCTIONS
# ============================================================================


class TestScoring:
    def test_weighted_sum(self):
        assert compute_final_score(SCORES, WEIGHTS.as_dict()) == pytest.approx(0.36)

    def test_score_equal_to_threshold_is_not_fraud(self):
        assert determine_prediction(0.5, 0.5) is False

    def test_score_above_threshold_is_fraud(self):
        assert determine_prediction(0.500001, 0.5) is True

    def test_contributions_sum_to_final_score(self):
        contributions = calculate_model_contributions(SCORES, WEIGHTS.as_dict())
        assert contributions == {"lgbm": 0.1, "xgboost": 0.18, "catboost": 0.08}
        assert sum(contributions.values()) == pytest.approx(0.36)

    def test_build_prediction_result(self):
        result = build_prediction_result(
            SCORES, WEIGHTS, source=ScoreSource.REAL, model_version="v1.2.0", transaction_id=7
        )
        assert result.final_score == pytest.approx(0.36)
        assert result.prediction is False
        assert result.confidence == pytest.approx(0.28)
        assert result.threshold == 0.5
        assert result.weights == WEIGHTS
        assert result.is_real


class TestConfidence:
    @pytest.mark.parametrize(
        "score, expected",
        [(0.5, 0.0), (1.0, 1.0), (0.0, 1.0), (0.75, 0.5), (0.34, 0.32)],
    )
    def test_distance_from_midpoint(self, score, expected):
        assert calculate_confidence(score) == pytest.approx(expected)

    def test_noise_is_clipped(self):
        assert calculate_confidence(1.0, noise=0.3) == 1.0
        assert calculate_confidence(0.5, noise=-0.2) == 0.0

    def test_rounded_to_six_places(self):
        assert calculate_confidence(0.1234567) == round(abs(0.1234567 - 0.5) * 2, 6)

    def test_zero_std_noise_is_exactly_zero(self):
        noise = ConfidenceNoise(std=0.0)
        assert [noise() for _ in range(5)] == [0.0] * 5

    def test_seeded_noise_is_reproducible(self):
        assert ConfidenceNoise(std=0.05, seed=3)() == ConfidenceNoise(std=0.05, seed=3)()

    def test_negative_std_rejected(self):
        with pytest.raises(ValueError):
            ConfidenceNoise(std=-0.1)


# ============================================================================
# AGGREGATOR
# ============================================================================


class TestEnsembleAggregator:
    @pytest.mark.asyncio
    async def test_all_models_succeed(self, features):
        invoker = FakeInvoker(SCORES)
        aggregator = EnsembleAggregator(invoker, make_resolver("v1.2.0"))

        result = await aggregator.predict(features, WEIGHTS)

        assert sorted(invoker.calls) == ["catboost", "lgbm", "xgboost"]
        assert result.source == ScoreSource.REAL
        assert result.model_scores == SCORES
        assert result.final_score == pytest.approx(0.36)
        assert result.prediction is False
        assert result.model_version == "v1.2.0"
        assert result.transaction_id == 42
        assert result.fallback_reason is None

    @pytest.mark.asyncio
    async def test_default_version_without_resolver(self, features):
        aggregator = EnsembleAggregator(FakeInvoker(SCORES), default_version="v1.0.0")
        result = await aggregator.predict(features, WEIGHTS)
        assert result.model_version == "v1.0.0"

    @pytest.mark.asyncio
    async def test_noise_feeds_confidence(self, features):
        aggregator = EnsembleAggregator(FakeInvoker(SCORES), noise=lambda: 0.1)
        result = await aggregator.predict(features, WEIGHTS)
        assert result.confidence == pytest.approx(0.38)

    @pytest.mark.asyncio
    async def test_single_failure_aborts_ensemble(self, features):
        invoker = FakeInvoker(SCORES, failures={"xgboost": UpstreamError("xgboost", "HTTP 500", 500)})
        aggregator = EnsembleAggregator(invoker, make_resolver())

        with pytest.raises(EnsembleError) as exc_info:
            await aggregator.predict(features, WEIGHTS)

        assert "xgboost" in exc_info.value.failed_models
        assert isinstance(exc_info.value.failures["xgboost"], UpstreamError)

    @pytest.mark.asyncio
    async def test_failure_cancels_outstanding_siblings(self, features):
        invoker = FakeInvoker(
            SCORES,
            failures={"lgbm": MalformedResponseError("lgbm", "no score")},
            delays={"xgboost": 10.0, "catboost": 10.0},
        )
        aggregator = EnsembleAggregator(invoker)

        with pytest.raises(EnsembleError) as exc_info:
            await asyncio.wait_for(aggregator.predict(features, WEIGHTS), timeout=2.0)

        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert exc_info.value.failed_models == ["lgbm"]
        assert sorted(invoker.cancelled) == ["catboost", "xgboost"]

    @pytest.mark.asyncio
    async def test_caller_cancellation_cancels_sub_tasks(self, features):
        invoker = FakeInvoker(SCORES, delays={"lgbm": 10.0, "xgboost": 10.0, "catboost": 10.0})
        aggregator = EnsembleAggregator(invoker)

        task = asyncio.create_task(aggregator.predict(features, WEIGHTS))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert sorted(invoker.cancelled) == ["catboost", "lgbm", "xgboost"]
