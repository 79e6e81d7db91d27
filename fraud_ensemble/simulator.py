"""
Guardian Ensemble Scoring - Fallback Simulator
===============================================

Rule-based stand-in for the remote models, used whenever the real
ensemble is unavailable. Each model score is a random base draw plus a
set of additive risk signals derived from IEEE-CIS features, scaled by
a per-model bias:

    score = clip((U(0, 0.5) + sum(signals)) * bias, 0.001, 0.999)
"""

import hashlib
import json
import logging
import time
from typing import Callable, Dict, Optional

import numpy as np

from .config import (
    AMOUNT_BANDS,
    CARD_PREFIX_ADJUSTMENT,
    CARD_PREFIX_RISK_BELOW,
    COUNTING_SPIKE_ADJUSTMENT,
    COUNTING_SPIKE_KEYS,
    COUNTING_SPIKE_LIMIT,
    DEFAULT_PRODUCT_CODE_RISK,
    DEVICE_RISK,
    DISTANCE_ADJUSTMENT,
    DISTANCE_RISK_KM,
    IDENTITY_ADJUSTMENT,
    IDENTITY_KEYS,
    MATCH_HIGH_ADJUSTMENT,
    MATCH_HIGH_COUNT,
    MATCH_LOW_ADJUSTMENT,
    MATCH_LOW_COUNT,
    MODEL_BIAS,
    MODEL_NAMES,
    PRODUCT_CODE_RISK,
    RISKY_EMAIL_ADJUSTMENT,
    RISKY_EMAIL_MARKERS,
    SHORT_INTERVAL_ADJUSTMENT,
    SHORT_INTERVAL_DAYS,
    SIMULATED_BASE_SCORE_MAX,
    SIMULATED_SCORE_BOUNDS,
    SIMULATED_SCORE_DECIMALS,
    TRUSTED_EMAIL_ADJUSTMENT,
    TRUSTED_EMAIL_MARKERS,
    VESTA_ADJUSTMENT,
    VESTA_KEYS,
    VESTA_LIMIT,
)
from .ensemble import build_prediction_result
from .explainer import signal_importance
from .schemas import FeatureVector, ModelWeights, PredictionResult, ScoreSource

logger = logging.getLogger(__name__)


class FallbackSimulator:
    """
    Deterministic-when-seeded fallback scorer.

    With a ``seed`` the random base draw for a model depends only on the
    seed, the model name and the feature vector, so repeated calls with
    the same input return the same result. Without a seed every call
    draws fresh randomness.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        noise: Optional[Callable[[], float]] = None,
        include_feature_importance: bool = True,
    ):
        if seed is not None and seed < 0:
            raise ValueError("Simulation seed must be non-negative")
        self.seed = seed
        self.noise = noise or (lambda: 0.0)
        self.include_feature_importance = include_feature_importance
        self._rng = np.random.default_rng()

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def signals(self, features: FeatureVector) -> Dict[str, float]:
        """
        Additive risk adjustments triggered by ``features``.

        Only signals that fired are present. An empty feature vector has
        no signals.
        """
        signals: Dict[str, float] = {}

        if features.amount is not None:
            amount_risk = sum(adj for limit, adj in AMOUNT_BANDS if features.amount > limit)
            if amount_risk:
                signals["amount"] = amount_risk

        if features.product_code is not None:
            signals["product_code"] = PRODUCT_CODE_RISK.get(
                features.product_code, DEFAULT_PRODUCT_CODE_RISK
            )

        domain = features.purchaser_email_domain
        if domain is not None:
            if any(marker in domain for marker in RISKY_EMAIL_MARKERS):
                signals["email_domain"] = RISKY_EMAIL_ADJUSTMENT
            elif any(marker in domain for marker in TRUSTED_EMAIL_MARKERS):
                signals["email_domain"] = TRUSTED_EMAIL_ADJUSTMENT

        prefix = _card_prefix(features.card1)
        if prefix is not None and prefix < CARD_PREFIX_RISK_BELOW:
            signals["card_prefix"] = CARD_PREFIX_ADJUSTMENT

        d1 = features.time_deltas.get("D1")
        if d1 is not None and d1 < SHORT_INTERVAL_DAYS:
            signals["time_delta"] = SHORT_INTERVAL_ADJUSTMENT

        spikes = _count_above(features.counting_features, COUNTING_SPIKE_KEYS, COUNTING_SPIKE_LIMIT)
        if spikes:
            signals["counting_features"] = spikes * COUNTING_SPIKE_ADJUSTMENT

        if features.dist1 is not None and features.dist1 > DISTANCE_RISK_KM:
            signals["distance"] = DISTANCE_ADJUSTMENT

        vesta = _count_above(features.vesta_features, VESTA_KEYS, VESTA_LIMIT)
        if vesta:
            signals["vesta_features"] = vesta * VESTA_ADJUSTMENT

        identity = _count_above(features.identity_features, IDENTITY_KEYS, 0.0)
        if identity:
            signals["identity_features"] = identity * IDENTITY_ADJUSTMENT

        if features.device_type in DEVICE_RISK:
            signals["device_type"] = DEVICE_RISK[features.device_type]

        if features.match_features:
            matches = sum(1 for value in features.match_features.values() if value == "T")
            if matches < MATCH_LOW_COUNT:
                signals["match_features"] = MATCH_LOW_ADJUSTMENT
            elif matches > MATCH_HIGH_COUNT:
                signals["match_features"] = MATCH_HIGH_ADJUSTMENT

        return signals

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def score_model(
        self,
        model_name: str,
        features: FeatureVector,
        signals: Optional[Dict[str, float]] = None,
    ) -> float:
        if model_name not in MODEL_BIAS:
            raise ValueError(f"Unknown model: {model_name}")
        if signals is None:
            signals = self.signals(features)

        rng = self._rng_for(model_name, features)
        raw = (float(rng.random()) * SIMULATED_BASE_SCORE_MAX + sum(signals.values())) * MODEL_BIAS[model_name]

        low, high = SIMULATED_SCORE_BOUNDS
        return round(float(np.clip(raw, low, high)), SIMULATED_SCORE_DECIMALS)

    def predict(
        self,
        features: FeatureVector,
        weights: ModelWeights,
        *,
        model_version: str,
        reason: Optional[str] = None,
    ) -> PredictionResult:
        """Simulated ensemble prediction. Never raises for a valid FeatureVector."""
        start_time = time.perf_counter()

        signals = self.signals(features)
        scores = {name: self.score_model(name, features, signals) for name in MODEL_NAMES}

        result = build_prediction_result(
            scores,
            weights,
            source=ScoreSource.SIMULATED,
            model_version=model_version,
            noise=self.noise(),
            transaction_id=features.transaction_id,
            processing_time_ms=(time.perf_counter() - start_time) * 1000,
            fallback_reason=reason,
            feature_importance=signal_importance(signals) if self.include_feature_importance else None,
        )

        logger.debug(
            "Simulation prediction completed for transaction %s: final_score=%.6f, prediction=%s",
            features.transaction_id, result.final_score, result.prediction,
        )
        return result

    def _rng_for(self, model_name: str, features: FeatureVector) -> np.random.Generator:
        if self.seed is None:
            return self._rng
        return np.random.default_rng(
            [self.seed, _feature_digest(features), MODEL_NAMES.index(model_name)]
        )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _feature_digest(features: FeatureVector) -> int:
    encoded = json.dumps(features.model_dump(mode="json"), sort_keys=True).encode("utf-8")
    return int.from_bytes(hashlib.sha256(encoded).digest()[:8], "big")


def _card_prefix(card1: Optional[str]) -> Optional[int]:
    if not card1:
        return None
    prefix = card1[:4]
    return int(prefix) if prefix.isdigit() else None


def _count_above(values: Dict[str, float], keys, limit: float) -> int:
    return sum(1 for key in keys if values.get(key) is not None and values[key] > limit)
