"""
Guardian Ensemble Scoring - Weight Registry
============================================

Validation and normalization of the three ensemble weights, and the
registry that holds the current weights/threshold as one immutable
snapshot.
"""

import logging
import math
import numbers
import threading
from typing import Any, Dict, Mapping, Optional

from .config import MODEL_NAMES, WEIGHT_DECIMALS, WEIGHT_SUM_TOLERANCE
from .errors import InvalidThresholdError, InvalidWeightError, UnnormalizedWeightsError
from .schemas import ModelWeights, WeightValidation

logger = logging.getLogger(__name__)


def validate_weights(weights: Mapping[str, Any]) -> Dict[str, float]:
    """
    Check that every model has a numeric weight in [0, 1].

    Args:
        weights: Mapping of model name to weight. Must contain exactly
            the configured model names.

    Returns:
        Dict of model name to float weight, in MODEL_NAMES order.

    Raises:
        InvalidWeightError: a weight is missing, None, NaN, not numeric,
            outside [0, 1], or an unknown model name is present.
    """
    unknown = sorted(set(weights) - set(MODEL_NAMES))
    if unknown:
        raise InvalidWeightError(f"Unknown model(s) in weights: {', '.join(unknown)}")

    validated: Dict[str, float] = {}
    for name in MODEL_NAMES:
        value = weights.get(name)
        if value is None:
            raise InvalidWeightError(f"{name} weight is required")
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidWeightError(f"{name} weight must be numeric, got {value!r}")

        value = float(value)
        if math.isnan(value) or value < 0.0 or value > 1.0:
            raise InvalidWeightError(f"{name} weight must be within [0, 1], got {value}")
        validated[name] = value

    return validated


def is_normalized(weights: Mapping[str, float]) -> bool:
    return abs(sum(weights.values()) - 1.0) <= WEIGHT_SUM_TOLERANCE


def normalize_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    """
    Rescale weights proportionally so they sum to exactly 1.0.

    Each weight is divided by the sum and rounded to WEIGHT_DECIMALS; the
    rounding residual is then added to the currently largest weight
    (first in MODEL_NAMES order on ties).

    Raises:
        UnnormalizedWeightsError: the weights sum to zero.
    """
    total = sum(weights.values())
    if total <= 0.0:
        raise UnnormalizedWeightsError("Cannot normalize weights that sum to zero", total)

    scaled = {name: round(weight / total, WEIGHT_DECIMALS) for name, weight in weights.items()}
    largest = max(scaled, key=lambda name: scaled[name])
    residual = 1.0 - sum(scaled.values())
    scaled[largest] = round(scaled[largest] + residual, WEIGHT_DECIMALS)

    return scaled


def validate_threshold(threshold: Any) -> float:
    if threshold is None or isinstance(threshold, bool) or not isinstance(threshold, numbers.Real):
        raise InvalidThresholdError(f"Threshold must be numeric, got {threshold!r}")

    value = float(threshold)
    if math.isnan(value) or value <= 0.0 or value >= 1.0:
        raise InvalidThresholdError(f"Threshold must be between 0 and 1 (exclusive), got {value}")
    return value


def resolve_weights(
    weights: Mapping[str, Any],
    threshold: float,
    auto_normalize: bool = True,
) -> ModelWeights:
    """
    Turn administrative input into a ModelWeights snapshot.

    With ``auto_normalize`` set, any sum other than exactly 1.0 is
    rescaled; weights that already sum to 1.0 are kept bit-identical.
    Without it, a sum within WEIGHT_SUM_TOLERANCE of 1 is stored as given
    and anything else is rejected with UnnormalizedWeightsError.
    """
    validated = validate_weights(weights)
    total = sum(validated.values())

    if not auto_normalize:
        if not is_normalized(validated):
            raise UnnormalizedWeightsError(
                f"Weights must sum to 1.0 (current sum: {total:.6f})", total
            )
    elif total != 1.0:
        validated = normalize_weights(validated)
        logger.info(
            "Normalized weights (sum %.6f) - LGBM: %s, XGBoost: %s, CatBoost: %s",
            total, validated["lgbm"], validated["xgboost"], validated["catboost"],
        )

    return ModelWeights(threshold=threshold, **validated)


def preview_weights(weights: Mapping[str, Any]) -> WeightValidation:
    """Report whether ``weights`` would be accepted as-is, without storing anything."""
    try:
        validated = validate_weights(weights)
    except InvalidWeightError as exc:
        numeric = {
            name: float(value)
            for name, value in weights.items()
            if isinstance(value, numbers.Real) and not isinstance(value, bool)
        }
        return WeightValidation(
            is_valid=False,
            weight_sum=sum(numeric.values()),
            weights=numeric,
            error=str(exc),
        )

    total = sum(validated.values())
    if is_normalized(validated):
        return WeightValidation(is_valid=True, weight_sum=total, weights=validated)

    try:
        suggestion: Optional[Dict[str, float]] = normalize_weights(validated)
        error = None
    except UnnormalizedWeightsError as exc:
        suggestion, error = None, str(exc)

    return WeightValidation(
        is_valid=False,
        weight_sum=total,
        weights=validated,
        normalized_weights=suggestion,
        error=error,
    )


class WeightRegistry:
    """
    Current ensemble weights and decision threshold.

    Readers get the snapshot reference without locking; writers build a
    complete new ModelWeights and swap the reference under a lock, so a
    reader never sees a partially-updated weight set.
    """

    def __init__(self, initial: Optional[ModelWeights] = None):
        if initial is None:
            initial = ModelWeights()
        else:
            initial = resolve_weights(
                initial.as_dict(), validate_threshold(initial.threshold), auto_normalize=False
            )
        self._snapshot = initial
        self._write_lock = threading.Lock()

    def get(self) -> ModelWeights:
        return self._snapshot

    def set_weights(self, weights: Mapping[str, Any], auto_normalize: bool = True) -> ModelWeights:
        with self._write_lock:
            updated = resolve_weights(weights, self._snapshot.threshold, auto_normalize)
            self._snapshot = updated

        logger.info(
            "Model weights updated: LGBM=%s, XGBoost=%s, CatBoost=%s",
            updated.lgbm, updated.xgboost, updated.catboost,
        )
        return updated

    def set_threshold(self, threshold: Any) -> ModelWeights:
        value = validate_threshold(threshold)

        with self._write_lock:
            previous = self._snapshot
            updated = previous.model_copy(update={"threshold": value})
            self._snapshot = updated

        logger.info("Prediction threshold updated: %s -> %s", previous.threshold, value)
        return updated
