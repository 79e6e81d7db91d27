"""
Guardian Ensemble Scoring - Explainability
===========================================

Per-model contributions to the final score, and feature-importance maps
attached to prediction results.
"""

from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from .config import MODEL_NAMES

# (floor, spread): importance = floor + U(0, 1) * spread
FEATURE_IMPORTANCE_BASELINE: Dict[str, Tuple[float, float]] = {
    "TransactionAMT": (0.15, 0.10),
    "ProductCD": (0.12, 0.08),
    "card1": (0.10, 0.08),
    "card2": (0.08, 0.06),
    "card3": (0.06, 0.04),
    "card5": (0.05, 0.04),
    "addr1": (0.07, 0.05),
    "addr2": (0.04, 0.03),
    "dist1": (0.06, 0.04),
    "dist2": (0.05, 0.04),
    "P_emaildomain": (0.08, 0.05),
    "R_emaildomain": (0.03, 0.02),
    "DeviceType": (0.03, 0.02),
    "DeviceInfo": (0.02, 0.015),
}

FEATURE_GROUP_BASELINE: Tuple[Tuple[Tuple[str, ...], Tuple[float, float]], ...] = (
    (("C1", "C2", "C4", "C5", "C6", "C8", "C9", "C11", "C13", "C14"), (0.02, 0.04)),
    (("D1", "D2", "D3", "D4", "D8", "D9", "D10", "D11", "D15"), (0.01, 0.03)),
    (tuple(f"M{i}" for i in range(1, 10)), (0.02, 0.03)),
    (
        ("V1", "V2", "V3", "V4", "V6", "V8", "V11", "V12", "V13", "V17",
         "V19", "V20", "V29", "V30", "V33", "V34", "V35", "V36", "V37", "V38"),
        (0.01, 0.02),
    ),
    (
        ("id_01", "id_02", "id_03", "id_05", "id_06", "id_09", "id_11",
         "id_12", "id_13", "id_14", "id_15", "id_17", "id_19", "id_20"),
        (0.005, 0.015),
    ),
)


def calculate_model_contributions(
    model_scores: Mapping[str, float],
    weights: Mapping[str, float],
) -> Dict[str, float]:
    """weight_i * score_i for each model; the values sum to the final score."""
    return {
        name: round(weights[name] * model_scores[name], 6)
        for name in MODEL_NAMES
        if name in model_scores and name in weights
    }


def generate_feature_importance(
    rng: np.random.Generator,
    top_n: Optional[int] = None,
) -> Dict[str, float]:
    """
    Importance of the IEEE-CIS features the remote models were trained on.

    The backend does not report per-request attributions, so values are
    drawn around published baselines. Sorted by importance, descending.
    """
    baseline = dict(FEATURE_IMPORTANCE_BASELINE)
    for names, bounds in FEATURE_GROUP_BASELINE:
        for name in names:
            baseline[name] = bounds

    importance = {
        name: round(floor + float(rng.random()) * spread, 4)
        for name, (floor, spread) in baseline.items()
    }
    ranked = sorted(importance.items(), key=lambda item: item[1], reverse=True)
    if top_n is not None:
        ranked = ranked[:top_n]
    return dict(ranked)


def signal_importance(signals: Mapping[str, float]) -> Dict[str, float]:
    """Share of the total absolute adjustment contributed by each active signal."""
    total = sum(abs(value) for value in signals.values())
    if total == 0:
        return {}

    shares = {
        name: round(abs(value) / total, 4)
        for name, value in signals.items()
        if value != 0
    }
    return dict(sorted(shares.items(), key=lambda item: item[1], reverse=True))
