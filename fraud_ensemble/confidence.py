"""
Guardian Ensemble Scoring - Confidence Logic
=============================================

Confidence is a reporting signal only; it never changes the prediction.
"""

from typing import Optional

import numpy as np

from .config import CONFIDENCE_CENTER, CONFIDENCE_DECIMALS


def calculate_confidence(final_score: float, noise: float = 0.0) -> float:
    """Distance from 0.5 scaled to [0, 1], plus an optional noise term, clipped."""
    confidence = abs(final_score - CONFIDENCE_CENTER) * 2 + noise
    return round(float(np.clip(confidence, 0.0, 1.0)), CONFIDENCE_DECIMALS)


class ConfidenceNoise:
    """
    Gaussian model-uncertainty smoothing for the confidence score.

    With ``std == 0`` every draw is exactly 0.0, which is what tests and
    deterministic deployments use.
    """

    def __init__(self, std: float = 0.0, seed: Optional[int] = None):
        if std < 0:
            raise ValueError("Noise standard deviation must be non-negative")
        self.std = std
        self._rng = np.random.default_rng(seed)

    def __call__(self) -> float:
        if self.std == 0:
            return 0.0
        return float(self._rng.normal(0.0, self.std))
