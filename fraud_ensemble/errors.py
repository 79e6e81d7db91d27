"""
Guardian Ensemble Scoring - Error Taxonomy
===========================================

ADMINISTRATIVE INPUT (rejected, no state change):
    InvalidWeightError, UnnormalizedWeightsError, InvalidThresholdError

SINGLE MODEL CALL (abort the whole ensemble attempt):
    UpstreamError, MalformedResponseError, ModelTimeoutError

AGGREGATE (always caught by the engine, which falls back to simulation):
    EnsembleError

Version resolution failures never surface as exceptions.
"""

from typing import Dict, Optional


class EnsembleScoringError(Exception):
    """Base class for every error raised by the scoring engine."""


# =============================================================================
# ADMINISTRATIVE INPUT
# =============================================================================

class InvalidWeightError(EnsembleScoringError, ValueError):
    """A weight is missing, not numeric, or outside [0, 1]."""


class UnnormalizedWeightsError(EnsembleScoringError, ValueError):
    """The weights do not sum to 1 and cannot or may not be normalized."""

    def __init__(self, message: str, weight_sum: float):
        super().__init__(message)
        self.weight_sum = weight_sum


class InvalidThresholdError(EnsembleScoringError, ValueError):
    """The decision threshold is outside the open interval (0, 1)."""


# =============================================================================
# MODEL INVOCATION
# =============================================================================

class ModelInvocationError(EnsembleScoringError):
    """A single call to one model endpoint failed."""

    def __init__(self, model_name: str, message: str):
        super().__init__(f"{model_name}: {message}")
        self.model_name = model_name


class UpstreamError(ModelInvocationError):
    """Transport failure or non-2xx status from the model service."""

    def __init__(self, model_name: str, message: str, status_code: Optional[int] = None):
        super().__init__(model_name, message)
        self.status_code = status_code


class MalformedResponseError(ModelInvocationError):
    """The response carried no usable ``score``/``prediction`` value."""


class ModelTimeoutError(ModelInvocationError):
    """The call exceeded its per-call timeout."""


# =============================================================================
# ENSEMBLE
# =============================================================================

class EnsembleError(EnsembleScoringError):
    """At least one model invocation failed; no partial result is produced."""

    def __init__(self, failures: Dict[str, BaseException]):
        self.failures = dict(failures)
        detail = "; ".join(
            f"{name} ({type(exc).__name__}: {exc})" for name, exc in self.failures.items()
        )
        super().__init__(f"ensemble prediction failed: {detail}")

    @property
    def failed_models(self):
        return sorted(self.failures)
