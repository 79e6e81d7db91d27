"""
Guardian Ensemble Scoring - Pydantic Schema Definitions
========================================================
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_THRESHOLD, DEFAULT_WEIGHTS, MODEL_NAMES


# =============================================================================
# ENUMS
# =============================================================================

class ScoreSource(str, Enum):
    REAL = "real"
    SIMULATED = "simulated"


class VersionSource(str, Enum):
    BACKEND = "backend"
    RELEASE_INDEX = "release_index"
    DEFAULT = "default"


# =============================================================================
# FEATURE VECTOR
# =============================================================================

class FeatureVector(BaseModel):
    """
    IEEE-CIS style transaction features sent to every model.

    All groups are optional; an empty vector is valid and is scored by
    the fallback simulator from its base draw alone.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    # Identifying attributes
    transaction_id: Optional[Union[int, str]] = Field(default=None)
    transaction_dt: Optional[float] = Field(default=None)
    amount: Optional[float] = Field(default=None, ge=0)
    product_code: Optional[str] = Field(default=None)
    card1: Optional[str] = Field(default=None)
    card2: Optional[str] = Field(default=None)
    card3: Optional[str] = Field(default=None)
    card4: Optional[str] = Field(default=None)
    card5: Optional[str] = Field(default=None)
    card6: Optional[str] = Field(default=None)
    addr1: Optional[float] = Field(default=None)
    addr2: Optional[float] = Field(default=None)
    dist1: Optional[float] = Field(default=None)
    dist2: Optional[float] = Field(default=None)
    purchaser_email_domain: Optional[str] = Field(default=None)
    recipient_email_domain: Optional[str] = Field(default=None)

    # Feature groups
    counting_features: Dict[str, float] = Field(default_factory=dict)
    time_deltas: Dict[str, float] = Field(default_factory=dict)
    match_features: Dict[str, str] = Field(default_factory=dict)
    vesta_features: Dict[str, float] = Field(default_factory=dict)
    identity_features: Dict[str, float] = Field(default_factory=dict)

    # Device descriptors
    device_type: Optional[str] = Field(default=None)
    device_info: Optional[str] = Field(default=None)

    # Derived backend fields
    user_id: Optional[str] = Field(default=None)
    merchant: Optional[str] = Field(default=None)
    merchant_category: Optional[str] = Field(default=None)
    transaction_time: Optional[datetime] = Field(default=None)
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)
    device_fingerprint: Optional[str] = Field(default=None)
    ip_address: Optional[str] = Field(default=None)

    def to_payload(self) -> Dict[str, Any]:
        """Render the JSON body expected by ``/model/{name}/predict``."""
        data = self.model_dump(mode="json")
        return {
            "transaction_id": data["transaction_id"],
            "transaction_dt": data["transaction_dt"],
            "transaction_amt": data["amount"],
            "product_cd": data["product_code"],
            "card1": data["card1"],
            "card2": data["card2"],
            "card3": data["card3"],
            "card4": data["card4"],
            "card5": data["card5"],
            "card6": data["card6"],
            "addr1": data["addr1"],
            "addr2": data["addr2"],
            "dist1": data["dist1"],
            "dist2": data["dist2"],
            "p_emaildomain": data["purchaser_email_domain"],
            "r_emaildomain": data["recipient_email_domain"],
            "counting_features": data["counting_features"],
            "time_deltas": data["time_deltas"],
            "match_features": data["match_features"],
            "vesta_features": data["vesta_features"],
            "identity_features": data["identity_features"],
            "device_type": data["device_type"],
            "device_info": data["device_info"],
            "user_id": data["user_id"],
            "merchant": data["merchant"],
            "merchant_category": data["merchant_category"],
            "transaction_time": data["transaction_time"],
            "latitude": data["latitude"],
            "longitude": data["longitude"],
            "device_fingerprint": data["device_fingerprint"],
            "ip_address": data["ip_address"],
        }


# =============================================================================
# WEIGHTS
# =============================================================================

class ModelWeights(BaseModel):
    """Immutable weight snapshot. Sum invariant is enforced by weights.py."""

    model_config = ConfigDict(frozen=True)

    lgbm: float = Field(default=DEFAULT_WEIGHTS["lgbm"])
    xgboost: float = Field(default=DEFAULT_WEIGHTS["xgboost"])
    catboost: float = Field(default=DEFAULT_WEIGHTS["catboost"])
    threshold: float = Field(default=DEFAULT_THRESHOLD)

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in MODEL_NAMES}

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())


class WeightValidation(BaseModel):
    is_valid: bool = Field(...)
    weight_sum: float = Field(...)
    weights: Dict[str, float] = Field(...)
    normalized_weights: Optional[Dict[str, float]] = Field(default=None)
    error: Optional[str] = Field(default=None)


# =============================================================================
# RESULTS
# =============================================================================

class PredictionResult(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    transaction_id: Optional[Union[int, str]] = Field(default=None)
    model_scores: Dict[str, float] = Field(...)
    weights: ModelWeights = Field(...)
    final_score: float = Field(...)
    prediction: bool = Field(...)
    confidence: float = Field(..., ge=0, le=1)
    threshold: float = Field(...)
    model_version: str = Field(...)
    processing_time_ms: float = Field(default=0.0)
    source: ScoreSource = Field(...)
    fallback_reason: Optional[str] = Field(default=None)
    predicted_at: datetime = Field(default_factory=datetime.utcnow)
    feature_importance: Optional[Dict[str, float]] = Field(default=None)
    model_contributions: Optional[Dict[str, float]] = Field(default=None)

    @property
    def is_real(self) -> bool:
        return self.source == ScoreSource.REAL


class SingleModelScore(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_name: str = Field(...)
    score: float = Field(..., ge=0, le=1)
    transaction_id: Optional[Union[int, str]] = Field(default=None)
    model_version: str = Field(...)
    processing_time_ms: float = Field(...)
    source: ScoreSource = Field(...)


# =============================================================================
# VERSIONS & HEALTH
# =============================================================================

class ModelVersionInfo(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    version: str = Field(...)
    source: VersionSource = Field(...)
    known: bool = Field(default=True)
    model_urls: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    loaded_at: Optional[str] = Field(default=None)
    models_loaded: Optional[Any] = Field(default=None)


class HealthStatus(BaseModel):
    healthy: bool = Field(...)
    latency_ms: float = Field(...)
    detail: str = Field(...)


class ServiceStatus(BaseModel):
    enabled: bool = Field(...)
    healthy: bool = Field(...)
    response_time_ms: float = Field(...)
    detail: str = Field(...)
    version: Optional[ModelVersionInfo] = Field(default=None)
    checked_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# API REQUEST SCHEMAS
# =============================================================================

class WeightsUpdateRequest(BaseModel):
    lgbm: Optional[float] = Field(default=None)
    xgboost: Optional[float] = Field(default=None)
    catboost: Optional[float] = Field(default=None)
    auto_normalize: bool = Field(default=True)

    def weights(self) -> Dict[str, Optional[float]]:
        return {"lgbm": self.lgbm, "xgboost": self.xgboost, "catboost": self.catboost}


class CustomWeightScoreRequest(WeightsUpdateRequest):
    features: FeatureVector = Field(...)


class RawScoreRequest(BaseModel):
    """Raw IEEE-CIS columns, either as a mapping or as the stored JSON blob."""

    transaction_id: Optional[Union[int, str]] = Field(default=None)
    amount: Optional[float] = Field(default=None, ge=0)
    features: Union[Dict[str, Any], str, None] = Field(default=None)


class ThresholdUpdateRequest(BaseModel):
    threshold: float = Field(...)


class AvailableVersionsResponse(BaseModel):
    versions: List[str] = Field(...)
    count: int = Field(...)
    default_version: str = Field(...)


class ReloadResponse(BaseModel):
    version: str = Field(...)
    accepted: bool = Field(...)
    requested_at: datetime = Field(default_factory=datetime.utcnow)
