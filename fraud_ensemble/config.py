"""
Guardian Ensemble Scoring - Configuration
==========================================

Constants for the three-model ensemble and the environment-backed
settings of the remote model service.
"""

from functools import lru_cache
from typing import Dict, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# ENSEMBLE MODELS & WEIGHTS
# =============================================================================

MODEL_NAMES: Tuple[str, ...] = ("lgbm", "xgboost", "catboost")

DEFAULT_WEIGHTS: Dict[str, float] = {
    "lgbm": 0.333,
    "xgboost": 0.333,
    "catboost": 0.334,
}

DEFAULT_THRESHOLD: float = 0.5

WEIGHT_SUM_TOLERANCE: float = 1e-4
WEIGHT_DECIMALS: int = 6

# =============================================================================
# CONFIDENCE
# =============================================================================

CONFIDENCE_CENTER: float = 0.5
CONFIDENCE_DECIMALS: int = 6
DEFAULT_CONFIDENCE_NOISE_STD: float = 0.05

# =============================================================================
# FALLBACK SIMULATOR
# =============================================================================

SIMULATED_SCORE_BOUNDS: Tuple[float, float] = (0.001, 0.999)
SIMULATED_SCORE_DECIMALS: int = 6
SIMULATED_BASE_SCORE_MAX: float = 0.5

# conservative / lenient / balanced
MODEL_BIAS: Dict[str, float] = {
    "lgbm": 0.92,
    "xgboost": 1.08,
    "catboost": 1.00,
}

AMOUNT_BANDS: Tuple[Tuple[float, float], ...] = (
    (1000.0, 0.15),
    (5000.0, 0.20),
)

PRODUCT_CODE_RISK: Dict[str, float] = {
    "W": 0.25,
    "C": 0.10,
    "H": 0.05,
}
DEFAULT_PRODUCT_CODE_RISK: float = 0.08

RISKY_EMAIL_MARKERS: Tuple[str, ...] = ("tempmail", "guerrillamail")
TRUSTED_EMAIL_MARKERS: Tuple[str, ...] = ("gmail", "yahoo")
RISKY_EMAIL_ADJUSTMENT: float = 0.30
TRUSTED_EMAIL_ADJUSTMENT: float = -0.10

CARD_PREFIX_RISK_BELOW: int = 2000
CARD_PREFIX_ADJUSTMENT: float = 0.10

SHORT_INTERVAL_DAYS: float = 1.0
SHORT_INTERVAL_ADJUSTMENT: float = 0.20

COUNTING_SPIKE_KEYS: Tuple[str, ...] = ("C1", "C2", "C3", "C4", "C5")
COUNTING_SPIKE_LIMIT: float = 10.0
COUNTING_SPIKE_ADJUSTMENT: float = 0.05

DISTANCE_RISK_KM: float = 1000.0
DISTANCE_ADJUSTMENT: float = 0.15

VESTA_KEYS: Tuple[str, ...] = tuple(f"V{i}" for i in range(1, 12))
VESTA_LIMIT: float = 1.0
VESTA_ADJUSTMENT: float = 0.02

IDENTITY_KEYS: Tuple[str, ...] = tuple(f"id_{i:02d}" for i in range(1, 12))
IDENTITY_ADJUSTMENT: float = 0.01

DEVICE_RISK: Dict[str, float] = {
    "mobile": 0.05,
    "desktop": -0.05,
}

MATCH_LOW_COUNT: int = 3
MATCH_HIGH_COUNT: int = 7
MATCH_LOW_ADJUSTMENT: float = 0.20
MATCH_HIGH_ADJUSTMENT: float = -0.10

SIMULATION_VERSION_SUFFIX: str = "-simulation"
SIMULATION_CUSTOM_VERSION_SUFFIX: str = "-simulation-custom"

# =============================================================================
# RELEASE INDEX
# =============================================================================

RELEASE_ASSETS: Dict[str, str] = {
    "lgbm.pkl": "lgbm",
    "xgboost.pkl": "xgboost",
    "catboost.pkl": "catboost",
    "preprocessor.pkl": "preprocessor",
    "metadata.json": "metadata",
}

REQUIRED_RELEASE_ARTIFACTS: Tuple[str, ...] = MODEL_NAMES + ("metadata",)

GITHUB_ACCEPT_HEADER: str = "application/vnd.github.v3+json"
USER_AGENT: str = "fraud-detection-backend"

# =============================================================================
# EXPLAINABILITY
# =============================================================================

TOP_FEATURES_COUNT: int = 10

# =============================================================================
# LATENCY BUDGET
# =============================================================================

SCORE_LATENCY_BUDGET_MS: float = 500.0


class ModelServiceSettings(BaseSettings):
    """Remote model service settings, read from ``MODEL_SERVICE_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="MODEL_SERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    url: str = "http://model:8000"
    enabled: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0)
    health_timeout_seconds: float = Field(default=3.0, gt=0)

    # Applied by callers around score(); the engine itself never retries.
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0)

    github_repo: str = "sookmyung-final-project-2025-1/Data"
    github_api_url: str = "https://api.github.com"
    default_version: str = "v1.0.0"

    confidence_noise_std: float = Field(default=DEFAULT_CONFIDENCE_NOISE_STD, ge=0)
    simulation_seed: Optional[int] = Field(default=None, ge=0)
    include_feature_importance: bool = True


@lru_cache(maxsize=1)
def get_settings() -> ModelServiceSettings:
    return ModelServiceSettings()
