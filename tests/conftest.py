"""
Pytest configuration and shared fixtures.
"""

import asyncio
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from fraud_ensemble.config import ModelServiceSettings
from fraud_ensemble.schemas import (
    FeatureVector,
    HealthStatus,
    ModelVersionInfo,
    VersionSource,
)

BACKEND_URL = "http://model.test"
RELEASE_API_URL = "https://api.github.test"


# ============================================================================
# FAKES
# ============================================================================


class FakeInvoker:
    """Stands in for ModelInvoker; records calls and cancellations."""

    def __init__(
        self,
        scores: Optional[Dict[str, float]] = None,
        failures: Optional[Dict[str, BaseException]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.scores = scores or {"lgbm": 0.2, "xgboost": 0.6, "catboost": 0.4}
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: List[str] = []
        self.cancelled: List[str] = []

    async def invoke(self, model_name: str, features: FeatureVector) -> float:
        self.calls.append(model_name)
        try:
            if model_name in self.delays:
                await asyncio.sleep(self.delays[model_name])
        except asyncio.CancelledError:
            self.cancelled.append(model_name)
            raise
        if model_name in self.failures:
            raise self.failures[model_name]
        return self.scores[model_name]


def make_probe(healthy: bool = True) -> MagicMock:
    probe = MagicMock()
    probe.is_healthy = AsyncMock(return_value=healthy)
    probe.check = AsyncMock(return_value=HealthStatus(
        healthy=healthy,
        latency_ms=4.2,
        detail="model service is healthy" if healthy else "health endpoint returned HTTP 503",
    ))
    return probe


def make_resolver(version: str = "v1.2.0") -> MagicMock:
    resolver = MagicMock()
    resolver.current_version = AsyncMock(
        return_value=ModelVersionInfo(version=version, source=VersionSource.BACKEND)
    )
    resolver.available_versions = AsyncMock(return_value=[version, "v1.0.0"])
    resolver.metadata = AsyncMock(return_value={"auc": 0.93})
    resolver.describe = AsyncMock(return_value=ModelVersionInfo(
        version=version,
        source=VersionSource.RELEASE_INDEX,
        model_urls={"lgbm": "https://downloads.test/lgbm.pkl"},
        metadata={"auc": 0.93},
    ))
    resolver.request_reload = AsyncMock(return_value=True)
    return resolver


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings():
    """Deterministic settings: no confidence noise, fixed simulation seed."""
    return ModelServiceSettings(
        url=BACKEND_URL,
        github_api_url=RELEASE_API_URL,
        github_repo="acme/models",
        default_version="v1.0.0",
        confidence_noise_std=0.0,
        simulation_seed=7,
        timeout_seconds=2.0,
        health_timeout_seconds=1.0,
    )


@pytest.fixture
def features():
    return FeatureVector(
        transaction_id=42,
        amount=120.0,
        product_code="H",
        card1="13553",
        purchaser_email_domain="gmail.com",
        counting_features={"C1": 1.0, "C2": 1.0},
        time_deltas={"D1": 14.0},
        match_features={"M1": "T", "M2": "T", "M3": "F"},
        device_type="desktop",
    )


@pytest.fixture
def empty_features():
    return FeatureVector()
