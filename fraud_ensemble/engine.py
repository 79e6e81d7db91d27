"""
Guardian Ensemble Scoring - Scoring Engine
===========================================

Per-request flow:

    PROBE_HEALTH -> TRY_REAL -> DONE (real)
         |             |
         +-------------+--> SIMULATE -> DONE (simulated)

A disabled model service, a negative health probe, or any failed model
invocation sends the request to the fallback simulator. ``score`` always
returns a PredictionResult.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

import httpx
import numpy as np

from .client import HealthProbe, ModelInvoker
from .confidence import ConfidenceNoise
from .config import (
    GITHUB_ACCEPT_HEADER,
    MODEL_NAMES,
    SCORE_LATENCY_BUDGET_MS,
    SIMULATION_CUSTOM_VERSION_SUFFIX,
    SIMULATION_VERSION_SUFFIX,
    TOP_FEATURES_COUNT,
    USER_AGENT,
    ModelServiceSettings,
    get_settings,
)
from .ensemble import EnsembleAggregator
from .errors import EnsembleError, ModelInvocationError
from .explainer import generate_feature_importance
from .schemas import (
    FeatureVector,
    ModelVersionInfo,
    ModelWeights,
    PredictionResult,
    ScoreSource,
    ServiceStatus,
    SingleModelScore,
    WeightValidation,
)
from .simulator import FallbackSimulator
from .versions import VersionResolver
from .weights import WeightRegistry, preview_weights, resolve_weights

logger = logging.getLogger(__name__)


class EnsembleFraudScoringEngine:
    """
    Three-model ensemble scorer with simulated fallback.

    Collaborators are built from ``settings`` unless injected. HTTP
    clients created here are closed by ``aclose`` (or on leaving the
    ``async with`` block); injected clients are left to their owner.
    """

    def __init__(
        self,
        settings: Optional[ModelServiceSettings] = None,
        *,
        registry: Optional[WeightRegistry] = None,
        backend_client: Optional[httpx.AsyncClient] = None,
        release_client: Optional[httpx.AsyncClient] = None,
        probe: Optional[HealthProbe] = None,
        invoker: Optional[ModelInvoker] = None,
        resolver: Optional[VersionResolver] = None,
        simulator: Optional[FallbackSimulator] = None,
        noise: Optional[ConfidenceNoise] = None,
    ):
        self.settings = settings or get_settings()
        self._owned_clients: List[httpx.AsyncClient] = []

        if backend_client is None:
            backend_client = httpx.AsyncClient(
                base_url=self.settings.url,
                timeout=httpx.Timeout(self.settings.timeout_seconds),
            )
            self._owned_clients.append(backend_client)

        if release_client is None:
            release_client = httpx.AsyncClient(
                base_url=self.settings.github_api_url,
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                headers={"Accept": GITHUB_ACCEPT_HEADER, "User-Agent": USER_AGENT},
            )
            self._owned_clients.append(release_client)

        self.registry = registry or WeightRegistry()
        self.noise = noise or ConfidenceNoise(
            self.settings.confidence_noise_std, self.settings.simulation_seed
        )
        self.probe = probe or HealthProbe(backend_client, self.settings.health_timeout_seconds)
        self.invoker = invoker or ModelInvoker(backend_client, self.settings.timeout_seconds)
        self.resolver = resolver or VersionResolver(
            backend_client,
            release_client,
            repo=self.settings.github_repo,
            default_version=self.settings.default_version,
            timeout=self.settings.timeout_seconds,
        )
        self.aggregator = EnsembleAggregator(
            self.invoker,
            self.resolver,
            noise=self.noise,
            default_version=self.settings.default_version,
        )
        self.simulator = simulator or FallbackSimulator(
            seed=self.settings.simulation_seed,
            noise=self.noise,
            include_feature_importance=self.settings.include_feature_importance,
        )
        self._importance_rng = np.random.default_rng(self.settings.simulation_seed)

    async def __aenter__(self) -> "EnsembleFraudScoringEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients.clear()

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    async def score(self, features: FeatureVector) -> PredictionResult:
        """Score with the registry's current weights. Never raises."""
        return await self._score(
            features,
            self.registry.get(),
            simulated_version=self.settings.default_version + SIMULATION_VERSION_SUFFIX,
        )

    async def score_with_weights(
        self,
        features: FeatureVector,
        lgbm: float,
        xgboost: float,
        catboost: float,
        auto_normalize: bool = True,
    ) -> PredictionResult:
        """
        Score with one-shot weights and the current threshold.

        The registry is not modified.

        Raises:
            InvalidWeightError: a weight is missing or outside [0, 1].
            UnnormalizedWeightsError: the weights do not sum to 1 and
                ``auto_normalize`` is False (or they sum to zero).
        """
        weights = resolve_weights(
            {"lgbm": lgbm, "xgboost": xgboost, "catboost": catboost},
            self.registry.get().threshold,
            auto_normalize,
        )
        return await self._score(
            features,
            weights,
            simulated_version=self.settings.default_version + SIMULATION_CUSTOM_VERSION_SUFFIX,
        )

    async def _score(
        self,
        features: FeatureVector,
        weights: ModelWeights,
        simulated_version: str,
    ) -> PredictionResult:
        start_time = time.perf_counter()
        result: Optional[PredictionResult] = None
        fallback_reason: Optional[str] = None

        if not self.settings.enabled:
            fallback_reason = "model service disabled"
        elif not await self.probe.is_healthy():
            fallback_reason = "health probe failed"
        else:
            try:
                result = await self.aggregator.predict(features, weights)
            except EnsembleError as exc:
                fallback_reason = str(exc)
            except Exception as exc:
                logger.exception(
                    "Real ensemble attempt failed unexpectedly for transaction %s", features.transaction_id
                )
                fallback_reason = f"unexpected error: {type(exc).__name__}: {exc}"

        if result is None:
            logger.warning(
                "Falling back to simulation for transaction %s: %s",
                features.transaction_id, fallback_reason,
            )
            result = self.simulator.predict(
                features, weights, model_version=simulated_version, reason=fallback_reason
            )
        elif self.settings.include_feature_importance:
            result = result.model_copy(update={
                "feature_importance": generate_feature_importance(
                    self._importance_rng, TOP_FEATURES_COUNT
                ),
            })

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if elapsed_ms > SCORE_LATENCY_BUDGET_MS:
            logger.warning(
                "Scoring latency budget breached for transaction %s: %.1f ms (target <= %.0f ms)",
                features.transaction_id, elapsed_ms, SCORE_LATENCY_BUDGET_MS,
            )

        return result.model_copy(update={"processing_time_ms": round(elapsed_ms, 2)})

    async def score_single(self, model_name: str, features: FeatureVector) -> SingleModelScore:
        """
        Score with one model only.

        Uses the real model when the service is enabled and healthy,
        otherwise (or when the call fails) the simulator's score for that
        model.

        Raises:
            ValueError: model_name is not a known model.
        """
        if model_name not in MODEL_NAMES:
            raise ValueError(f"Unknown model: {model_name}")

        start_time = time.perf_counter()
        fallback_reason = None

        if not self.settings.enabled:
            fallback_reason = "model service disabled"
        elif not await self.probe.is_healthy():
            fallback_reason = "health probe failed"
        else:
            try:
                score = await self.invoker.invoke(model_name, features)
                version = await self.resolver.current_version()
                return SingleModelScore(
                    model_name=model_name,
                    score=score,
                    transaction_id=features.transaction_id,
                    model_version=version.version,
                    processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    source=ScoreSource.REAL,
                )
            except ModelInvocationError as exc:
                fallback_reason = str(exc)
            except Exception as exc:
                logger.exception(
                    "Real %s attempt failed unexpectedly for transaction %s", model_name, features.transaction_id
                )
                fallback_reason = f"unexpected error: {type(exc).__name__}: {exc}"

        logger.warning(
            "Falling back to simulated %s score for transaction %s: %s",
            model_name, features.transaction_id, fallback_reason,
        )
        return SingleModelScore(
            model_name=model_name,
            score=self.simulator.score_model(model_name, features),
            transaction_id=features.transaction_id,
            model_version=self.settings.default_version + SIMULATION_VERSION_SUFFIX,
            processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
            source=ScoreSource.SIMULATED,
        )

    # -------------------------------------------------------------------------
    # Weight administration
    # -------------------------------------------------------------------------

    def get_weights(self) -> ModelWeights:
        return self.registry.get()

    def set_weights(self, weights: Mapping[str, Any], auto_normalize: bool = True) -> ModelWeights:
        return self.registry.set_weights(weights, auto_normalize)

    def set_threshold(self, threshold: float) -> ModelWeights:
        return self.registry.set_threshold(threshold)

    def preview_weights(self, weights: Mapping[str, Any]) -> WeightValidation:
        return preview_weights(weights)

    # -------------------------------------------------------------------------
    # Versions & status
    # -------------------------------------------------------------------------

    async def current_version(self) -> ModelVersionInfo:
        return await self.resolver.current_version()

    async def available_versions(self) -> List[str]:
        return await self.resolver.available_versions()

    async def version_metadata(self, version: str) -> Dict[str, Any]:
        return await self.resolver.metadata(version)

    async def describe_version(self, version: str) -> ModelVersionInfo:
        return await self.resolver.describe(version)

    async def deploy_version(self, version: str) -> bool:
        return await self.resolver.request_reload(version)

    async def service_status(self) -> ServiceStatus:
        if not self.settings.enabled:
            return ServiceStatus(
                enabled=False,
                healthy=False,
                response_time_ms=0.0,
                detail="model service disabled",
            )

        health = await self.probe.check()
        version = await self.resolver.current_version() if health.healthy else None
        return ServiceStatus(
            enabled=True,
            healthy=health.healthy,
            response_time_ms=health.latency_ms,
            detail=health.detail,
            version=version,
        )
