"""
Guardian Ensemble Scoring - FastAPI Application
================================================

Run with: uvicorn fraud_ensemble.api:app --reload --port 8080
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .engine import EnsembleFraudScoringEngine
from .features import build_feature_vector, parse_raw_features
from .schemas import (
    AvailableVersionsResponse,
    CustomWeightScoreRequest,
    FeatureVector,
    ModelVersionInfo,
    ModelWeights,
    PredictionResult,
    RawScoreRequest,
    ReloadResponse,
    ServiceStatus,
    SingleModelScore,
    ThresholdUpdateRequest,
    WeightsUpdateRequest,
    WeightValidation,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/ensemble"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own one scoring engine for the lifetime of the application."""
    logger.info("Guardian Ensemble Scoring v%s starting...", __version__)
    async with EnsembleFraudScoringEngine() as engine:
        app.state.engine = engine
        logger.info("EnsembleFraudScoringEngine initialized (model service: %s)", engine.settings.url)
        yield
    logger.info("Guardian Ensemble Scoring shutting down...")


app = FastAPI(
    title="Guardian Ensemble Scoring",
    description="Three-model ensemble fraud scoring with simulated fallback",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _engine(request: Request) -> EnsembleFraudScoringEngine:
    return request.app.state.engine


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": str(exc)}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "An unexpected error occurred."}
    )


# =============================================================================
# SCORING
# =============================================================================

@app.post(f"{API_PREFIX}/score", response_model=PredictionResult, tags=["Scoring"])
async def score_transaction(features: FeatureVector, request: Request) -> PredictionResult:
    """Score a transaction with the current ensemble weights."""
    return await _engine(request).score(features)


@app.post(f"{API_PREFIX}/score/custom-weights", response_model=PredictionResult, tags=["Scoring"])
async def score_with_custom_weights(body: CustomWeightScoreRequest, request: Request) -> PredictionResult:
    """Score with one-shot weights; the stored weights are not changed."""
    return await _engine(request).score_with_weights(
        body.features,
        lgbm=body.lgbm,
        xgboost=body.xgboost,
        catboost=body.catboost,
        auto_normalize=body.auto_normalize,
    )


@app.post(f"{API_PREFIX}/score/raw", response_model=PredictionResult, tags=["Scoring"])
async def score_raw_transaction(body: RawScoreRequest, request: Request) -> PredictionResult:
    """Score a transaction given as raw IEEE-CIS columns."""
    raw = body.features
    if raw is None or isinstance(raw, str):
        raw = parse_raw_features(raw, body.transaction_id)
    features = build_feature_vector(raw, body.transaction_id, body.amount)
    return await _engine(request).score(features)


@app.post(f"{API_PREFIX}/score/single/{{model_name}}", response_model=SingleModelScore, tags=["Scoring"])
async def score_single_model(model_name: str, features: FeatureVector, request: Request) -> SingleModelScore:
    return await _engine(request).score_single(model_name, features)


# =============================================================================
# WEIGHTS
# =============================================================================

@app.get(f"{API_PREFIX}/weights", response_model=ModelWeights, tags=["Weights"])
async def get_weights(request: Request) -> ModelWeights:
    return _engine(request).get_weights()


@app.put(f"{API_PREFIX}/weights", response_model=ModelWeights, tags=["Weights"])
async def update_weights(body: WeightsUpdateRequest, request: Request) -> ModelWeights:
    return _engine(request).set_weights(body.weights(), auto_normalize=body.auto_normalize)


@app.get(f"{API_PREFIX}/weights/validation", response_model=WeightValidation, tags=["Weights"])
async def validate_weights(
    request: Request,
    lgbm: Optional[float] = None,
    xgboost: Optional[float] = None,
    catboost: Optional[float] = None,
) -> WeightValidation:
    """Preview whether a weight set would be accepted, without storing it."""
    return _engine(request).preview_weights({"lgbm": lgbm, "xgboost": xgboost, "catboost": catboost})


@app.put(f"{API_PREFIX}/threshold", response_model=ModelWeights, tags=["Weights"])
async def update_threshold(body: ThresholdUpdateRequest, request: Request) -> ModelWeights:
    return _engine(request).set_threshold(body.threshold)


# =============================================================================
# SERVICE & VERSIONS
# =============================================================================

@app.get(f"{API_PREFIX}/service/status", response_model=ServiceStatus, tags=["System"])
async def service_status(request: Request) -> ServiceStatus:
    return await _engine(request).service_status()


@app.get(f"{API_PREFIX}/versions/current", response_model=ModelVersionInfo, tags=["Versions"])
async def current_version(request: Request) -> ModelVersionInfo:
    return await _engine(request).current_version()


@app.get(f"{API_PREFIX}/versions/available", response_model=AvailableVersionsResponse, tags=["Versions"])
async def available_versions(request: Request) -> AvailableVersionsResponse:
    engine = _engine(request)
    versions = await engine.available_versions()
    return AvailableVersionsResponse(
        versions=versions,
        count=len(versions),
        default_version=engine.settings.default_version,
    )


@app.get(f"{API_PREFIX}/versions/{{version}}/metadata", tags=["Versions"])
async def version_metadata(version: str, request: Request) -> Dict[str, Any]:
    info = await _engine(request).describe_version(version)
    return {"version": version, "model_urls": info.model_urls, "metadata": info.metadata}


@app.post(f"{API_PREFIX}/versions/{{version}}/deploy", response_model=ReloadResponse, tags=["Versions"])
async def deploy_version(version: str, request: Request) -> ReloadResponse:
    accepted = await _engine(request).deploy_version(version)
    return ReloadResponse(version=version, accepted=accepted)


@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Guardian Ensemble Scoring",
        "version": __version__,
        "documentation": "/docs",
        "score": f"{API_PREFIX}/score",
        "status": f"{API_PREFIX}/service/status",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("fraud_ensemble.api:app", host="0.0.0.0", port=8080, reload=True)
