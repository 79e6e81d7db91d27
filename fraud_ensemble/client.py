"""
Guardian Ensemble Scoring - Model Service Client
=================================================

Thin async wrappers around the remote model service:

    GET  /health                  -> HealthProbe
    POST /model/{name}/predict    -> ModelInvoker

Both take an ``httpx.AsyncClient`` whose ``base_url`` points at the
service; lifecycle of that client belongs to the caller.
"""

import asyncio
import logging
import math
import numbers
import time
from typing import Optional

import httpx

from .config import MODEL_NAMES
from .errors import MalformedResponseError, ModelTimeoutError, UpstreamError
from .schemas import FeatureVector, HealthStatus

logger = logging.getLogger(__name__)

HEALTHY_STATUS = "healthy"


class HealthProbe:
    """Cheap readiness check run before every real ensemble attempt."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 3.0):
        self.http_client = http_client
        self.timeout = timeout

    async def check(self, timeout: Optional[float] = None) -> HealthStatus:
        """
        Probe ``/health`` and report the outcome.

        Never raises: transport errors, timeouts, non-2xx codes and
        unexpected bodies all produce ``healthy=False`` with a detail.
        """
        timeout = self.timeout if timeout is None else timeout
        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self.http_client.get("/health", timeout=timeout), timeout=timeout
            )
            healthy, detail = self._evaluate(response)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            healthy, detail = False, f"health check timed out after {timeout}s"
        except Exception as exc:
            healthy, detail = False, f"health check failed: {exc}"

        latency_ms = (time.perf_counter() - start_time) * 1000
        if not healthy:
            logger.debug("Model service health check negative: %s", detail)

        return HealthStatus(healthy=healthy, latency_ms=round(latency_ms, 2), detail=detail)

    async def is_healthy(self, timeout: Optional[float] = None) -> bool:
        status = await self.check(timeout)
        return status.healthy

    @staticmethod
    def _evaluate(response: httpx.Response):
        if not response.is_success:
            return False, f"health endpoint returned HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            return False, "health endpoint returned a non-JSON body"
        if not isinstance(body, dict) or body.get("status") != HEALTHY_STATUS:
            return False, f"unexpected health payload: {body!r}"
        return True, "model service is healthy"


class ModelInvoker:
    """Scores one feature vector with one named model."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 30.0):
        self.http_client = http_client
        self.timeout = timeout

    async def invoke(self, model_name: str, features: FeatureVector) -> float:
        """
        POST the feature payload to ``/model/{model_name}/predict``.

        Returns:
            The model's fraud score in [0, 1].

        Raises:
            ValueError: model_name is not one of MODEL_NAMES.
            ModelTimeoutError: the call exceeded ``timeout``.
            UpstreamError: transport failure or non-2xx status.
            MalformedResponseError: no usable score in the response body.
        """
        if model_name not in MODEL_NAMES:
            raise ValueError(f"Unknown model: {model_name}")

        try:
            response = await asyncio.wait_for(
                self.http_client.post(
                    f"/model/{model_name}/predict",
                    json=features.to_payload(),
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ModelTimeoutError(model_name, f"no response within {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(model_name, f"request failed: {exc}") from exc

        if not response.is_success:
            raise UpstreamError(
                model_name, f"HTTP {response.status_code}", status_code=response.status_code
            )

        score = self._extract_score(model_name, response)
        logger.debug("%s scored transaction %s: %.6f", model_name, features.transaction_id, score)
        return score

    @staticmethod
    def _extract_score(model_name: str, response: httpx.Response) -> float:
        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError(model_name, "response body is not JSON") from exc

        if not isinstance(body, dict):
            raise MalformedResponseError(model_name, f"expected a JSON object, got {type(body).__name__}")

        value = body.get("score")
        if value is None:
            value = body.get("prediction")
        if value is None:
            raise MalformedResponseError(model_name, "response has neither 'score' nor 'prediction'")

        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise MalformedResponseError(model_name, f"score is not numeric: {value!r}")

        score = float(value)
        if math.isnan(score) or score < 0.0 or score > 1.0:
            raise MalformedResponseError(model_name, f"score out of range: {score}")
        return score
