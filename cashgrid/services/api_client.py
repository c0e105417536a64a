"""
HTTP client for the external cash flow service.

Implements the model store, forecast provider and classification
source contracts on top of ``requests``.
"""

import time
from functools import wraps
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from ..config.settings import ApiConfig
from ..models.classification import ClassificationSummary
from ..models.snapshot import (
    ForecastRequest,
    ForecastResponse,
    ModelSnapshot,
    SaveRequest,
    SaveResponse,
    VersionInfo,
)
from .errors import ForecastError, ModelNotFoundError, StoreError
from .logging_service import get_structured_logger

logger = get_structured_logger().get_logger(__name__)


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    return isinstance(exc, StoreError) and exc.status_code is not None and exc.status_code >= 500


def retry_with_backoff(max_retries: int = 3, backoff_factor: float = 1.0):
    """Decorator for retry logic with exponential backoff on transient failures"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if attempt == max_retries or not _is_retryable(e):
                        raise
                    wait_time = backoff_factor * (2 ** attempt)
                    logger.warning(
                        "Request failed, retrying",
                        attempt=attempt + 1,
                        wait_seconds=wait_time,
                        error=str(e),
                    )
                    time.sleep(wait_time)
        return wrapper
    return decorator


class CashFlowApiClient:
    """Client for the cash flow service endpoints, keyed by user identity."""

    def __init__(self, config: ApiConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if config.auth_token:
            self.session.headers.update({"Authorization": f"Bearer {config.auth_token}"})
        self._send = retry_with_backoff(config.max_retries, config.backoff_factor)(self._send_once)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _send_once(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, self._url(path), timeout=self.config.timeout_seconds, **kwargs
            )
        except (requests.ConnectionError, requests.Timeout):
            raise
        except requests.RequestException as e:
            raise StoreError(f"{method} {path} failed", detail=str(e)) from e

        if response.status_code == 404:
            raise ModelNotFoundError(detail=f"{method} {path}")
        if response.status_code >= 400:
            raise StoreError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:500],
            )
        return response

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self._send(method, path, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error("Service unreachable", method=method, path=path, error=str(e))
            raise StoreError(f"{method} {path} failed", detail=str(e)) from e

        logger.info("Request completed", method=method, path=path, status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"{method} {path} returned invalid JSON", detail=str(e)) from e

    # ---- model store ------------------------------------------------------

    def load(self, identity: str) -> ModelSnapshot:
        data = self._request("GET", "/api/cash-flow/load", params={"user_id": identity})
        if not data or not data.get("rows"):
            raise ModelNotFoundError(detail=f"No saved model for {identity}")
        return self._validate(ModelSnapshot, data, "load")

    def save(self, identity: str, request: SaveRequest) -> SaveResponse:
        data = self._request(
            "POST", "/api/cash-flow/save", params={"user_id": identity}, json=request.to_payload()
        )
        return self._validate(SaveResponse, data or {}, "save")

    def list_versions(self, identity: str) -> List[VersionInfo]:
        data = self._request("GET", "/api/cash-flow/versions", params={"user_id": identity})
        if not isinstance(data, list):
            return []
        return [self._validate(VersionInfo, v, "list_versions") for v in data]

    def rollback(self, identity: str, version_id: str) -> ModelSnapshot:
        """Restore a version server-side, then load the restored model."""
        self._request(
            "POST",
            "/api/cash-flow/rollback",
            params={"user_id": identity, "version_id": version_id},
        )
        return self.load(identity)

    def clear_forecast(self, identity: str) -> None:
        try:
            self._request("DELETE", "/api/forecast/saved", params={"user_id": identity})
        except ModelNotFoundError:
            logger.info("No saved forecast to clear", identity=identity)

    # ---- forecasting --------------------------------------------------------

    def generate_forecast(self, identity: str, request: ForecastRequest) -> ForecastResponse:
        try:
            data = self._request(
                "POST",
                "/api/forecast/generate",
                params={"user_id": identity},
                json=request.to_payload(),
            )
        except StoreError as e:
            raise ForecastError("Forecast request failed", detail=e.detail or str(e)) from e

        if not isinstance(data, dict):
            raise ForecastError("Forecast service returned no data")
        try:
            return ForecastResponse.model_validate(data)
        except ValidationError as e:
            raise ForecastError("Forecast response is malformed", detail=str(e)) from e

    # ---- classification -----------------------------------------------------

    def load_classification(
        self, identity: str, params: Optional[Dict[str, Any]] = None
    ) -> Optional[ClassificationSummary]:
        """Ledger cash-flow summary, falling back to the standardized endpoint."""
        query = {"user_id": identity, **(params or {})}
        try:
            data = self._request("GET", "/api/ledger/cash-flow", params=query)
        except ModelNotFoundError:
            data = None
        if not data:
            logger.info("Ledger summary unavailable, using standardized summary", identity=identity)
            try:
                data = self._request("GET", "/api/standardized/cash-flow", params={"user_id": identity})
            except ModelNotFoundError:
                return None
        if not data:
            return None
        return self._validate(ClassificationSummary, data, "load_classification")

    @staticmethod
    def _validate(model, data, operation: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"Unexpected {operation} response", detail=str(e)) from e

    def close(self) -> None:
        self.session.close()
