"""
Persistence adapter between an edit session and a model store.

Stores themselves (HTTP service or local SQLite) implement the
``ModelStore`` protocol; this module only converts between session
state and the wire contracts.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple, Union

from pydantic import ValidationError

from ..config.settings import BucketWidth
from ..models.classification import ClassificationSummary
from ..models.line_item import LineItemTree
from ..models.snapshot import (
    ForecastRequest,
    ForecastResponse,
    ModelSnapshot,
    SaveRequest,
    SaveResponse,
    VersionInfo,
)
from ..models.time_axis import TimeAxis
from .edit_session import EditSession
from .errors import ModelNotFoundError, StoreError
from .logging_service import get_structured_logger
from .recalc_engine import RecalcEngine

logger = get_structured_logger().get_logger(__name__)


class ModelStore(Protocol):
    def load(self, identity: str) -> ModelSnapshot: ...

    def save(self, identity: str, request: SaveRequest) -> SaveResponse: ...

    def list_versions(self, identity: str) -> List[VersionInfo]: ...

    def rollback(self, identity: str, version_id: str) -> ModelSnapshot: ...

    def clear_forecast(self, identity: str) -> None: ...


class ForecastProvider(Protocol):
    def generate_forecast(self, identity: str, request: ForecastRequest) -> ForecastResponse: ...


class ClassificationSource(Protocol):
    def load_classification(self, identity: str) -> Union[ClassificationSummary, dict, None]: ...


@dataclass
class SessionMetadata:
    """Session-level values persisted alongside the rows."""
    start_date: Optional[str] = None
    bucket_width: BucketWidth = BucketWidth.WEEKLY
    min_cash_threshold: Optional[Decimal] = None
    default_forecast_method: Optional[str] = None
    saved_at: Optional[str] = None


class PersistenceAdapter:
    """Converts between session state and load/save payloads."""

    def __init__(self, recalc_engine: Optional[RecalcEngine] = None):
        self.recalc_engine = recalc_engine or RecalcEngine()

    @staticmethod
    def to_save_request(session: EditSession, metadata: SessionMetadata) -> SaveRequest:
        tree = session.tree
        axis = session.axis
        return SaveRequest(
            rows=tree.snapshot().rows,
            start_date=metadata.start_date,
            bucket_width=metadata.bucket_width,
            min_cash_threshold=metadata.min_cash_threshold,
            total_buckets=tree.bucket_count,
            actual_bucket_count=axis.actual_bucket_count if axis.has_forecast else tree.bucket_count,
            forecast_bucket_count=axis.forecast_bucket_count,
            default_forecast_method=metadata.default_forecast_method,
        )

    def from_snapshot(self, snapshot: ModelSnapshot) -> Tuple[LineItemTree, TimeAxis, SessionMetadata]:
        """
        Rebuild tree, axis and metadata from a load response.

        Raises:
            ModelNotFoundError: the snapshot holds no rows
            StoreError: the rows have differing bucket counts
        """
        if not snapshot.rows:
            raise ModelNotFoundError("Saved model is empty")

        try:
            tree = LineItemTree(rows=[row.model_copy(deep=True) for row in snapshot.rows])
        except ValidationError as e:
            raise StoreError("Saved model is corrupt", detail=str(e)) from e
        total = tree.bucket_count
        forecast = snapshot.forecast_bucket_count or 0
        actual = snapshot.actual_bucket_count or (total - forecast)
        if forecast < 0 or actual + forecast != total:
            logger.warning(
                "Inconsistent bucket counts in snapshot",
                operation="load",
                total=total,
                actual=snapshot.actual_bucket_count,
                forecast=snapshot.forecast_bucket_count,
            )
            actual, forecast = total, 0

        self.recalc_engine.recalculate(tree)
        metadata = SessionMetadata(
            start_date=snapshot.start_date,
            bucket_width=snapshot.bucket_width,
            min_cash_threshold=snapshot.min_cash_threshold,
            default_forecast_method=snapshot.default_forecast_method,
            saved_at=snapshot.saved_at,
        )
        return tree, TimeAxis(actual_bucket_count=actual, forecast_bucket_count=forecast), metadata

    @staticmethod
    def dumps(request: SaveRequest) -> str:
        return json.dumps(request.to_payload())

    @staticmethod
    def loads(text: str) -> ModelSnapshot:
        return ModelSnapshot.model_validate_json(text)
