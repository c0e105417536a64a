"""
Time-Bucket & Forecast Merge

Moves a session between the actual-only and actual+forecast states.
A forecast response is either merged whole or not at all.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..models.line_item import ForecastOverride, LineItem, LineItemTree, StructuralRole
from ..models.snapshot import ConfidenceBand, ForecastRequest, ForecastResponse
from ..models.time_axis import TimeAxis
from .edit_session import EditSession, EventKind
from .errors import ForecastError
from .logging_service import get_structured_logger

logger = get_structured_logger().get_logger(__name__)

REQUIRED_ROLES = (
    StructuralRole.BEGINNING_BALANCE,
    StructuralRole.INFLOW_TOTAL,
    StructuralRole.OUTFLOW_TOTAL,
    StructuralRole.NET_FLOW,
    StructuralRole.ENDING_BALANCE,
)


class AggregationKind(str, Enum):
    """How a row collapses several buckets into one coarser period."""
    SUM = "sum"
    FIRST = "first"
    LAST = "last"


# values, kind -> aggregated values
Aggregator = Callable[[List[Decimal], AggregationKind], List[Decimal]]


def aggregation_for(row: LineItem) -> AggregationKind:
    if row.role == StructuralRole.BEGINNING_BALANCE:
        return AggregationKind.FIRST
    if row.role == StructuralRole.ENDING_BALANCE:
        return AggregationKind.LAST
    return AggregationKind.SUM


def passthrough(values: List[Decimal], kind: AggregationKind) -> List[Decimal]:
    return list(values)


def aggregate_rows(tree: LineItemTree, aggregator: Optional[Aggregator] = None) -> List[List[Decimal]]:
    """Apply ``aggregator`` to every row with that row's aggregation semantics."""
    aggregator = aggregator or passthrough
    return [aggregator(list(row.values), aggregation_for(row)) for row in tree.rows]


@dataclass
class ForecastState:
    """Forecast results that live beside the tree, not inside it."""
    method: Optional[str] = None
    confidence_bands: Dict[str, ConfidenceBand] = field(default_factory=dict)
    quality_metadata: Optional[Dict[str, Any]] = None


class ForecastMerger:
    """Builds forecast requests from a session and merges the responses back."""

    @staticmethod
    def actual_count(session: EditSession) -> int:
        axis = session.axis
        return axis.actual_bucket_count if axis.has_forecast else session.tree.bucket_count

    def build_request(
        self,
        session: EditSession,
        forecast_bucket_count: int,
        method: str = "auto",
        overrides: Optional[Dict[str, ForecastOverride]] = None,
        method_params: Optional[Dict[str, Any]] = None,
    ) -> ForecastRequest:
        """
        Request payload carrying only the actual buckets of every row.

        Row-level overrides stored on the tree are included, keyed by row
        id (or label for rows without one); explicit ``overrides`` win.
        """
        if forecast_bucket_count <= 0:
            raise ForecastError("Forecast horizon must be positive", detail=str(forecast_bucket_count))

        actual = self.actual_count(session)
        rows = []
        per_row: Dict[str, ForecastOverride] = {}
        for row in session.tree.rows:
            truncated = row.model_copy(deep=True)
            truncated.values = truncated.values[:actual]
            truncated.formula = None
            truncated.forecast_override = None
            rows.append(truncated)
            if row.forecast_override is not None:
                per_row[row.id or row.label] = row.forecast_override
        per_row.update(overrides or {})

        return ForecastRequest(
            rows=rows,
            actual_bucket_count=actual,
            forecast_bucket_count=forecast_bucket_count,
            method=method,
            per_row_overrides=per_row,
            method_params=method_params or {},
        )

    @staticmethod
    def validate_response(response: ForecastResponse, request: ForecastRequest) -> LineItemTree:
        """Check a response is complete enough to merge; returns the new tree."""
        if response.error:
            raise ForecastError("Forecast service returned an error", detail=response.error)
        if not response.rows:
            raise ForecastError("Forecast response contained no rows")

        actual = response.actual_bucket_count or request.actual_bucket_count
        forecast = response.forecast_bucket_count or request.forecast_bucket_count
        expected = actual + forecast
        short = [row.label for row in response.rows if len(row.values) != expected]
        if short:
            raise ForecastError(
                "Forecast rows have the wrong number of buckets",
                detail=f"expected {expected} values for: {', '.join(short[:5])}",
            )

        try:
            tree = LineItemTree(rows=[row.model_copy(deep=True) for row in response.rows])
        except ValidationError as e:
            raise ForecastError("Forecast response is malformed", detail=str(e)) from e

        missing = [role.value for role in REQUIRED_ROLES if tree.index_of_role(role) is None]
        if missing:
            raise ForecastError("Forecast response is missing structural rows", detail=", ".join(missing))
        return tree

    def merge(self, session: EditSession, request: ForecastRequest, response: ForecastResponse) -> ForecastState:
        """Replace the session tree with the forecast; undo restores the actual-only state."""
        tree = self.validate_response(response, request)
        self._carry_overrides(session.tree, tree)
        axis = TimeAxis(
            actual_bucket_count=response.actual_bucket_count or request.actual_bucket_count,
            forecast_bucket_count=response.forecast_bucket_count or request.forecast_bucket_count,
        )
        session.replace(tree, axis, record_history=True, mark_dirty=True, kind=EventKind.FORECAST_MERGED)
        logger.info(
            "Forecast merged",
            operation="merge_forecast",
            method=request.method,
            actual_buckets=axis.actual_bucket_count,
            forecast_buckets=axis.forecast_bucket_count,
        )
        return ForecastState(
            method=request.method,
            confidence_bands=dict(response.confidence_bands),
            quality_metadata=response.quality_metadata,
        )

    @staticmethod
    def _carry_overrides(source: LineItemTree, target: LineItemTree) -> None:
        """Keep user-pinned forecast methods across regenerations, matched by id, else label."""
        by_id = {r.id: r.forecast_override for r in source.rows if r.id and r.forecast_override}
        by_label = {
            r.label: r.forecast_override for r in source.rows if not r.id and r.forecast_override
        }
        for row in target.rows:
            override = by_id.get(row.id) if row.id else by_label.get(row.label)
            if override is not None:
                row.forecast_override = override.model_copy()

    def clear(self, session: EditSession) -> bool:
        """Drop the forecast buckets and annotations; no-op when there is no forecast."""
        if not session.axis.has_forecast:
            return False

        actual = session.axis.actual_bucket_count
        tree = session.tree.snapshot()
        for row in tree.rows:
            row.values = row.values[:actual]
            row.formula = None
            row.forecast_override = None
        session.replace(
            tree,
            TimeAxis(actual_bucket_count=actual, forecast_bucket_count=0),
            record_history=True,
            mark_dirty=True,
            kind=EventKind.FORECAST_CLEARED,
        )
        logger.info("Forecast cleared", operation="clear_forecast", actual_buckets=actual)
        return True
