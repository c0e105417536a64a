"""
Service layer: recalculation, model building, editing, forecasting,
persistence and the workspace that ties them together.
"""

from .errors import CashGridError, StoreError, ModelNotFoundError, ForecastError
from .error_handler import ErrorHandler, Notice, NoticeLevel, get_error_handler
from .logging_service import StructuredLogger, get_structured_logger, configure_logging
from .recalc_engine import RecalcEngine, recalculate, check_invariants
from .model_builder import ModelBuilder, BuildMode, PLACEHOLDER_LABELS
from .edit_session import EditSession, EventKind, ModelEvent, HistoryEntry
from .forecast_merge import (
    AggregationKind,
    ForecastMerger,
    ForecastState,
    aggregate_rows,
    aggregation_for,
)
from .period_aggregation import PeriodAggregator
from .export_service import ExportService, ExportedRow
from .persistence import PersistenceAdapter, SessionMetadata, ModelStore, ForecastProvider, ClassificationSource
from .cash_metrics import CashMetrics, CashMetricsCalculator, ForecastKpis
from .api_client import CashFlowApiClient, retry_with_backoff
from .workspace import CashFlowWorkspace

__all__ = [
    "CashGridError",
    "StoreError",
    "ModelNotFoundError",
    "ForecastError",
    "ErrorHandler",
    "Notice",
    "NoticeLevel",
    "get_error_handler",
    "StructuredLogger",
    "get_structured_logger",
    "configure_logging",
    "RecalcEngine",
    "recalculate",
    "check_invariants",
    "ModelBuilder",
    "BuildMode",
    "PLACEHOLDER_LABELS",
    "EditSession",
    "EventKind",
    "ModelEvent",
    "HistoryEntry",
    "AggregationKind",
    "ForecastMerger",
    "ForecastState",
    "aggregate_rows",
    "aggregation_for",
    "PeriodAggregator",
    "ExportService",
    "ExportedRow",
    "PersistenceAdapter",
    "SessionMetadata",
    "ModelStore",
    "ForecastProvider",
    "ClassificationSource",
    "CashMetrics",
    "CashMetricsCalculator",
    "ForecastKpis",
    "CashFlowApiClient",
    "retry_with_backoff",
    "CashFlowWorkspace",
]
