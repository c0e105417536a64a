"""
Cash Flow Workspace

Owns one edit session together with the network-facing operations
around it: load, reload from classification data, save, versions,
rollback and forecasting. Network calls run on a worker pool; their
results are queued and applied by ``drain()`` on the caller's thread,
so the tree is only ever mutated from one thread.
"""

import queue
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from ..config.settings import Settings
from ..models.classification import ClassificationSummary
from ..models.line_item import ForecastOverride
from ..models.snapshot import VersionInfo
from ..utils.date_utils import DateUtils
from ..utils.currency_utils import CurrencyUtils
from .cash_metrics import CashMetrics, CashMetricsCalculator
from .edit_session import EditSession, EventKind
from .error_handler import ErrorHandler, Notice, get_error_handler
from .errors import CashGridError, ForecastError, ModelNotFoundError, StoreError
from .export_service import ExportService
from .forecast_merge import Aggregator, ForecastMerger, ForecastState
from .logging_service import get_structured_logger
from .model_builder import BuildMode, ModelBuilder
from .period_aggregation import PeriodAggregator
from .persistence import (
    ClassificationSource,
    ForecastProvider,
    ModelStore,
    PersistenceAdapter,
    SessionMetadata,
)

logger = get_structured_logger().get_logger(__name__)

MAX_NOTICES = 20


@dataclass
class _Completion:
    operation: str
    generation: Optional[int]
    apply: Callable[[Any], None]
    result: Any = None
    error: Optional[Exception] = None
    on_error: Optional[Callable[[Exception], Notice]] = None


class CashFlowWorkspace:
    """Session controller for one user's cash flow grid."""

    def __init__(
        self,
        identity: str,
        store: ModelStore,
        forecaster: Optional[ForecastProvider] = None,
        classification: Optional[ClassificationSource] = None,
        settings: Optional[Settings] = None,
        builder: Optional[ModelBuilder] = None,
        error_handler: Optional[ErrorHandler] = None,
        max_workers: int = 2,
    ):
        self.identity = identity
        self.store = store
        self.forecaster = forecaster
        self.classification = classification
        self.settings = settings or Settings()
        grid = self.settings.grid

        self.builder = builder or ModelBuilder(default_bucket_count=grid.default_bucket_count)
        self.adapter = PersistenceAdapter()
        self.merger = ForecastMerger()
        self.exporter = ExportService()
        self.error_handler = error_handler or get_error_handler()

        self.session = EditSession(self.builder.build(None), undo_limit=grid.undo_limit)
        self.metadata = SessionMetadata(
            bucket_width=grid.bucket_width,
            default_forecast_method=grid.default_forecast_method,
        )
        self.forecast_state = ForecastState()
        self.versions: List[VersionInfo] = []
        self.notices: Deque[Notice] = deque(maxlen=MAX_NOTICES)
        self._provided_labels: Optional[List[str]] = None

        self._generation = 0
        self._inbox: "queue.Queue[_Completion]" = queue.Queue()
        self._pending: Set[Future] = set()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cashgrid")

    # ---- background plumbing --------------------------------------------

    def _submit(
        self,
        operation: str,
        work: Callable[[], Any],
        apply: Callable[[Any], None],
        replaces_tree: bool = False,
        on_error: Optional[Callable[[Exception], Notice]] = None,
    ) -> Future:
        generation = None
        if replaces_tree:
            self._generation += 1
            generation = self._generation

        def task() -> None:
            try:
                result = work()
            except Exception as e:
                logger.error("Background operation failed", operation=operation, error=str(e))
                self._inbox.put(_Completion(operation, generation, apply, error=e, on_error=on_error))
            else:
                self._inbox.put(_Completion(operation, generation, apply, result=result))

        future = self._executor.submit(task)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    def drain(self) -> int:
        """Apply every completed operation; returns how many were applied."""
        applied = 0
        while True:
            try:
                completion = self._inbox.get_nowait()
            except queue.Empty:
                return applied

            if completion.generation is not None and completion.generation != self._generation:
                logger.warning(
                    "Stale response dropped",
                    operation=completion.operation,
                    generation=completion.generation,
                    latest=self._generation,
                )
                continue

            if completion.error is not None:
                handler = completion.on_error or (
                    lambda e: self.error_handler.handle_exception(e, completion.operation)
                )
                self._notify(handler(completion.error))
            else:
                try:
                    completion.apply(completion.result)
                except CashGridError as e:
                    self._notify(self.error_handler.handle_exception(e, completion.operation))
            applied += 1

    def settle(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight operations, including follow-ups they trigger, and apply them."""
        applied = 0
        while True:
            pending = list(self._pending)
            not_done = wait(pending, timeout=timeout).not_done if pending else set()
            applied += self.drain()
            if not_done or (not self._pending and self._inbox.empty()):
                return applied

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        self.session.publish(EventKind.NOTICE, notice=notice)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "CashFlowWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ---- loading -----------------------------------------------------------

    def request_load(self) -> Future:
        """Load the saved model, falling back to classification data when none exists."""

        def work():
            try:
                return "snapshot", self.store.load(self.identity)
            except ModelNotFoundError:
                logger.info("No saved model, building from classification", identity=self.identity)
            except StoreError as e:
                logger.warning("Saved model unavailable, building from classification", error=str(e))
            return "summary", self._fetch_classification()

        def apply(result):
            source, payload = result
            if source == "snapshot":
                self._apply_snapshot(payload)
            else:
                self._apply_summary(payload)

        return self._submit("load", work, apply, replaces_tree=True)

    def request_reload_classification(
        self, params: Optional[Dict[str, Any]] = None, mode: Optional[BuildMode] = None
    ) -> Future:
        """Rebuild the grid from fresh classification data, e.g. after a filter change."""
        return self._submit(
            "load_classification",
            lambda: self._fetch_classification(params),
            lambda summary: self._apply_summary(summary, mode),
            replaces_tree=True,
        )

    def _fetch_classification(self, params: Optional[Dict[str, Any]] = None) -> Optional[ClassificationSummary]:
        if self.classification is None:
            return None
        if params:
            return self.classification.load_classification(self.identity, params)
        return self.classification.load_classification(self.identity)

    def _apply_summary(self, summary: Optional[ClassificationSummary], mode: Optional[BuildMode] = None) -> None:
        if summary is None:
            self._notify(self.error_handler.handle_missing_data(
                "No classified transactions yet. Starting from an empty template.",
                operation="load_classification",
            ))
        self._provided_labels = summary.metadata.bucket_labels if summary is not None else None
        tree = self.builder.build(summary, mode=mode)
        self.session.replace(tree)
        self.forecast_state = ForecastState()

    def _apply_snapshot(self, snapshot) -> None:
        tree, axis, metadata = self.adapter.from_snapshot(snapshot)
        self.metadata = metadata
        if metadata.default_forecast_method is None:
            metadata.default_forecast_method = self.settings.grid.default_forecast_method
        self._provided_labels = None
        self.session.replace(tree, axis)
        self.forecast_state = ForecastState(method=metadata.default_forecast_method if axis.has_forecast else None)

    # ---- saving and versions ---------------------------------------------

    def request_save(self) -> Future:
        """Save whatever the tree holds right now; edits made meanwhile keep the session dirty."""
        request = self.adapter.to_save_request(self.session, self.metadata)
        revision = self.session.revision

        def apply(response):
            self.metadata.saved_at = response.saved_at
            self.session.mark_clean(revision)
            self.request_versions()

        return self._submit(
            "save",
            lambda: self.store.save(self.identity, request),
            apply,
        )

    def request_versions(self) -> Future:
        def apply(versions):
            self.versions = list(versions)

        def on_error(e: Exception) -> Notice:
            return self.error_handler.handle_exception(e, "list_versions")

        return self._submit("list_versions", lambda: self.store.list_versions(self.identity), apply, on_error=on_error)

    def request_rollback(self, version_id: str) -> Future:
        def apply(snapshot):
            self._apply_snapshot(snapshot)
            self.request_versions()

        return self._submit(
            "rollback",
            lambda: self.store.rollback(self.identity, version_id),
            apply,
            replaces_tree=True,
        )

    # ---- forecasting -------------------------------------------------------

    def request_forecast(
        self,
        horizon: int,
        method: Optional[str] = None,
        overrides: Optional[Dict[str, ForecastOverride]] = None,
        method_params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Future]:
        """Ask the forecasting service for ``horizon`` buckets beyond the actuals."""
        if self.forecaster is None:
            self._notify(self.error_handler.handle_forecast_error(
                ForecastError("No forecasting service configured")
            ))
            return None

        method = method or self.metadata.default_forecast_method or self.settings.grid.default_forecast_method
        try:
            request = self.merger.build_request(self.session, horizon, method, overrides, method_params)
        except ForecastError as e:
            self._notify(self.error_handler.handle_forecast_error(e))
            return None

        def apply(response):
            try:
                self.forecast_state = self.merger.merge(self.session, request, response)
            except ForecastError as e:
                self._notify(self.error_handler.handle_forecast_error(e))
                return
            self.metadata.default_forecast_method = method

        def on_error(e: Exception) -> Notice:
            if isinstance(e, ForecastError):
                return self.error_handler.handle_forecast_error(e)
            return self.error_handler.handle_exception(e, "generate_forecast")

        return self._submit(
            "generate_forecast",
            lambda: self.forecaster.generate_forecast(self.identity, request),
            apply,
            replaces_tree=True,
            on_error=on_error,
        )

    def request_clear_forecast(self) -> Optional[Future]:
        """Drop the forecast locally, then delete any saved forecast state."""
        if not self.merger.clear(self.session):
            return None
        self.forecast_state = ForecastState()
        return self._submit(
            "clear_forecast",
            lambda: self.store.clear_forecast(self.identity),
            lambda _: None,
        )

    # ---- derived views -------------------------------------------------------

    @property
    def bucket_labels(self) -> List[str]:
        axis = self.session.axis
        actual = axis.actual_bucket_count if axis.has_forecast else self.session.tree.bucket_count
        return DateUtils.bucket_labels(
            actual,
            axis.forecast_bucket_count,
            width=self.metadata.bucket_width,
            provided=self._provided_labels,
            start_date=DateUtils.parse_date(self.metadata.start_date),
        )

    def bucket_start_dates(self) -> Optional[List[date]]:
        start = DateUtils.parse_date(self.metadata.start_date)
        if start is None:
            return None
        return DateUtils.bucket_start_dates(start, self.session.tree.bucket_count, self.metadata.bucket_width)

    def period_aggregator(self, freq: str = "M") -> Optional[PeriodAggregator]:
        """Calendar aggregator for the current axis; None without a start date."""
        starts = self.bucket_start_dates()
        if not starts:
            return None
        return PeriodAggregator(starts, freq=freq)

    def set_min_cash_threshold(self, value: Any) -> None:
        threshold = None if value is None or value == "" else CurrencyUtils.parse_amount(str(value))
        self.metadata.min_cash_threshold = CurrencyUtils.round2(threshold) if threshold is not None else None
        self.session.mark_dirty()

    def set_start_date(self, value: Optional[str]) -> None:
        self.metadata.start_date = value
        self.session.mark_dirty()

    def metrics(self, aggregator: Optional[Aggregator] = None) -> Optional[CashMetrics]:
        threshold: Optional[Decimal] = self.metadata.min_cash_threshold
        return CashMetricsCalculator(aggregator).calculate(self.session.tree, threshold)

    def export_csv(self, aggregator: Optional[Aggregator] = None) -> str:
        labels = None if aggregator is not None else self.bucket_labels
        return self.exporter.to_csv(self.session.tree, labels=labels, aggregator=aggregator)
