"""
Unit tests for CashFlowWorkspace: background operations, the
request-generation guard and notices.
"""

import threading
from decimal import Decimal
from unittest.mock import Mock

import pytest

from cashgrid.models.classification import ClassificationSummary
from cashgrid.models.line_item import Section, StructuralRole
from cashgrid.models.snapshot import ForecastResponse, ModelSnapshot, VersionInfo
from cashgrid.services.edit_session import EventKind
from cashgrid.services.error_handler import NoticeLevel
from cashgrid.services.errors import ForecastError, StoreError
from cashgrid.services.persistence import PersistenceAdapter, SessionMetadata
from cashgrid.services.workspace import CashFlowWorkspace


@pytest.fixture
def classification(sample_summary):
    source = Mock()
    source.load_classification.return_value = ClassificationSummary.model_validate(sample_summary)
    return source


@pytest.fixture
def workspace(fake_store, classification, test_settings):
    ws = CashFlowWorkspace("user-1", fake_store, classification=classification, settings=test_settings)
    yield ws
    ws.shutdown()


def saved_snapshot(session, **metadata) -> ModelSnapshot:
    adapter = PersistenceAdapter()
    request = adapter.to_save_request(session, SessionMetadata(**metadata))
    return adapter.loads(adapter.dumps(request))


def echo_forecast(identity, request):
    rows = []
    for row in request.rows:
        payload = row.to_payload()
        payload["values"] = payload["values"] + [payload["values"][-1]] * request.forecast_bucket_count
        rows.append(payload)
    return ForecastResponse.model_validate({
        "rows": rows,
        "actualBucketCount": request.actual_bucket_count,
        "forecastBucketCount": request.forecast_bucket_count,
    })


class TestInitialState:
    def test_starts_with_placeholder_grid(self, workspace, test_settings):
        assert workspace.session.tree.bucket_count == test_settings.grid.default_bucket_count
        assert len(workspace.session.tree.top_level_categories(Section.INFLOW)) == 2
        assert workspace.bucket_labels[:2] == ["Wk 1", "Wk 2"]


class TestLoad:
    """Loading saved models and falling back to classification data"""

    def test_falls_back_to_classification(self, workspace):
        workspace.request_load()
        workspace.settle(timeout=5)
        labels = [r.label for r in workspace.session.tree.rows]
        assert "Sales" in labels and "Acme Corp" in labels
        assert workspace.bucket_labels == ["Jan 01", "Jan 08", "Jan 15", "Jan 22"]
        assert not workspace.session.dirty

    def test_loads_saved_model(self, workspace, fake_store, session):
        session.commit_cell_edit(7, 0, "80")
        fake_store.snapshot = saved_snapshot(
            session, start_date="2026-01-05", min_cash_threshold=Decimal("10"), saved_at="x"
        )
        workspace.request_load()
        workspace.settle(timeout=5)
        assert workspace.session.tree.rows[7].values[0] == Decimal("80.00")
        assert workspace.metadata.start_date == "2026-01-05"
        assert workspace.metadata.min_cash_threshold == Decimal("10.00")
        assert workspace.bucket_labels[0] == "Jan 05"
        assert not workspace.session.can_undo

    def test_corrupt_saved_model_is_a_notice(self, workspace, fake_store):
        fake_store.snapshot = ModelSnapshot.model_validate(
            {"rows": [{"label": "a", "values": [1, 2]}, {"label": "b", "values": [1]}]}
        )
        before = workspace.session.tree.snapshot()
        workspace.request_load()
        workspace.settle(timeout=5)
        assert workspace.notices[-1].level == NoticeLevel.ERROR
        assert "differing bucket counts" in workspace.notices[-1].detail
        assert workspace.session.tree == before

    def test_missing_classification_gives_notice_and_placeholders(self, workspace, classification):
        classification.load_classification.return_value = None
        workspace.request_load()
        workspace.settle(timeout=5)
        assert workspace.notices[-1].level == NoticeLevel.WARNING
        assert len(workspace.session.tree.top_level_categories(Section.INFLOW)) == 2

    def test_network_failure_keeps_last_good_tree(self, workspace, classification):
        workspace.request_load()
        workspace.settle(timeout=5)
        before = workspace.session.tree.snapshot()

        classification.load_classification.side_effect = StoreError("boom", status_code=502)
        workspace.request_reload_classification()
        workspace.settle(timeout=5)
        assert workspace.session.tree == before
        assert workspace.notices[-1].level == NoticeLevel.ERROR


class TestGenerationGuard:
    """Only the most recently issued tree replacement is applied"""

    def test_stale_response_dropped(self, fake_store, test_settings, sample_summary):
        release_first = threading.Event()

        def load_classification(identity, params=None):
            if params["account"] == "A":
                release_first.wait(5)
                return ClassificationSummary.model_validate(sample_summary)
            return None

        source = Mock()
        source.load_classification.side_effect = load_classification
        ws = CashFlowWorkspace("user-1", fake_store, classification=source, settings=test_settings)
        try:
            ws.request_reload_classification({"account": "A"})
            ws.request_reload_classification({"account": "B"}).result(timeout=5)
            release_first.set()
            ws.settle(timeout=5)
            labels = [r.label for r in ws.session.tree.rows]
            assert "Sales" not in labels
        finally:
            ws.shutdown()


class TestSave:
    def test_save_marks_clean_and_refreshes_versions(self, workspace, fake_store):
        fake_store.versions = [VersionInfo(version_id="v1", created_at="t")]
        workspace.session.commit_cell_edit(2, 0, "10")
        workspace.set_min_cash_threshold("1,000")
        workspace.request_save()
        workspace.settle(timeout=5)
        assert not workspace.session.dirty
        assert workspace.metadata.saved_at == "2026-01-01T00:00:00"
        assert fake_store.saved[0].min_cash_threshold == Decimal("1000.00")
        assert [v.version_id for v in workspace.versions] == ["v1"]

    def test_edit_during_save_stays_dirty(self, workspace):
        workspace.session.commit_cell_edit(2, 0, "10")
        workspace.request_save()
        workspace.session.commit_cell_edit(2, 0, "11")
        workspace.settle(timeout=5)
        assert workspace.session.dirty

    def test_failed_save_is_a_notice(self, workspace, fake_store):
        fake_store.save = Mock(side_effect=StoreError("down", status_code=503))
        workspace.session.commit_cell_edit(2, 0, "10")
        workspace.request_save()
        workspace.settle(timeout=5)
        assert workspace.session.dirty
        assert "Failed to save" in workspace.notices[-1].message


class TestRollback:
    def test_rollback_replaces_and_cleans(self, workspace, fake_store, session):
        fake_store.snapshot = saved_snapshot(session)
        workspace.session.commit_cell_edit(2, 0, "10")
        workspace.request_rollback("v1")
        workspace.settle(timeout=5)
        assert workspace.session.tree == session.tree
        assert not workspace.session.dirty


class TestForecast:
    @pytest.fixture
    def forecaster(self):
        provider = Mock()
        provider.generate_forecast.side_effect = echo_forecast
        return provider

    @pytest.fixture
    def forecasting_workspace(self, fake_store, classification, forecaster, test_settings):
        ws = CashFlowWorkspace(
            "user-1", fake_store, forecaster=forecaster, classification=classification, settings=test_settings
        )
        ws.request_load()
        ws.settle(timeout=5)
        yield ws
        ws.shutdown()

    def test_forecast_merges(self, forecasting_workspace):
        ws = forecasting_workspace
        ws.request_forecast(3, method="sma")
        ws.settle(timeout=5)
        assert ws.session.axis.forecast_bucket_count == 3
        assert ws.bucket_labels[-3:] == ["F1", "F2", "F3"]
        assert ws.metadata.default_forecast_method == "sma"
        assert ws.session.dirty

    def test_forecast_failure_changes_nothing(self, forecasting_workspace, forecaster):
        ws = forecasting_workspace
        forecaster.generate_forecast.side_effect = ForecastError("failed", detail="not enough history")
        before = ws.session.tree.snapshot()
        ws.request_forecast(3)
        ws.settle(timeout=5)
        assert ws.session.tree == before
        assert ws.session.axis.forecast_bucket_count == 0
        assert ws.notices[-1].message == "Forecast failed: not enough history"

    def test_clear_forecast(self, forecasting_workspace, fake_store):
        ws = forecasting_workspace
        ws.request_forecast(2)
        ws.settle(timeout=5)
        ws.request_clear_forecast()
        ws.settle(timeout=5)
        assert ws.session.tree.bucket_count == 4
        assert fake_store.cleared == 1
        assert ws.forecast_state.method is None

    def test_no_forecaster_configured(self, workspace):
        assert workspace.request_forecast(3) is None
        assert workspace.notices[-1].level == NoticeLevel.ERROR


class TestDerivedViews:
    def test_metrics_and_export(self, workspace):
        workspace.request_load()
        workspace.settle(timeout=5)
        metrics = workspace.metrics()
        assert metrics.total_inflows == pytest.approx(400.0)
        text = workspace.export_csv()
        assert text.splitlines()[0] == "Category,Jan 01,Jan 08,Jan 15,Jan 22"

    def test_monthly_aggregation(self, workspace):
        workspace.request_load()
        workspace.settle(timeout=5)
        assert workspace.period_aggregator() is None
        workspace.set_start_date("2026-01-19")
        aggregator = workspace.period_aggregator("M")
        assert aggregator.labels == ["2026-01", "2026-02"]
        ending = workspace.session.tree.row_for_role(StructuralRole.ENDING_BALANCE)
        assert workspace.metrics(aggregator).min_balance == pytest.approx(float(ending.values[1]))

    def test_notices_published_as_events(self, workspace, classification):
        events = []
        workspace.session.subscribe(events.append)
        classification.load_classification.return_value = None
        workspace.request_reload_classification()
        workspace.settle(timeout=5)
        kinds = [e.kind for e in events]
        assert EventKind.NOTICE in kinds and EventKind.REPLACED in kinds
