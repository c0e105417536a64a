"""
Pytest configuration and fixtures for the cashgrid test suite
"""

import os
import tempfile
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from cashgrid.config.settings import ApiConfig, AppConfig, DatabaseConfig, Environment, Settings
from cashgrid.models.line_item import LineItemTree, Section, StructuralRole
from cashgrid.models.snapshot import SaveResponse
from cashgrid.repositories.base import DatabaseConnection
from cashgrid.services.edit_session import EditSession
from cashgrid.services.errors import ModelNotFoundError
from cashgrid.services.model_builder import ModelBuilder
from cashgrid.services.recalc_engine import RecalcEngine


def D(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def make_tree(
    beginning: float,
    inflows: List[List[float]],
    outflows: List[List[float]],
) -> LineItemTree:
    """Placeholder-shaped tree with the given leaf series, recalculated."""
    n = len(inflows[0]) if inflows else len(outflows[0])
    tree = ModelBuilder().build(None, bucket_count=n)
    for section, series in ((Section.INFLOW, inflows), (Section.OUTFLOW, outflows)):
        leaves = tree.top_level_categories(section)
        for idx, values in zip(leaves, series):
            tree.rows[idx].values = [D(v) for v in values]
    tree.row_for_role(StructuralRole.BEGINNING_BALANCE).values[0] = D(beginning)
    return RecalcEngine().recalculate(tree)


@pytest.fixture
def test_settings():
    """Settings suitable for tests: in-memory database, no retries"""
    return Settings(
        database=DatabaseConfig(path=":memory:"),
        api=ApiConfig(base_url="http://cashflow.test/", max_retries=1, backoff_factor=0),
        app=AppConfig(environment=Environment.TESTING, log_level="WARNING"),
    )


@pytest.fixture
def tree_factory():
    return make_tree


@pytest.fixture
def builder():
    return ModelBuilder()


@pytest.fixture
def engine():
    return RecalcEngine()


@pytest.fixture
def three_bucket_tree():
    """beginning 100, one inflow [50, 50, 50], one outflow [20, 30, 10]"""
    return make_tree(100, [[50, 50, 50]], [[20, 30, 10]])


@pytest.fixture
def sample_summary() -> Dict:
    """Classification summary with one clustered inflow category and one plain outflow"""
    return {
        "metadata": {
            "hasAmounts": True,
            "bucketCount": 4,
            "bucketLabels": ["Jan 01", "Jan 08", "Jan 15", "Jan 22"],
        },
        "categorySummary": {
            "Sales": {"count": 10, "credits": 400, "perBucketCredits": [100, 100, 100, 100]},
            "Rent": {"count": 4, "debits": -200},
        },
        "clusters": {
            "c1": {
                "category": "Sales",
                "representative": "Acme Corp",
                "size": 6,
                "credits": 300,
                "perBucketCredits": [75, 75, 75, 75],
            },
            "c2": {"category": "Sales", "representative": "Globex", "size": 4, "credits": 100},
        },
    }


@pytest.fixture
def hierarchical_tree(builder, sample_summary):
    """Rows: 0 begin, 1 header, 2 Sales, 3 Acme, 4 Globex, 5 total in,
    6 header, 7 Rent, 8 total out, 9 net, 10 ending"""
    return builder.build(sample_summary)


@pytest.fixture
def session(hierarchical_tree):
    return EditSession(hierarchical_tree)


@pytest.fixture
def temp_db_path():
    """Temporary SQLite file, removed after the test"""
    temp_file = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
    temp_file.close()
    yield temp_file.name
    os.unlink(temp_file.name)


@pytest.fixture
def db_connection(temp_db_path):
    db = DatabaseConnection(temp_db_path)
    yield db
    db.close()


class FakeStore:
    """In-memory model store used by workspace tests"""

    def __init__(self, snapshot=None, error: Optional[Exception] = None):
        self.snapshot = snapshot
        self.error = error
        self.saved = []
        self.cleared = 0
        self.versions = []

    def load(self, identity):
        if self.error:
            raise self.error
        if self.snapshot is None:
            raise ModelNotFoundError()
        return self.snapshot

    def save(self, identity, request):
        self.saved.append(request)
        return SaveResponse(saved_at=f"2026-01-0{len(self.saved)}T00:00:00")

    def list_versions(self, identity):
        return list(self.versions)

    def rollback(self, identity, version_id):
        return self.load(identity)

    def clear_forecast(self, identity):
        self.cleared += 1


@pytest.fixture
def fake_store():
    return FakeStore()
