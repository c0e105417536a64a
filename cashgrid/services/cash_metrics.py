"""
Cash metrics over a recalculated grid: balances, burn, runway and trend.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import numpy as np

from ..models.line_item import LineItemTree, StructuralRole
from ..models.time_axis import TimeAxis
from .forecast_merge import AggregationKind, Aggregator, passthrough


@dataclass
class CashMetrics:
    total_inflows: float
    total_outflows: float
    average_net_flow: float
    starting_cash: float
    min_balance: float
    min_balance_bucket: int
    max_balance: float
    max_balance_bucket: int
    buckets_positive: int
    volatility: float
    runway_buckets: Optional[int]
    cash_efficiency: float
    trend_improving: bool
    below_threshold: bool
    first_breach_bucket: Optional[int]


@dataclass
class ForecastKpis:
    projected_end_balance: float
    average_forecast_net_flow: float
    min_projected_balance: float
    runway_buckets: int


class CashMetricsCalculator:
    """Derives headline metrics from the structural rows of a tree."""

    def __init__(self, aggregator: Optional[Aggregator] = None):
        self.aggregator = aggregator or passthrough

    def _series(self, tree: LineItemTree, role: StructuralRole, kind: AggregationKind) -> np.ndarray:
        row = tree.row_for_role(role)
        values: List[Decimal] = list(row.values) if row is not None else [Decimal(0)] * tree.bucket_count
        return np.array([float(v) for v in self.aggregator(values, kind)], dtype=float)

    def calculate(self, tree: LineItemTree, min_cash_threshold: Optional[Decimal] = None) -> Optional[CashMetrics]:
        """Metrics for the whole horizon; None when the tree has no balance rows or buckets."""
        if tree.bucket_count == 0 or tree.row_for_role(StructuralRole.ENDING_BALANCE) is None:
            return None

        ending = self._series(tree, StructuralRole.ENDING_BALANCE, AggregationKind.LAST)
        beginning = self._series(tree, StructuralRole.BEGINNING_BALANCE, AggregationKind.FIRST)
        net = self._series(tree, StructuralRole.NET_FLOW, AggregationKind.SUM)
        inflows = self._series(tree, StructuralRole.INFLOW_TOTAL, AggregationKind.SUM)
        outflows = self._series(tree, StructuralRole.OUTFLOW_TOTAL, AggregationKind.SUM)

        avg_net = float(net.mean())
        starting_cash = float(beginning[0])
        avg_burn = -avg_net if avg_net < 0 else 0.0
        runway = int(np.floor(starting_cash / avg_burn)) if avg_burn > 0 else None

        total_in = float(inflows.sum())
        total_out = float(outflows.sum())
        gross = total_in + total_out
        efficiency = (total_in - total_out) / gross * 100 if gross > 0 else 0.0

        below = False
        first_breach = None
        if min_cash_threshold is not None:
            breaches = np.flatnonzero(ending < float(min_cash_threshold))
            below = breaches.size > 0
            first_breach = int(breaches[0]) if below else None

        return CashMetrics(
            total_inflows=total_in,
            total_outflows=total_out,
            average_net_flow=avg_net,
            starting_cash=starting_cash,
            min_balance=float(ending.min()),
            min_balance_bucket=int(ending.argmin()),
            max_balance=float(ending.max()),
            max_balance_bucket=int(ending.argmax()),
            buckets_positive=int((ending > 0).sum()),
            volatility=float(net.std()),
            runway_buckets=runway,
            cash_efficiency=efficiency,
            trend_improving=self.trend_improving(ending),
            below_threshold=below,
            first_breach_bucket=first_breach,
        )

    @staticmethod
    def trend_improving(ending: np.ndarray) -> bool:
        """Least-squares slope of the balance must exceed 1% of its mean magnitude per bucket."""
        n = len(ending)
        if n < 2:
            return False
        x = np.arange(n, dtype=float)
        slope = float(np.polyfit(x, ending, 1)[0])
        if ending[-1] < 0 and slope <= 0:
            return False
        scale = max(abs(float(ending.mean())), 1.0)
        return slope / scale > 0.01

    @staticmethod
    def forecast_kpis(tree: LineItemTree, axis: TimeAxis) -> Optional[ForecastKpis]:
        """Headline numbers over the forecast buckets only."""
        ending_row = tree.row_for_role(StructuralRole.ENDING_BALANCE)
        net_row = tree.row_for_role(StructuralRole.NET_FLOW)
        if not axis.has_forecast or ending_row is None or net_row is None:
            return None

        start, stop = axis.actual_bucket_count, axis.total
        ending = np.array([float(v) for v in ending_row.values[start:stop]], dtype=float)
        net = np.array([float(v) for v in net_row.values[start:stop]], dtype=float)
        negative = np.flatnonzero(ending < 0)
        return ForecastKpis(
            projected_end_balance=float(ending[-1]),
            average_forecast_net_flow=float(net.mean()),
            min_projected_balance=float(ending.min()),
            runway_buckets=int(negative[0]) if negative.size else axis.forecast_bucket_count,
        )
