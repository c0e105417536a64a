"""
Calendar aggregation of bucket values (e.g. weekly buckets into months).
"""

from datetime import date
from decimal import Decimal
from typing import List, Sequence

import numpy as np
import pandas as pd

from ..utils.currency_utils import CurrencyUtils, ZERO
from .forecast_merge import AggregationKind


class PeriodAggregator:
    """
    Groups buckets whose start dates fall into the same pandas period.

    Instances are callable with the ``(values, kind)`` signature expected
    by the export service.
    """

    def __init__(self, bucket_starts: Sequence[date], freq: str = "M"):
        if not bucket_starts:
            raise ValueError("At least one bucket start date is required")
        periods = pd.DatetimeIndex(pd.to_datetime(list(bucket_starts))).to_period(freq)
        codes, uniques = pd.factorize(periods, sort=True)
        self.freq = freq
        self._codes = np.asarray(codes)
        self.labels: List[str] = [str(p) for p in uniques]
        self._groups = [np.flatnonzero(self._codes == g).tolist() for g in range(len(uniques))]

    @property
    def bucket_count(self) -> int:
        return len(self._codes)

    def __call__(self, values: List[Decimal], kind: AggregationKind) -> List[Decimal]:
        if len(values) != self.bucket_count:
            raise ValueError(f"Expected {self.bucket_count} values, got {len(values)}")

        result = []
        for group in self._groups:
            if kind == AggregationKind.FIRST:
                result.append(values[group[0]])
            elif kind == AggregationKind.LAST:
                result.append(values[group[-1]])
            else:
                result.append(CurrencyUtils.round2(sum((values[i] for i in group), ZERO)))
        return result
