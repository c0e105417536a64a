"""
Date utility functions for the grid's time axis.
"""

from datetime import date, timedelta
from typing import List, Optional, Sequence
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from ..config.settings import BucketWidth


class DateUtils:
    """Utility functions for bucket dates and labels."""

    DEFAULT_LABEL_PREFIX = {
        BucketWidth.WEEKLY: "Wk",
        BucketWidth.BIWEEKLY: "Period",
        BucketWidth.MONTHLY: "Month",
    }

    @staticmethod
    def add_months(start_date: date, months: int) -> date:
        """Add months to a date, clamping to the last day of the month."""
        return start_date + relativedelta(months=months)

    @staticmethod
    def bucket_start_dates(start_date: date, count: int, width: BucketWidth) -> List[date]:
        """Start date of each bucket, beginning at ``start_date``."""
        width = BucketWidth(width)
        if width == BucketWidth.MONTHLY:
            return [DateUtils.add_months(start_date, i) for i in range(count)]
        step = timedelta(weeks=2 if width == BucketWidth.BIWEEKLY else 1)
        return [start_date + step * i for i in range(count)]

    @staticmethod
    def bucket_labels(
        actual_count: int,
        forecast_count: int = 0,
        width: BucketWidth = BucketWidth.WEEKLY,
        provided: Optional[Sequence[str]] = None,
        start_date: Optional[date] = None,
    ) -> List[str]:
        """Labels for actual buckets followed by ``F1..Fn`` for forecast buckets.

        Labels supplied by the classification metadata win, then labels
        derived from a start date, then generic numbered labels.
        """
        if provided:
            actuals = list(provided)[:actual_count]
        elif start_date is not None:
            fmt = "%b %Y" if BucketWidth(width) == BucketWidth.MONTHLY else "%b %d"
            actuals = [d.strftime(fmt) for d in DateUtils.bucket_start_dates(start_date, actual_count, width)]
        else:
            actuals = []
        prefix = DateUtils.DEFAULT_LABEL_PREFIX[BucketWidth(width)]
        actuals += [f"{prefix} {i + 1}" for i in range(len(actuals), actual_count)]
        return actuals + [f"F{i + 1}" for i in range(forecast_count)]

    @staticmethod
    def parse_date(value: Optional[str]) -> Optional[date]:
        """Parse a date string using dateutil; None for empty or invalid input."""
        if not value:
            return None
        try:
            return date_parser.parse(str(value).strip()).date()
        except (ValueError, OverflowError):
            return None
