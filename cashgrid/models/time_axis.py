"""
Time axis of the grid: actual buckets followed by forecast buckets.
"""
from .base import BaseModel
from .line_item import LineItem, StructuralRole


class TimeAxis(BaseModel):
    actual_bucket_count: int = 0
    forecast_bucket_count: int = 0

    @property
    def total(self) -> int:
        return self.actual_bucket_count + self.forecast_bucket_count

    @property
    def has_forecast(self) -> bool:
        return self.forecast_bucket_count > 0

    def is_forecast_bucket(self, bucket: int) -> bool:
        return self.has_forecast and bucket >= self.actual_bucket_count

    def is_locked(self, row: LineItem, bucket: int) -> bool:
        """Actual buckets lock once a forecast exists, except the opening balance."""
        if not self.has_forecast or bucket >= self.actual_bucket_count:
            return False
        return not (row.role == StructuralRole.BEGINNING_BALANCE and bucket == 0)
