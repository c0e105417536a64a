"""
Wire contracts for the external cash flow service: load/save payloads,
version listings and forecast generation.
"""
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field

from .base import Amount, BaseModel
from .line_item import ForecastOverride, LineItem
from ..config.settings import BucketWidth


class ModelSnapshot(BaseModel):
    """Load response: a persisted grid plus its session metadata."""

    rows: List[LineItem] = Field(default_factory=list)
    start_date: Optional[str] = None
    bucket_width: BucketWidth = Field(
        default=BucketWidth.WEEKLY,
        validation_alias=AliasChoices("bucketWidth", "bucket_width", "timeFrame"),
    )
    min_cash_threshold: Optional[Amount] = None
    actual_bucket_count: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("actualBucketCount", "actual_bucket_count", "actualPeriodCount"),
    )
    forecast_bucket_count: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("forecastBucketCount", "forecast_bucket_count", "forecastPeriodCount"),
    )
    default_forecast_method: Optional[str] = None
    saved_at: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("savedAt", "saved_at")
    )


class SaveRequest(BaseModel):
    rows: List[LineItem]
    start_date: Optional[str] = None
    bucket_width: BucketWidth = BucketWidth.WEEKLY
    min_cash_threshold: Optional[Amount] = None
    total_buckets: int
    actual_bucket_count: int
    forecast_bucket_count: int = 0
    default_forecast_method: Optional[str] = None


class SaveResponse(BaseModel):
    saved_at: str = Field(validation_alias=AliasChoices("savedAt", "saved_at"))


class VersionInfo(BaseModel):
    version_id: str = Field(validation_alias=AliasChoices("versionId", "version_id"))
    created_at: str = Field(validation_alias=AliasChoices("createdAt", "created_at"))
    label: str = ""
    row_count: int = Field(
        default=0, validation_alias=AliasChoices("rowCount", "row_count", "rows_count")
    )


class ForecastRequest(BaseModel):
    rows: List[LineItem]
    actual_bucket_count: int
    forecast_bucket_count: int
    method: str
    per_row_overrides: Dict[str, ForecastOverride] = Field(default_factory=dict)
    method_params: Dict[str, Any] = Field(default_factory=dict)


class ConfidenceBand(BaseModel):
    lower: List[float] = Field(default_factory=list)
    upper: List[float] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    percentiles: Optional[Dict[str, List[float]]] = None


class ForecastResponse(BaseModel):
    rows: List[LineItem] = Field(default_factory=list)
    actual_bucket_count: int = Field(
        default=0, validation_alias=AliasChoices("actualBucketCount", "actual_bucket_count", "actual_periods")
    )
    forecast_bucket_count: int = Field(
        default=0, validation_alias=AliasChoices("forecastBucketCount", "forecast_bucket_count", "forecast_periods")
    )
    confidence_bands: Dict[str, ConfidenceBand] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("confidenceBands", "confidence_bands"),
    )
    quality_metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("qualityMetadata", "quality_metadata", "forecast_metadata"),
    )
    error: Optional[str] = None
