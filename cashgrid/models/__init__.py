"""
Domain Models

Line items, the line-item tree, the classification summary consumed
by the model builder, and the wire contracts of the cash flow service.
"""

from .base import BaseModel, Amount, RawAmount
from .line_item import (
    RowKind,
    Section,
    StructuralRole,
    ROLE_LABELS,
    SECTION_TOTAL_ROLES,
    ForecastOverride,
    LineItem,
    LineItemTree,
)
from .classification import (
    ClassificationMetadata,
    CategorySummaryEntry,
    ClusterInfo,
    DimensionCategory,
    DimensionGroup,
    ClassificationSummary,
)
from .time_axis import TimeAxis
from .snapshot import (
    ModelSnapshot,
    SaveRequest,
    SaveResponse,
    VersionInfo,
    ForecastRequest,
    ConfidenceBand,
    ForecastResponse,
)

__all__ = [
    "BaseModel",
    "Amount",
    "RawAmount",
    "RowKind",
    "Section",
    "StructuralRole",
    "ROLE_LABELS",
    "SECTION_TOTAL_ROLES",
    "ForecastOverride",
    "LineItem",
    "LineItemTree",
    "ClassificationMetadata",
    "CategorySummaryEntry",
    "ClusterInfo",
    "DimensionCategory",
    "DimensionGroup",
    "ClassificationSummary",
    "ModelSnapshot",
    "SaveRequest",
    "SaveResponse",
    "VersionInfo",
    "ForecastRequest",
    "ConfidenceBand",
    "ForecastResponse",
    "TimeAxis",
]
