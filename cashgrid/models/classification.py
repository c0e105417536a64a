"""
Classification summary: the aggregate of transactions grouped into
categories and clusters that the model builder consumes.

Keys are accepted in camelCase, snake_case, and the older
``weekly_*`` / ``num_periods`` / ``period_labels`` spellings.
"""
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator

from .base import BaseModel, RawAmount


def _series(*names: str):
    return Field(default=None, validation_alias=AliasChoices(*names))


class ClassificationMetadata(BaseModel):
    has_amounts: bool = False
    bucket_count: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("bucketCount", "bucket_count", "num_periods"),
    )
    bucket_labels: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("bucketLabels", "bucket_labels", "period_labels"),
    )
    first_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("firstDate", "first_date")
    )
    last_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("lastDate", "last_date")
    )


class CategorySummaryEntry(BaseModel):
    count: int = 0
    credits: Optional[RawAmount] = None
    debits: Optional[RawAmount] = None
    per_bucket_credits: Optional[List[RawAmount]] = _series(
        "perBucketCredits", "per_bucket_credits", "weekly_credits"
    )
    per_bucket_debits: Optional[List[RawAmount]] = _series(
        "perBucketDebits", "per_bucket_debits", "weekly_debits"
    )

    @field_validator("count", mode="before")
    @classmethod
    def _null_count(cls, v):
        return 0 if v is None else v


class ClusterInfo(BaseModel):
    category: Optional[str] = None
    representative: str = ""
    size: int = 0
    credits: Optional[RawAmount] = None
    debits: Optional[RawAmount] = None
    per_bucket_credits: Optional[List[RawAmount]] = _series(
        "perBucketCredits", "per_bucket_credits", "weekly_credits"
    )
    per_bucket_debits: Optional[List[RawAmount]] = _series(
        "perBucketDebits", "per_bucket_debits", "weekly_debits"
    )

    @field_validator("representative", mode="before")
    @classmethod
    def _coerce_representative(cls, v):
        return "" if v is None else str(v)

    @field_validator("size", mode="before")
    @classmethod
    def _null_size(cls, v):
        return 0 if v is None else v


class DimensionCategory(BaseModel):
    per_bucket_credits: List[RawAmount] = Field(
        default_factory=list,
        validation_alias=AliasChoices("perBucketCredits", "per_bucket_credits", "weekly_credits"),
    )
    per_bucket_debits: List[RawAmount] = Field(
        default_factory=list,
        validation_alias=AliasChoices("perBucketDebits", "per_bucket_debits", "weekly_debits"),
    )


class DimensionGroup(BaseModel):
    credits: List[RawAmount] = Field(default_factory=list)
    debits: List[RawAmount] = Field(default_factory=list)
    categories: Dict[str, DimensionCategory] = Field(default_factory=dict)


class ClassificationSummary(BaseModel):
    metadata: ClassificationMetadata = Field(default_factory=ClassificationMetadata)
    category_summary: Dict[str, CategorySummaryEntry] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("categorySummary", "category_summary"),
    )
    clusters: Dict[str, ClusterInfo] = Field(default_factory=dict)
    dimension_groups: Dict[str, DimensionGroup] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("dimensionGroups", "dimension_groups"),
    )

    @field_validator("category_summary", mode="before")
    @classmethod
    def _bare_counts(cls, v):
        # A bare number is a transaction count with no amounts.
        if not isinstance(v, dict):
            return v
        return {
            name: {"count": entry} if isinstance(entry, (int, float, Decimal)) else entry
            for name, entry in v.items()
        }

    @field_validator("clusters", "dimension_groups", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return {} if v is None else v
