"""
Base models and shared field types for Pydantic v2.
"""
from decimal import Decimal
from typing import Annotated

from pydantic import (
    BaseModel as PydanticBaseModel,
    BeforeValidator,
    ConfigDict,
    PlainSerializer,
)
from pydantic.alias_generators import to_camel

from ..utils.currency_utils import CurrencyUtils


class BaseModel(PydanticBaseModel):
    """Base model with common configuration.

    Fields are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=False,
        extra="ignore",
    )

    def to_payload(self) -> dict:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# A monetary amount: Decimal rounded half-up to cents, a JSON number on the wire.
Amount = Annotated[
    Decimal,
    BeforeValidator(CurrencyUtils.round2),
    PlainSerializer(float, return_type=float, when_used="json"),
]

# An unrounded decimal figure as produced by upstream aggregation.
RawAmount = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]
