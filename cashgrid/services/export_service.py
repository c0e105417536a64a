"""
Export service: flattens the line-item tree into a table.
"""

import io
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

import pandas as pd

from ..models.line_item import LineItemTree
from ..utils.currency_utils import CurrencyUtils
from .forecast_merge import Aggregator, aggregate_rows
from .logging_service import get_structured_logger

logger = get_structured_logger().get_logger(__name__)

LABEL_COLUMN = "Category"
INDENT = "  "


@dataclass(frozen=True)
class ExportedRow:
    label: str
    depth: int
    values: List[Decimal]


class ExportService:
    """Builds DataFrame and CSV exports of a grid."""

    def to_frame(
        self,
        tree: LineItemTree,
        labels: Optional[Sequence[str]] = None,
        aggregator: Optional[Aggregator] = None,
    ) -> pd.DataFrame:
        """
        One row per line item, child labels indented by depth.

        Args:
            tree: Tree to export
            labels: Column labels, one per (aggregated) bucket
            aggregator: Optional calendar aggregation applied per row

        Returns:
            DataFrame with a ``Category`` column and one float column per bucket
        """
        values = aggregate_rows(tree, aggregator)
        width = len(values[0]) if values else 0
        if labels is None:
            labels = getattr(aggregator, "labels", None) or [str(i + 1) for i in range(width)]
        if len(labels) != width:
            raise ValueError(f"Expected {width} column labels, got {len(labels)}")

        records = []
        for i, row in enumerate(tree.rows):
            record = {LABEL_COLUMN: INDENT * tree.depth_of(i) + row.label}
            record.update({label: float(v) for label, v in zip(labels, values[i])})
            records.append(record)

        return pd.DataFrame.from_records(records, columns=[LABEL_COLUMN] + list(labels))

    def to_csv(
        self,
        tree: LineItemTree,
        labels: Optional[Sequence[str]] = None,
        aggregator: Optional[Aggregator] = None,
    ) -> str:
        df = self.to_frame(tree, labels, aggregator)
        text = df.to_csv(index=False, float_format="%.2f")
        logger.info("Grid exported", operation="export_csv", rows=len(df), columns=len(df.columns) - 1)
        return text

    @staticmethod
    def read_csv(text: str) -> List[ExportedRow]:
        """Parse an exported CSV back into labelled rows."""
        df = pd.read_csv(io.StringIO(text), dtype={LABEL_COLUMN: str}, keep_default_na=False)
        if df.empty or df.columns[0] != LABEL_COLUMN:
            return []

        rows = []
        for record in df.itertuples(index=False, name=None):
            label = str(record[0])
            stripped = label.lstrip(" ")
            depth = (len(label) - len(stripped)) // len(INDENT)
            rows.append(ExportedRow(
                label=stripped,
                depth=depth,
                values=[CurrencyUtils.round2(float(v)) for v in record[1:]],
            ))
        return rows
