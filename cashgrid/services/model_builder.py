"""
Model Builder

Turns a classification summary into a well-formed line-item tree.
Loosely typed input is resolved once, here, into ``CategoryDraft`` /
``ChildDraft`` records; nothing downstream inspects optional input
fields to decide what kind of row it is looking at.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ..models.classification import ClassificationSummary, ClusterInfo, DimensionGroup
from ..models.line_item import (
    ROLE_LABELS,
    LineItem,
    LineItemTree,
    RowKind,
    Section,
    StructuralRole,
)
from ..utils.currency_utils import ZERO, CurrencyUtils
from .logging_service import get_structured_logger
from .recalc_engine import RecalcEngine

logger = get_structured_logger().get_logger(__name__)

DEFAULT_BUCKET_COUNT = 13

PLACEHOLDER_LABELS: Dict[Section, Tuple[str, ...]] = {
    Section.INFLOW: ("Revenue / Customer Receipts", "Other Income"),
    Section.OUTFLOW: (
        "Payroll & Benefits",
        "Rent & Lease Payments",
        "Vendor / Supplier Payments",
        "Other Operating Expense",
    ),
}

_TRAILING_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*$")


class BuildMode(str, Enum):
    FLAT = "flat"
    DIMENSION = "dimension"


@dataclass(frozen=True)
class ChildDraft:
    key: str
    label: str
    values: Tuple[Decimal, ...]


@dataclass(frozen=True)
class CategoryDraft:
    """A top-level category row; a rollup parent when it has children."""

    label: str
    section: Section
    values: Tuple[Decimal, ...]
    key: Optional[str] = None
    children: Tuple[ChildDraft, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return sum(self.values, ZERO)


@dataclass
class _SectionAmounts:
    credits: Decimal = ZERO
    debits: Decimal = ZERO


def base_category_name(name: str) -> str:
    """Category name without a trailing parenthetical, e.g. ``Payroll (ADP)`` -> ``Payroll``."""
    return _TRAILING_PARENTHETICAL.sub("", name).strip()


class ModelBuilder:
    """Builds the initial grid from classification data."""

    def __init__(self, default_bucket_count: int = DEFAULT_BUCKET_COUNT, recalc_engine: Optional[RecalcEngine] = None):
        self.default_bucket_count = default_bucket_count
        self.recalc_engine = recalc_engine or RecalcEngine()

    def build(
        self,
        summary: Union[ClassificationSummary, Mapping[str, Any], None],
        bucket_count: Optional[int] = None,
        mode: Optional[BuildMode] = None,
    ) -> LineItemTree:
        """
        Build a recalculated line-item tree.

        Args:
            summary: Classification summary, its raw dict form, or None
            bucket_count: Number of buckets N; defaults to the summary's
                metadata, then to the configured default
            mode: Flat categories or dimension groups. When omitted,
                dimension mode is used if the summary carries dimension groups.

        Returns:
            A tree satisfying all grid invariants. Malformed input yields
            the empty placeholder shape instead of an error.
        """
        parsed = self._coerce(summary)
        n = self._bucket_count(parsed, bucket_count)

        if mode is None:
            mode = BuildMode.DIMENSION if parsed and parsed.dimension_groups else BuildMode.FLAT

        if parsed is None:
            inflow, outflow = [], []
        elif mode == BuildMode.DIMENSION:
            inflow = self._dimension_drafts(parsed.dimension_groups, Section.INFLOW, n)
            outflow = self._dimension_drafts(parsed.dimension_groups, Section.OUTFLOW, n)
        else:
            inflow, outflow = self._category_drafts(parsed, n)

        if not inflow:
            inflow = self._placeholders(Section.INFLOW, n)
        if not outflow:
            outflow = self._placeholders(Section.OUTFLOW, n)

        tree = self._emit(inflow, outflow, n)
        self.recalc_engine.recalculate(tree)

        logger.info(
            "Model built",
            operation="build_model",
            mode=mode.value,
            buckets=n,
            inflow_categories=len(inflow),
            outflow_categories=len(outflow),
        )
        return tree

    # ---- input coercion -------------------------------------------------

    def _coerce(self, summary) -> Optional[ClassificationSummary]:
        if summary is None or isinstance(summary, ClassificationSummary):
            return summary
        try:
            return ClassificationSummary.model_validate(summary)
        except ValidationError as e:
            logger.warning(
                "Malformed classification summary, using placeholders",
                operation="build_model",
                error_count=e.error_count(),
            )
            return None

    def _bucket_count(self, summary: Optional[ClassificationSummary], requested: Optional[int]) -> int:
        if requested and requested > 0:
            return requested
        if summary is not None:
            meta = summary.metadata
            if meta.bucket_count and meta.bucket_count > 0:
                return meta.bucket_count
            if meta.bucket_labels:
                return len(meta.bucket_labels)
        return self.default_bucket_count

    # ---- flat category mode ---------------------------------------------

    def _category_drafts(self, summary: ClassificationSummary, n: int) -> Tuple[List[CategoryDraft], List[CategoryDraft]]:
        cluster_totals: Dict[str, _SectionAmounts] = {}
        clusters_by_cat: Dict[str, List[Tuple[str, ClusterInfo]]] = {}
        for cluster_id, cluster in summary.clusters.items():
            if not cluster.category:
                continue
            totals = cluster_totals.setdefault(cluster.category, _SectionAmounts())
            totals.credits += cluster.credits or ZERO
            totals.debits += abs(cluster.debits or ZERO)
            clusters_by_cat.setdefault(cluster.category, []).append((cluster_id, cluster))
        for members in clusters_by_cat.values():
            members.sort(key=lambda item: item[1].size, reverse=True)

        def lookup(table: Dict[str, Any], name: str):
            return table.get(name, table.get(base_category_name(name)))

        inflow: List[CategoryDraft] = []
        outflow: List[CategoryDraft] = []
        if not summary.metadata.has_amounts:
            return inflow, outflow

        for name, entry in summary.category_summary.items():
            totals = lookup(cluster_totals, name)
            credits = totals.credits if totals else (entry.credits or ZERO)
            debits = totals.debits if totals else abs(entry.debits or ZERO)
            members = lookup(clusters_by_cat, name) or []

            if credits > 0:
                inflow.append(self._flat_draft(
                    name, Section.INFLOW, credits, entry.per_bucket_credits,
                    [(cid, c) for cid, c in members if (c.credits or ZERO) > 0], n,
                ))
            if debits > 0:
                outflow.append(self._flat_draft(
                    name, Section.OUTFLOW, debits, entry.per_bucket_debits,
                    [(cid, c) for cid, c in members if abs(c.debits or ZERO) > 0], n,
                ))

        inflow.sort(key=lambda draft: draft.total, reverse=True)
        outflow.sort(key=lambda draft: draft.total, reverse=True)
        return inflow, outflow

    def _flat_draft(
        self,
        name: str,
        section: Section,
        total: Decimal,
        series: Optional[Sequence[Decimal]],
        members: List[Tuple[str, ClusterInfo]],
        n: int,
    ) -> CategoryDraft:
        key = f"api-{section.value}-{name}"
        values = self.distribute(total, series, n)
        parent_total = sum(values, ZERO)

        children = []
        for cluster_id, cluster in members:
            if section == Section.INFLOW:
                own_series, amount = cluster.per_bucket_credits, cluster.credits or ZERO
            else:
                own_series, amount = cluster.per_bucket_debits, abs(cluster.debits or ZERO)
            children.append(ChildDraft(
                key=f"{key}-cl-{cluster_id}",
                label=cluster.representative,
                values=self._child_values(values, parent_total, amount, own_series, n),
            ))
        return CategoryDraft(label=name, section=section, values=values, key=key, children=tuple(children))

    @staticmethod
    def _child_values(
        parent_values: Sequence[Decimal],
        parent_total: Decimal,
        amount: Decimal,
        own_series: Optional[Sequence[Decimal]],
        n: int,
    ) -> Tuple[Decimal, ...]:
        if own_series and len(own_series) == n and any(v > 0 for v in own_series):
            return tuple(CurrencyUtils.round2(abs(v)) for v in own_series)
        fraction = amount / parent_total if parent_total > 0 else ZERO
        return tuple(CurrencyUtils.round2(pv * fraction) for pv in parent_values)

    @staticmethod
    def distribute(total: Decimal, series: Optional[Sequence[Decimal]], n: int) -> Tuple[Decimal, ...]:
        """
        Spread ``total`` over ``n`` buckets.

        A per-bucket series of length ``n`` with a positive sum is scaled to
        the total, keeping its shape; rounding drift goes to the largest
        bucket so the values add up to the total exactly. Without usable
        series the total is spread evenly, rounded to cents.
        """
        if series and len(series) == n:
            magnitudes = [abs(v) for v in series]
            series_sum = sum(magnitudes, ZERO)
            if series_sum > 0:
                target = CurrencyUtils.round2(total)
                scale = total / series_sum
                values = [CurrencyUtils.round2(v * scale) for v in magnitudes]
                drift = target - sum(values, ZERO)
                if drift:
                    largest = max(range(n), key=lambda i: values[i])
                    values[largest] += drift
                return tuple(values)
        per_bucket = CurrencyUtils.round2(total / n)
        return tuple([per_bucket] * n)

    # ---- dimension mode --------------------------------------------------

    def _dimension_drafts(self, groups: Dict[str, DimensionGroup], section: Section, n: int) -> List[CategoryDraft]:
        drafts: List[CategoryDraft] = []
        for dim_value, group in groups.items():
            parent_series = group.credits if section == Section.INFLOW else group.debits
            parent_values = self._fit(parent_series, n)
            if sum(parent_values, ZERO) <= 0:
                continue

            key = f"dim-{section.value}-{dim_value}"
            cats = []
            for cat_name, cat in group.categories.items():
                series = cat.per_bucket_credits if section == Section.INFLOW else cat.per_bucket_debits
                cat_values = self._fit(series, n)
                if sum(cat_values, ZERO) > 0:
                    cats.append(ChildDraft(key=f"{key}-cat-{cat_name}", label=cat_name, values=cat_values))
            cats.sort(key=lambda c: sum(c.values, ZERO), reverse=True)

            drafts.append(CategoryDraft(
                label=dim_value, section=section, values=parent_values, key=key, children=tuple(cats),
            ))
        drafts.sort(key=lambda draft: draft.total, reverse=True)
        return drafts

    @staticmethod
    def _fit(series: Sequence[Decimal], n: int) -> Tuple[Decimal, ...]:
        """Round a series to cents and pad or truncate it to ``n`` buckets."""
        values = [CurrencyUtils.round2(abs(v)) for v in list(series)[:n]]
        return tuple(values + [ZERO] * (n - len(values)))

    # ---- output ----------------------------------------------------------

    @staticmethod
    def _placeholders(section: Section, n: int) -> List[CategoryDraft]:
        return [
            CategoryDraft(label=label, section=section, values=tuple([ZERO] * n))
            for label in PLACEHOLDER_LABELS[section]
        ]

    def _emit(self, inflow: List[CategoryDraft], outflow: List[CategoryDraft], n: int) -> LineItemTree:
        rows: List[LineItem] = [
            self._structural(StructuralRole.BEGINNING_BALANCE, RowKind.RUNNING_BALANCE, Section.STRUCTURAL, n, editable=True)
        ]
        for section, drafts, header, total in (
            (Section.INFLOW, inflow, StructuralRole.INFLOW_HEADER, StructuralRole.INFLOW_TOTAL),
            (Section.OUTFLOW, outflow, StructuralRole.OUTFLOW_HEADER, StructuralRole.OUTFLOW_TOTAL),
        ):
            rows.append(self._structural(header, RowKind.SECTION_HEADER, section, n))
            for draft in drafts:
                rows.extend(self._category_rows(draft))
            rows.append(self._structural(total, RowKind.SECTION_TOTAL, section, n))
        rows.append(self._structural(StructuralRole.NET_FLOW, RowKind.NET_FLOW, Section.STRUCTURAL, n))
        rows.append(self._structural(StructuralRole.ENDING_BALANCE, RowKind.RUNNING_BALANCE, Section.STRUCTURAL, n))
        return LineItemTree(rows=rows)

    @staticmethod
    def _structural(role: StructuralRole, kind: RowKind, section: Section, n: int, editable: bool = False) -> LineItem:
        return LineItem.zeros(n, label=ROLE_LABELS[role], kind=kind, section=section, editable=editable, role=role)

    @staticmethod
    def _category_rows(draft: CategoryDraft) -> List[LineItem]:
        has_children = bool(draft.children)
        rows = [LineItem(
            label=draft.label,
            values=list(draft.values),
            kind=RowKind.CATEGORY,
            section=draft.section,
            editable=not has_children,
            id=draft.key,
            is_rollup_parent=has_children,
        )]
        for child in draft.children:
            rows.append(LineItem(
                label=child.label,
                values=list(child.values),
                kind=RowKind.CATEGORY,
                section=draft.section,
                editable=True,
                id=child.key,
                parent_id=draft.key,
            ))
        return rows
