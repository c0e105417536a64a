"""
Line items and the arena-style tree that holds them.

The tree is a flat list of rows. Parent/child relations are explicit
references by id, resolved to row indices on demand; nothing points at
another row object.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator

from .base import Amount, BaseModel
from ..utils.currency_utils import ZERO


class RowKind(str, Enum):
    CATEGORY = "category"
    SECTION_HEADER = "sectionHeader"
    SECTION_TOTAL = "sectionTotal"
    RUNNING_BALANCE = "runningBalance"
    NET_FLOW = "netFlow"


class Section(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"
    STRUCTURAL = "structural"


class StructuralRole(str, Enum):
    """Identity of a fixed structural row."""
    BEGINNING_BALANCE = "beginningBalance"
    INFLOW_HEADER = "inflowHeader"
    INFLOW_TOTAL = "inflowTotal"
    OUTFLOW_HEADER = "outflowHeader"
    OUTFLOW_TOTAL = "outflowTotal"
    NET_FLOW = "netFlow"
    ENDING_BALANCE = "endingBalance"


ROLE_LABELS: Dict[StructuralRole, str] = {
    StructuralRole.BEGINNING_BALANCE: "Beginning Cash Balance",
    StructuralRole.INFLOW_HEADER: "CASH RECEIPTS",
    StructuralRole.INFLOW_TOTAL: "Total Cash Receipts",
    StructuralRole.OUTFLOW_HEADER: "CASH DISBURSEMENTS",
    StructuralRole.OUTFLOW_TOTAL: "Total Cash Disbursements",
    StructuralRole.NET_FLOW: "Net Cash Flow",
    StructuralRole.ENDING_BALANCE: "Ending Cash Balance",
}
LABEL_ROLES: Dict[str, StructuralRole] = {label: role for role, label in ROLE_LABELS.items()}

SECTION_TOTAL_ROLES: Dict[Section, StructuralRole] = {
    Section.INFLOW: StructuralRole.INFLOW_TOTAL,
    Section.OUTFLOW: StructuralRole.OUTFLOW_TOTAL,
}

# Row shapes written by earlier clients of the cash flow service.
_LEGACY_KINDS = {"total": "sectionTotal", "balance": "runningBalance", "net": "netFlow"}
_LEGACY_SECTIONS = {"calc": "structural"}


class ForecastOverride(BaseModel):
    """Per-row forecast method chosen explicitly by the user."""
    method: str
    params: Dict[str, float] = Field(default_factory=dict)


class LineItem(BaseModel):
    """One row of the cash flow grid."""

    label: str
    values: List[Amount] = Field(default_factory=list)
    kind: RowKind = Field(default=RowKind.CATEGORY, validation_alias=AliasChoices("kind", "type"))
    section: Section = Section.STRUCTURAL
    editable: bool = True
    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "customId"))
    is_rollup_parent: bool = Field(
        default=False,
        validation_alias=AliasChoices("isRollupParent", "is_rollup_parent", "isCustomParent"),
    )
    parent_id: Optional[str] = None
    role: Optional[StructuralRole] = None
    forecast_override: Optional[ForecastOverride] = None
    formula: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _legacy_kind(cls, v):
        return _LEGACY_KINDS.get(v, v) if isinstance(v, str) else v

    @field_validator("section", mode="before")
    @classmethod
    def _legacy_section(cls, v):
        return _LEGACY_SECTIONS.get(v, v) if isinstance(v, str) else v

    @model_validator(mode="after")
    def _infer_role(self) -> "LineItem":
        if self.role is None and self.id is None and self.kind != RowKind.CATEGORY:
            self.role = LABEL_ROLES.get(self.label)
            if self.role in (StructuralRole.INFLOW_HEADER, StructuralRole.OUTFLOW_HEADER):
                self.kind = RowKind.SECTION_HEADER
        return self

    @property
    def is_category(self) -> bool:
        return self.kind == RowKind.CATEGORY

    @property
    def is_removable(self) -> bool:
        """Only rows carrying a user or cluster assigned id can be deleted."""
        return self.id is not None and self.role is None

    @classmethod
    def zeros(cls, bucket_count: int, **fields) -> "LineItem":
        return cls(values=[ZERO] * bucket_count, **fields)


class LineItemTree(BaseModel):
    """Flat arena of line items in display order."""

    rows: List[LineItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_lengths(self) -> "LineItemTree":
        lengths = {len(row.values) for row in self.rows}
        if len(lengths) > 1:
            raise ValueError(f"Rows have differing bucket counts: {sorted(lengths)}")
        return self

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> LineItem:
        return self.rows[index]

    @property
    def bucket_count(self) -> int:
        return len(self.rows[0].values) if self.rows else 0

    def index_of_role(self, role: StructuralRole) -> Optional[int]:
        for i, row in enumerate(self.rows):
            if row.role == role:
                return i
        return None

    def row_for_role(self, role: StructuralRole) -> Optional[LineItem]:
        idx = self.index_of_role(role)
        return self.rows[idx] if idx is not None else None

    def index_of_id(self, row_id: str) -> Optional[int]:
        for i, row in enumerate(self.rows):
            if row.id is not None and row.id == row_id:
                return i
        return None

    def id_index(self) -> Dict[str, int]:
        return {row.id: i for i, row in enumerate(self.rows) if row.id is not None}

    def children_index(self) -> Dict[int, List[int]]:
        """Parent row index -> direct child row indices, in row order."""
        ids = self.id_index()
        children: Dict[int, List[int]] = {}
        for i, row in enumerate(self.rows):
            if row.parent_id is None:
                continue
            parent_idx = ids.get(row.parent_id)
            if parent_idx is not None:
                children.setdefault(parent_idx, []).append(i)
        return children

    def children_of(self, index: int) -> List[int]:
        return self.children_index().get(index, [])

    def descendants_of(self, index: int) -> List[int]:
        children = self.children_index()
        found: List[int] = []
        stack = list(children.get(index, []))
        while stack:
            child = stack.pop()
            found.append(child)
            stack.extend(children.get(child, []))
        return sorted(found)

    def depth_of(self, index: int) -> int:
        ids = self.id_index()
        depth = 0
        seen = {index}
        parent_id = self.rows[index].parent_id
        while parent_id is not None and parent_id in ids:
            parent_idx = ids[parent_id]
            if parent_idx in seen:
                break
            seen.add(parent_idx)
            depth += 1
            parent_id = self.rows[parent_idx].parent_id
        return depth

    def rollup_order(self) -> List[int]:
        """Rollup parent indices, deepest first, so children settle before ancestors."""
        parents = [i for i, row in enumerate(self.rows) if row.is_rollup_parent and row.id]
        return sorted(parents, key=lambda i: (-self.depth_of(i), i))

    def top_level_categories(self, section: Section) -> List[int]:
        return [
            i for i, row in enumerate(self.rows)
            if row.is_category and row.section == section and row.parent_id is None
        ]

    def snapshot(self) -> "LineItemTree":
        """Deep copy suitable for history entries."""
        return self.model_copy(deep=True)
