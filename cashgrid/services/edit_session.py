"""
Edit & Structure Session

Owns the live line-item tree, its time axis, the undo/redo history and
the dirty flag. Every mutation is a command that runs to completion,
including the recalculation pass, before the next one starts; commands
submitted while another is running (e.g. from a listener) are queued.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from ..models.line_item import (
    ForecastOverride,
    LineItem,
    LineItemTree,
    RowKind,
    SECTION_TOTAL_ROLES,
    Section,
    StructuralRole,
)
from ..models.time_axis import TimeAxis
from ..utils.currency_utils import CurrencyUtils
from .logging_service import get_structured_logger
from .recalc_engine import RecalcEngine

logger = get_structured_logger().get_logger(__name__)

DEFAULT_UNDO_LIMIT = 50


class EventKind(str, Enum):
    CELL_EDITED = "cellEdited"
    LABEL_EDITED = "labelEdited"
    ROW_ADDED = "rowAdded"
    ROW_DELETED = "rowDeleted"
    OVERRIDE_CHANGED = "overrideChanged"
    UNDO = "undo"
    REDO = "redo"
    REPLACED = "replaced"
    FORECAST_MERGED = "forecastMerged"
    FORECAST_CLEARED = "forecastCleared"
    SAVED = "saved"
    NOTICE = "notice"


@dataclass(frozen=True)
class ModelEvent:
    kind: EventKind
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HistoryEntry:
    tree: LineItemTree
    axis: TimeAxis


Listener = Callable[[ModelEvent], None]


class EditSession:
    """Single-writer editing session over one line-item tree."""

    def __init__(
        self,
        tree: LineItemTree,
        axis: Optional[TimeAxis] = None,
        undo_limit: int = DEFAULT_UNDO_LIMIT,
        recalc_engine: Optional[RecalcEngine] = None,
    ):
        self.recalc_engine = recalc_engine or RecalcEngine()
        self.tree = self.recalc_engine.recalculate(tree)
        self.axis = axis or TimeAxis(actual_bucket_count=tree.bucket_count)
        self.dirty = False
        self.revision = 0
        self.expanded_ids: Set[str] = set()
        self.editing_label_index: Optional[int] = None

        self._undo: Deque[HistoryEntry] = deque(maxlen=undo_limit)
        self._redo: List[HistoryEntry] = []
        self._commands: Deque[Callable[[], bool]] = deque()
        self._processing = False
        self._listeners: List[Listener] = []

    # ---- observers -----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, kind: EventKind, **detail) -> None:
        event = ModelEvent(kind=kind, detail=detail)
        for listener in list(self._listeners):
            listener(event)

    # ---- command queue ---------------------------------------------------

    def _run(self, command: Callable[[], bool]) -> bool:
        """
        Queue ``command`` and process the queue if nobody else is.

        Returns the command's own result when it ran immediately, False
        when it was queued behind a running command.
        """
        self._commands.append(command)
        if self._processing:
            return False

        self._processing = True
        result: Optional[bool] = None
        try:
            while self._commands:
                outcome = self._commands.popleft()()
                if result is None:
                    result = outcome
        except Exception:
            self._commands.clear()
            raise
        finally:
            self._processing = False
        return bool(result)

    # ---- history ---------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    def _capture(self) -> HistoryEntry:
        return HistoryEntry(tree=self.tree.snapshot(), axis=self.axis.model_copy())

    def _push_undo(self) -> None:
        self._undo.append(self._capture())
        self._redo.clear()

    def _committed(self, kind: EventKind, **detail) -> bool:
        self.recalc_engine.recalculate(self.tree)
        self.dirty = True
        self.revision += 1
        self.publish(kind, **detail)
        return True

    def undo(self) -> bool:
        return self._run(lambda: self._step(self._undo, self._redo, EventKind.UNDO))

    def redo(self) -> bool:
        return self._run(lambda: self._step(self._redo, self._undo, EventKind.REDO))

    def _step(self, source, target, kind: EventKind) -> bool:
        if not source:
            return False
        target.append(self._capture())
        entry = source.pop()
        self.tree = entry.tree.snapshot()
        self.axis = entry.axis.model_copy()
        self.editing_label_index = None
        logger.info("History step", operation=kind.value, undo_depth=len(self._undo), redo_depth=len(self._redo))
        return self._committed(kind)

    # ---- cell edits ------------------------------------------------------

    def can_edit_cell(self, row_index: int, bucket: int) -> bool:
        """Whether a direct edit of this cell is permitted right now."""
        if not (0 <= row_index < len(self.tree.rows)) or not (0 <= bucket < self.tree.bucket_count):
            return False
        row = self.tree.rows[row_index]
        if not row.editable or row.is_rollup_parent:
            return False
        if row.role == StructuralRole.BEGINNING_BALANCE:
            if bucket != 0:
                return False
        elif row.role is not None:
            return False
        return not self.axis.is_locked(row, bucket)

    def commit_cell_edit(self, row_index: int, bucket: int, raw_text: str) -> bool:
        """
        Parse ``raw_text`` and write it to one cell.

        Unparseable input is written as 0. A commit that would not change
        the cell (including a repeated commit of the same text) is a no-op,
        so a double commit can never apply twice.
        """
        return self._run(lambda: self._commit_cell_edit(row_index, bucket, raw_text))

    def _commit_cell_edit(self, row_index: int, bucket: int, raw_text: str) -> bool:
        if not self.can_edit_cell(row_index, bucket):
            logger.warning(
                "Cell edit rejected",
                operation="commit_cell_edit",
                row=row_index,
                bucket=bucket,
                locked=self.axis.has_forecast and bucket < self.axis.actual_bucket_count,
            )
            return False

        value = CurrencyUtils.parse_cell_input(raw_text)
        row = self.tree.rows[row_index]
        if row.values[bucket] == value:
            return False

        self._push_undo()
        row.values[bucket] = value
        logger.info("Cell edited", operation="commit_cell_edit", row=row_index, bucket=bucket)
        return self._committed(EventKind.CELL_EDITED, row=row_index, bucket=bucket)

    # ---- labels ----------------------------------------------------------

    def commit_label_edit(self, row_index: int, new_label: str) -> bool:
        return self._run(lambda: self._commit_label_edit(row_index, new_label))

    def _commit_label_edit(self, row_index: int, new_label: str) -> bool:
        self.editing_label_index = None
        if not (0 <= row_index < len(self.tree.rows)):
            return False
        row = self.tree.rows[row_index]
        trimmed = (new_label or "").strip()
        if not row.is_category or not trimmed or trimmed == row.label:
            return False

        self._push_undo()
        row.label = trimmed
        logger.info("Label edited", operation="commit_label_edit", row=row_index)
        return self._committed(EventKind.LABEL_EDITED, row=row_index)

    # ---- structure -------------------------------------------------------

    def add_line_item(self, section: Section) -> Optional[int]:
        """Insert an empty rollup parent just above the section total; returns its index."""
        inserted: List[int] = []
        self._run(lambda: self._add_line_item(Section(section), inserted))
        return inserted[0] if inserted else None

    def _add_line_item(self, section: Section, inserted: List[int]) -> bool:
        total_role = SECTION_TOTAL_ROLES.get(section)
        idx = self.tree.index_of_role(total_role) if total_role else None
        if idx is None:
            logger.warning("No section total to insert before", operation="add_line_item", section=section.value)
            return False

        row_id = f"custom-{section.value}-{uuid.uuid4().hex[:12]}"
        row = LineItem.zeros(
            self.tree.bucket_count,
            label="New line item",
            kind=RowKind.CATEGORY,
            section=section,
            editable=False,
            id=row_id,
            is_rollup_parent=True,
        )
        self._push_undo()
        self.tree.rows.insert(idx, row)
        self.expanded_ids.add(row_id)
        self.editing_label_index = idx
        inserted.append(idx)
        logger.info("Line item added", operation="add_line_item", section=section.value, row_id=row_id)
        return self._committed(EventKind.ROW_ADDED, row=idx, row_id=row_id)

    def add_sub_item(self, parent_id: str, section: Optional[Section] = None) -> Optional[int]:
        """Insert an editable child right after the parent's existing children."""
        inserted: List[int] = []
        self._run(lambda: self._add_sub_item(parent_id, section, inserted))
        return inserted[0] if inserted else None

    def _add_sub_item(self, parent_id: str, section: Optional[Section], inserted: List[int]) -> bool:
        parent_idx = self.tree.index_of_id(parent_id) if parent_id else None
        if parent_idx is None:
            return False
        parent = self.tree.rows[parent_idx]
        if not parent.is_rollup_parent or (section is not None and Section(section) != parent.section):
            logger.warning("Sub-item rejected", operation="add_sub_item", parent_id=parent_id)
            return False

        insert_idx = max([parent_idx] + self.tree.descendants_of(parent_idx)) + 1
        row_id = f"child-{parent_id}-{uuid.uuid4().hex[:12]}"
        child = LineItem.zeros(
            self.tree.bucket_count,
            label="New sub-item",
            kind=RowKind.CATEGORY,
            section=parent.section,
            editable=True,
            id=row_id,
            parent_id=parent_id,
        )
        self._push_undo()
        self.tree.rows.insert(insert_idx, child)
        self.expanded_ids.add(parent_id)
        self.editing_label_index = insert_idx
        inserted.append(insert_idx)
        logger.info("Sub-item added", operation="add_sub_item", parent_id=parent_id, row_id=row_id)
        return self._committed(EventKind.ROW_ADDED, row=insert_idx, row_id=row_id)

    def delete_line_item(self, row_index: int) -> bool:
        """Delete a user or cluster row; a rollup parent takes its children with it."""
        return self._run(lambda: self._delete_line_item(row_index))

    def _delete_line_item(self, row_index: int) -> bool:
        if not (0 <= row_index < len(self.tree.rows)):
            return False
        row = self.tree.rows[row_index]
        if not row.is_removable:
            logger.warning("Row is not removable", operation="delete_line_item", row=row_index)
            return False

        doomed = set([row_index] + self.tree.descendants_of(row_index))
        self._push_undo()
        self.tree.rows = [r for i, r in enumerate(self.tree.rows) if i not in doomed]
        self.expanded_ids.discard(row.id)
        self.editing_label_index = None
        logger.info("Line item deleted", operation="delete_line_item", row_id=row.id, removed=len(doomed))
        return self._committed(EventKind.ROW_DELETED, row_id=row.id, removed=len(doomed))

    def set_forecast_override(self, row_index: int, override: Optional[ForecastOverride]) -> bool:
        """Pin (or unpin, with None) the forecast method of one category row."""
        return self._run(lambda: self._set_forecast_override(row_index, override))

    def _set_forecast_override(self, row_index: int, override: Optional[ForecastOverride]) -> bool:
        if not (0 <= row_index < len(self.tree.rows)):
            return False
        row = self.tree.rows[row_index]
        if not row.is_category or row.forecast_override == override:
            return False
        self._push_undo()
        row.forecast_override = override.model_copy() if override else None
        return self._committed(EventKind.OVERRIDE_CHANGED, row=row_index)

    # ---- wholesale replacement -------------------------------------------

    def replace(
        self,
        tree: LineItemTree,
        axis: Optional[TimeAxis] = None,
        *,
        record_history: bool = False,
        mark_dirty: bool = False,
        kind: EventKind = EventKind.REPLACED,
    ) -> bool:
        """
        Replace the whole tree, e.g. with a loaded snapshot or a forecast merge.

        With ``record_history`` the current state goes onto the undo stack;
        otherwise both history stacks are cleared.
        """
        return self._run(lambda: self._replace(tree, axis, record_history, mark_dirty, kind))

    def _replace(self, tree, axis, record_history, mark_dirty, kind) -> bool:
        if record_history:
            self._push_undo()
        else:
            self._undo.clear()
            self._redo.clear()

        self.tree = self.recalc_engine.recalculate(tree)
        self.axis = axis or TimeAxis(actual_bucket_count=tree.bucket_count)
        self.editing_label_index = None
        self.dirty = mark_dirty
        self.revision += 1
        logger.info(
            "Tree replaced",
            operation=kind.value,
            rows=len(tree.rows),
            actual_buckets=self.axis.actual_bucket_count,
            forecast_buckets=self.axis.forecast_bucket_count,
        )
        self.publish(kind, rows=len(tree.rows))
        return True

    def mark_dirty(self) -> None:
        """Flag a change to session metadata that lives outside the tree."""
        self.dirty = True
        self.revision += 1

    def mark_clean(self, revision: Optional[int] = None) -> bool:
        """Clear the dirty flag, unless the tree changed after ``revision``."""
        if revision is not None and revision != self.revision:
            return False
        self.dirty = False
        self.publish(EventKind.SAVED, revision=self.revision)
        return True
