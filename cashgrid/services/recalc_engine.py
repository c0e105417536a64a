"""
Recalculation Engine

Restores every derived value of a line-item tree after a mutation:
rollup parents, section totals, net flow and the running balance chain.
Only derived cells are written; category leaves and the opening balance
at bucket 0 are never touched.
"""

from typing import Dict, List, Optional

from ..models.line_item import LineItemTree, Section, StructuralRole
from ..utils.currency_utils import ZERO
from .logging_service import get_structured_logger

logger = get_structured_logger().get_logger(__name__)


class RecalcEngine:
    """Recomputes derived rows bucket by bucket, in increasing bucket order."""

    def recalculate(self, tree: LineItemTree) -> LineItemTree:
        """
        Recalculate all derived values of ``tree`` in place.

        For each bucket t, in order:
          1. rollup parents = sum of children (deepest parents first)
          2. inflow total = sum of top-level inflow categories
          3. outflow total = sum of top-level outflow categories
          4. net = inflow total - outflow total
          5. beginning[t] = ending[t-1] for t > 0
          6. ending[t] = beginning[t] + net[t]

        Returns:
            The same tree, for chaining.
        """
        buckets = tree.bucket_count
        if buckets == 0:
            return tree

        children = tree.children_index()
        rollups = [(p, children.get(p, [])) for p in tree.rollup_order()]
        inflow_rows = tree.top_level_categories(Section.INFLOW)
        outflow_rows = tree.top_level_categories(Section.OUTFLOW)

        roles = self._role_indices(tree)
        begin_idx = roles[StructuralRole.BEGINNING_BALANCE]
        inflow_total_idx = roles[StructuralRole.INFLOW_TOTAL]
        outflow_total_idx = roles[StructuralRole.OUTFLOW_TOTAL]
        net_idx = roles[StructuralRole.NET_FLOW]
        end_idx = roles[StructuralRole.ENDING_BALANCE]
        header_rows = [
            i for i in (roles[StructuralRole.INFLOW_HEADER], roles[StructuralRole.OUTFLOW_HEADER])
            if i is not None
        ]

        rows = tree.rows
        for t in range(buckets):
            for parent_idx, child_indices in rollups:
                rows[parent_idx].values[t] = sum(
                    (rows[c].values[t] for c in child_indices), ZERO
                )

            total_in = sum((rows[i].values[t] for i in inflow_rows), ZERO)
            total_out = sum((rows[i].values[t] for i in outflow_rows), ZERO)
            if inflow_total_idx is not None:
                rows[inflow_total_idx].values[t] = total_in
            if outflow_total_idx is not None:
                rows[outflow_total_idx].values[t] = total_out

            net = total_in - total_out
            if net_idx is not None:
                rows[net_idx].values[t] = net

            for h in header_rows:
                rows[h].values[t] = ZERO

            if begin_idx is not None and end_idx is not None:
                if t > 0:
                    rows[begin_idx].values[t] = rows[end_idx].values[t - 1]
                rows[end_idx].values[t] = rows[begin_idx].values[t] + net

        logger.debug(
            "Tree recalculated",
            operation="recalculate",
            rows=len(rows),
            buckets=buckets,
            rollups=len(rollups),
        )
        return tree

    @staticmethod
    def _role_indices(tree: LineItemTree) -> Dict[StructuralRole, Optional[int]]:
        found: Dict[StructuralRole, Optional[int]] = {role: None for role in StructuralRole}
        for i, row in enumerate(tree.rows):
            if row.role is not None and found[row.role] is None:
                found[row.role] = i
        return found


_engine = RecalcEngine()


def recalculate(tree: LineItemTree) -> LineItemTree:
    """Module level shortcut for ``RecalcEngine().recalculate``."""
    return _engine.recalculate(tree)


def check_invariants(tree: LineItemTree) -> List[str]:
    """List every violated grid invariant; empty when the tree is consistent."""
    problems: List[str] = []
    children = tree.children_index()
    rows = tree.rows
    begin = tree.row_for_role(StructuralRole.BEGINNING_BALANCE)
    end = tree.row_for_role(StructuralRole.ENDING_BALANCE)
    net = tree.row_for_role(StructuralRole.NET_FLOW)
    totals = {
        Section.INFLOW: tree.row_for_role(StructuralRole.INFLOW_TOTAL),
        Section.OUTFLOW: tree.row_for_role(StructuralRole.OUTFLOW_TOTAL),
    }

    for t in range(tree.bucket_count):
        for i, row in enumerate(rows):
            if row.is_rollup_parent and row.id:
                expected = sum((rows[c].values[t] for c in children.get(i, [])), ZERO)
                if row.values[t] != expected:
                    problems.append(f"rollup '{row.label}' bucket {t}: {row.values[t]} != {expected}")
        for section, total_row in totals.items():
            if total_row is None:
                continue
            expected = sum((rows[i].values[t] for i in tree.top_level_categories(section)), ZERO)
            if total_row.values[t] != expected:
                problems.append(f"{section.value} total bucket {t}: {total_row.values[t]} != {expected}")
        if net is not None and all(totals.values()):
            expected = totals[Section.INFLOW].values[t] - totals[Section.OUTFLOW].values[t]
            if net.values[t] != expected:
                problems.append(f"net flow bucket {t}: {net.values[t]} != {expected}")
        if begin is not None and end is not None and net is not None:
            if end.values[t] != begin.values[t] + net.values[t]:
                problems.append(f"ending balance bucket {t}")
            if t > 0 and begin.values[t] != end.values[t - 1]:
                problems.append(f"beginning balance bucket {t}")
    return problems
