"""
Unit tests for EditSession: cell and label edits, structural edits,
undo/redo, the forecast lock and change notifications.
"""

from decimal import Decimal

import pytest

from cashgrid.models.line_item import ForecastOverride, Section, StructuralRole
from cashgrid.models.time_axis import TimeAxis
from cashgrid.services.edit_session import EditSession, EventKind
from cashgrid.services.model_builder import ModelBuilder
from cashgrid.services.recalc_engine import check_invariants

RENT = 7
SALES = 2
ACME = 3


class TestCellEdits:
    """Committing values into leaf cells"""

    def test_edit_recalculates(self, session):
        assert session.commit_cell_edit(RENT, 0, "1,250.5")
        tree = session.tree
        assert tree.rows[RENT].values[0] == Decimal("1250.50")
        assert tree.row_for_role(StructuralRole.OUTFLOW_TOTAL).values[0] == Decimal("1250.50")
        assert session.dirty
        assert check_invariants(tree) == []

    def test_parentheses_are_negative(self, session):
        session.commit_cell_edit(RENT, 1, "(40)")
        assert session.tree.rows[RENT].values[1] == Decimal("-40.00")

    def test_unparseable_input_becomes_zero(self, session):
        assert session.commit_cell_edit(ACME, 0, "abc")
        assert session.tree.rows[ACME].values[0] == Decimal("0.00")
        assert session.tree.rows[SALES].values[0] == Decimal("25.00")

    @pytest.mark.parametrize("raw", ["1e30", "1" * 30])
    def test_oversized_input_becomes_zero(self, session, raw):
        assert session.commit_cell_edit(RENT, 0, raw)
        assert session.tree.rows[RENT].values[0] == Decimal("0.00")
        assert check_invariants(session.tree) == []

    def test_rollup_parent_not_editable(self, session):
        assert not session.commit_cell_edit(SALES, 0, "5")
        assert not session.can_undo

    def test_derived_rows_not_editable(self, session):
        net = session.tree.index_of_role(StructuralRole.NET_FLOW)
        assert not session.commit_cell_edit(net, 0, "5")

    def test_beginning_balance_only_at_bucket_zero(self, session):
        begin = session.tree.index_of_role(StructuralRole.BEGINNING_BALANCE)
        assert session.commit_cell_edit(begin, 0, "500")
        assert not session.commit_cell_edit(begin, 1, "500")
        assert session.tree.row_for_role(StructuralRole.ENDING_BALANCE).values[0] == Decimal("550.00")

    def test_double_commit_applies_once(self, session):
        assert session.commit_cell_edit(RENT, 0, "75")
        assert not session.commit_cell_edit(RENT, 0, "75")
        assert session.undo_depth == 1

    def test_out_of_range_is_rejected(self, session):
        assert not session.commit_cell_edit(99, 0, "1")
        assert not session.commit_cell_edit(RENT, 99, "1")


class TestForecastLock:
    """Actual buckets lock while a forecast is present"""

    @pytest.fixture
    def locked_session(self):
        tree = ModelBuilder().build(None, bucket_count=17)
        return EditSession(tree, axis=TimeAxis(actual_bucket_count=13, forecast_bucket_count=4))

    def test_actual_bucket_rejected(self, locked_session):
        leaf = locked_session.tree.top_level_categories(Section.INFLOW)[0]
        assert not locked_session.commit_cell_edit(leaf, 5, "10")
        assert locked_session.tree.rows[leaf].values[5] == Decimal("0.00")

    def test_forecast_bucket_accepted(self, locked_session):
        leaf = locked_session.tree.top_level_categories(Section.INFLOW)[0]
        assert locked_session.commit_cell_edit(leaf, 13, "10")

    def test_opening_balance_always_editable(self, locked_session):
        begin = locked_session.tree.index_of_role(StructuralRole.BEGINNING_BALANCE)
        assert locked_session.can_edit_cell(begin, 0)
        assert locked_session.commit_cell_edit(begin, 0, "1000")


class TestLabels:
    def test_rename_trims(self, session):
        assert session.commit_label_edit(RENT, "  Office Rent ")
        assert session.tree.rows[RENT].label == "Office Rent"

    def test_empty_or_unchanged_is_noop(self, session):
        assert not session.commit_label_edit(RENT, "   ")
        assert not session.commit_label_edit(RENT, "Rent")
        assert not session.can_undo

    def test_structural_rows_keep_their_label(self, session):
        net = session.tree.index_of_role(StructuralRole.NET_FLOW)
        assert not session.commit_label_edit(net, "Something")


class TestStructuralEdits:
    """Adding and deleting rows"""

    def test_add_line_item_before_total(self, session):
        total_before = session.tree.index_of_role(StructuralRole.OUTFLOW_TOTAL)
        idx = session.add_line_item(Section.OUTFLOW)
        row = session.tree.rows[idx]
        assert idx == total_before
        assert session.tree.rows[idx + 1].role == StructuralRole.OUTFLOW_TOTAL
        assert row.label == "New line item"
        assert row.is_rollup_parent and not row.editable
        assert set(row.values) == {Decimal("0.00")}
        assert row.id in session.expanded_ids
        assert session.editing_label_index == idx

    def test_add_sub_item_after_children(self, session):
        parent_id = session.tree.rows[SALES].id
        idx = session.add_sub_item(parent_id, Section.INFLOW)
        assert idx == 5
        child = session.tree.rows[idx]
        assert child.parent_id == parent_id and child.editable
        assert session.tree.rows[SALES].values[0] == Decimal("100.00")

    def test_sub_item_needs_rollup_parent(self, session):
        assert session.add_sub_item(session.tree.rows[RENT].id) is None
        assert session.add_sub_item(session.tree.rows[SALES].id, Section.OUTFLOW) is None
        assert session.add_sub_item("nope") is None

    def test_new_line_item_then_child_edit(self, session):
        idx = session.add_line_item(Section.INFLOW)
        parent_id = session.tree.rows[idx].id
        child = session.add_sub_item(parent_id)
        session.commit_cell_edit(child, 2, "30")
        parent = session.tree.rows[session.tree.index_of_id(parent_id)]
        assert parent.values[2] == Decimal("30.00")
        assert session.tree.row_for_role(StructuralRole.INFLOW_TOTAL).values[2] == Decimal("130.00")

    def test_delete_parent_cascades(self, session):
        before = len(session.tree)
        assert session.delete_line_item(SALES)
        assert len(session.tree) == before - 3
        assert session.tree.row_for_role(StructuralRole.INFLOW_TOTAL).values[0] == Decimal("0.00")
        assert check_invariants(session.tree) == []

    def test_delete_child_resums_parent(self, session):
        assert session.delete_line_item(ACME)
        assert session.tree.rows[SALES].values[0] == Decimal("25.00")

    def test_fixed_rows_cannot_be_deleted(self, session):
        assert not session.delete_line_item(session.tree.index_of_role(StructuralRole.NET_FLOW))
        assert not session.delete_line_item(0)

    def test_placeholders_cannot_be_deleted(self):
        s = EditSession(ModelBuilder().build(None, bucket_count=2))
        leaf = s.tree.top_level_categories(Section.INFLOW)[0]
        assert not s.delete_line_item(leaf)

    def test_forecast_override(self, session):
        override = ForecastOverride(method="sma", params={"window": 4})
        assert session.set_forecast_override(RENT, override)
        assert session.tree.rows[RENT].forecast_override.method == "sma"
        session.undo()
        assert session.tree.rows[RENT].forecast_override is None


class TestUndoRedo:
    """History round trips"""

    def test_round_trip_restores_totals(self, session):
        session.commit_cell_edit(RENT, 1, "10")
        ending_at_10 = list(session.tree.row_for_role(StructuralRole.ENDING_BALANCE).values)
        session.commit_cell_edit(RENT, 1, "99")

        assert session.undo()
        assert session.tree.rows[RENT].values[1] == Decimal("10.00")
        assert session.tree.row_for_role(StructuralRole.ENDING_BALANCE).values == ending_at_10

        assert session.redo()
        assert session.tree.rows[RENT].values[1] == Decimal("99.00")

    def test_empty_stacks_are_silent(self, session):
        assert not session.undo()
        assert not session.redo()

    def test_new_edit_clears_redo(self, session):
        session.commit_cell_edit(RENT, 0, "1")
        session.undo()
        assert session.can_redo
        session.commit_cell_edit(RENT, 0, "2")
        assert not session.can_redo

    def test_undo_restores_deleted_rows(self, session):
        snapshot = session.tree.snapshot()
        session.delete_line_item(SALES)
        session.undo()
        assert session.tree == snapshot

    def test_undo_restores_axis(self, session):
        session.replace(
            ModelBuilder().build(None, bucket_count=6),
            TimeAxis(actual_bucket_count=4, forecast_bucket_count=2),
            record_history=True,
        )
        session.undo()
        assert session.axis.forecast_bucket_count == 0
        assert session.tree.bucket_count == 4

    def test_history_is_bounded(self, hierarchical_tree):
        s = EditSession(hierarchical_tree, undo_limit=3)
        for value in range(1, 6):
            s.commit_cell_edit(RENT, 0, str(value))
        assert s.undo_depth == 3


class TestReplaceAndClean:
    def test_replace_without_history_resets_stacks(self, session):
        session.commit_cell_edit(RENT, 0, "1")
        session.replace(ModelBuilder().build(None, bucket_count=4))
        assert not session.can_undo
        assert not session.dirty

    def test_mark_clean_respects_revision(self, session):
        session.commit_cell_edit(RENT, 0, "1")
        revision = session.revision
        session.commit_cell_edit(RENT, 0, "2")
        assert not session.mark_clean(revision)
        assert session.dirty
        assert session.mark_clean(session.revision)
        assert not session.dirty


class TestNotifications:
    """Observers and the command queue"""

    def test_events_published(self, session):
        events = []
        unsubscribe = session.subscribe(events.append)
        session.commit_cell_edit(RENT, 0, "5")
        session.undo()
        unsubscribe()
        session.redo()
        assert [e.kind for e in events] == [EventKind.CELL_EDITED, EventKind.UNDO]
        assert events[0].detail == {"row": RENT, "bucket": 0}

    def test_commands_from_listener_are_queued(self, session):
        seen = []

        def listener(event):
            seen.append((event.kind, session.tree.rows[RENT].values[0]))
            if event.kind == EventKind.CELL_EDITED and len(seen) == 1:
                assert not session.commit_cell_edit(RENT, 0, "7")
                assert session.tree.rows[RENT].values[0] == Decimal("5.00")

        session.subscribe(listener)
        session.commit_cell_edit(RENT, 0, "5")
        assert session.tree.rows[RENT].values[0] == Decimal("7.00")
        assert seen == [(EventKind.CELL_EDITED, Decimal("5.00")), (EventKind.CELL_EDITED, Decimal("7.00"))]

    def test_failed_command_clears_queue(self, session):
        def boom(event):
            raise RuntimeError("listener failed")

        unsubscribe = session.subscribe(boom)
        with pytest.raises(RuntimeError):
            session.commit_cell_edit(RENT, 0, "5")
        unsubscribe()
        assert session.commit_cell_edit(RENT, 0, "6")
