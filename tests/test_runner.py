"""测试 TransformationRunner：版本、历史、指纹与安全护栏。"""

from __future__ import annotations

import pytest

from insightos.activity_log import AGENT_DATAOPS, ActivityLog
from insightos.dataops.hashing import hash_rows
from insightos.dataops.runner import DEFAULT_CHANGE_DESCRIPTION, TransformationRunner, validate_plan
from insightos.exceptions import PlanValidationError, SafetyViolation
from insightos.models.dataset import ColumnType
from insightos.models.plan import DataOpsOperation, OperationType, TransformationPlan
from tests.factories import FIXED_TIME, fixed_clock, make_snapshot


def _runner(log: ActivityLog | None = None) -> TransformationRunner:
    return TransformationRunner(log, clock=fixed_clock)


class TestVersioning:
    """版本号与历史条目。"""

    def test_version_increments_and_history_grows(self):
        snapshot = make_snapshot([{"x": 1}, {"x": None}])
        result = _runner().execute(snapshot, TransformationPlan.single(OperationType.CLEAN_NULLS), "Cleaned")

        assert result.version == 2
        assert len(result.history) == result.version
        entry = result.history[-1]
        assert entry.version == 1
        assert entry.row_count == 2
        assert entry.change_description == "Cleaned"
        assert entry.modifications_count == 1
        assert entry.timestamp == FIXED_TIME

    def test_history_length_tracks_version_over_many_runs(self):
        snapshot = make_snapshot([{"x": 1}, {"x": 1}, {"x": 2}])
        runner = _runner()
        for _ in range(4):
            snapshot = runner.execute(snapshot, TransformationPlan.single(OperationType.DEDUPLICATE))
        assert snapshot.version == 5
        assert len(snapshot.history) == 5
        assert [h.version for h in snapshot.history] == [1, 1, 2, 3, 4]

    def test_default_description(self):
        snapshot = make_snapshot([{"x": 1}])
        result = _runner().execute(snapshot, TransformationPlan.single(OperationType.FILL_NULLS))
        assert result.history[-1].change_description == DEFAULT_CHANGE_DESCRIPTION

    def test_input_snapshot_unchanged(self):
        snapshot = make_snapshot([{"x": 1}, {"x": 1}])
        before = snapshot.model_dump()
        _runner().execute(snapshot, TransformationPlan.single(OperationType.DEDUPLICATE))
        assert snapshot.model_dump() == before

    def test_hash_recomputed_from_rows(self):
        snapshot = make_snapshot([{"x": 1}, {"x": 1}, {"x": 1}, {"x": 2}])
        result = _runner().execute(snapshot, TransformationPlan.single(OperationType.DEDUPLICATE))
        assert result.rows == [{"x": 1}, {"x": 2}]
        assert result.version == 2
        assert result.history[-1].modifications_count == 2
        assert result.version_hash == hash_rows([{"x": 1}, {"x": 2}])

    def test_noop_keeps_hash_but_bumps_version(self):
        snapshot = make_snapshot([{"x": 1}])
        result = _runner().execute(snapshot, TransformationPlan.single(OperationType.CLEAN_NULLS))
        assert result.version == 2
        assert result.version_hash == snapshot.version_hash


class TestScenarios:
    def test_fill_nulls_alice_bob(self):
        snapshot = make_snapshot(
            [{"name": "Alice", "age": None}, {"name": "Bob", "age": 30}],
            [("name", ColumnType.STRING), ("age", ColumnType.NUMBER)],
        )
        result = _runner().execute(snapshot, TransformationPlan.single(OperationType.FILL_NULLS))
        assert result.rows == [{"name": "Alice", "age": 0}, {"name": "Bob", "age": 30}]
        assert result.history[-1].modifications_count == 1

    def test_clean_nulls_idempotent(self):
        snapshot = make_snapshot([{"a": 1, "b": ""}, {"a": 2, "b": "x"}, {"a": None, "b": "y"}])
        runner = _runner()
        plan = TransformationPlan.single(OperationType.CLEAN_NULLS)
        once = runner.execute(snapshot, plan)
        twice = runner.execute(once, plan)
        assert twice.rows == once.rows
        assert twice.version_hash == once.version_hash
        assert twice.history[-1].modifications_count == 0

    def test_operations_compose_in_order(self):
        snapshot = make_snapshot(
            [{"name": "A", "age": None}, {"name": "A", "age": 0}],
            [("name", ColumnType.STRING), ("age", ColumnType.NUMBER)],
        )
        plan = TransformationPlan(
            operations=[
                DataOpsOperation(type=OperationType.FILL_NULLS),
                DataOpsOperation(type=OperationType.DEDUPLICATE),
            ]
        )
        result = _runner().execute(snapshot, plan)
        assert result.rows == [{"name": "A", "age": 0}]
        assert result.row_ids == ["r1"]
        assert result.history[-1].modifications_count == 2

    def test_empty_result_logs_warning(self):
        log = ActivityLog(max_entries=10)
        snapshot = make_snapshot([{"x": None}])
        result = _runner(log).execute(snapshot, TransformationPlan.single(OperationType.CLEAN_NULLS))
        assert result.rows == []
        assert any("empty after transformation" in e.message for e in log.entries())


class TestGuardrails:
    """安全护栏与计划校验。"""

    @pytest.mark.parametrize("params", [{}, {"indices": []}, {"row_ids": []}])
    def test_delete_without_target_rejected(self, params):
        snapshot = make_snapshot([{"x": 1}, {"x": 2}])
        before = snapshot.version_hash
        with pytest.raises(SafetyViolation):
            _runner().execute(snapshot, TransformationPlan.single(OperationType.DELETE_ROWS, **params))
        assert snapshot.version_hash == before
        assert snapshot.version == 1

    def test_later_invalid_operation_aborts_whole_plan(self):
        """整个计划先校验：后续非法操作导致前面的操作也不执行。"""
        snapshot = make_snapshot([{"x": 1}, {"x": 1}])
        plan = TransformationPlan(
            operations=[
                DataOpsOperation(type=OperationType.DEDUPLICATE),
                DataOpsOperation(type=OperationType.DELETE_ROWS),
            ]
        )
        log = ActivityLog(max_entries=10)
        with pytest.raises(SafetyViolation):
            _runner(log).execute(snapshot, plan)
        assert snapshot.rows == [{"x": 1}, {"x": 1}]
        errors = [e for e in log.entries() if e.type == "error"]
        assert errors and errors[0].agent_id == AGENT_DATAOPS

    def test_empty_plan_rejected(self):
        with pytest.raises(PlanValidationError):
            _runner().execute(make_snapshot([{"x": 1}]), TransformationPlan())

    def test_delete_index_out_of_range_rejected(self):
        snapshot = make_snapshot([{"x": 1}])
        with pytest.raises(PlanValidationError):
            _runner().execute(snapshot, TransformationPlan.single(OperationType.DELETE_ROWS, indices=[3]))

    def test_delete_unknown_row_id_rejected(self):
        snapshot = make_snapshot([{"x": 1}])
        with pytest.raises(PlanValidationError):
            _runner().execute(snapshot, TransformationPlan.single(OperationType.DELETE_ROWS, row_ids=["r99"]))

    def test_edit_cell_unknown_column_rejected(self):
        snapshot = make_snapshot([{"x": 1}])
        plan = TransformationPlan.single(OperationType.EDIT_CELL, row_index=0, col_name="nope", value=1)
        with pytest.raises(PlanValidationError):
            validate_plan(plan, snapshot.columns)

    def test_filter_unknown_column_rejected(self):
        snapshot = make_snapshot([{"x": 1}])
        plan = TransformationPlan.single(OperationType.FILTER_ROWS, filter={"column": "y", "value": 1})
        with pytest.raises(PlanValidationError):
            validate_plan(plan, snapshot.columns)

    @pytest.mark.parametrize("row_index", [9, -1])
    def test_edit_cell_out_of_range_bumps_version(self, row_index):
        """越界编辑（含负数行号）容忍为空操作，但仍产生新版本。"""
        snapshot = make_snapshot([{"x": 1}])
        plan = TransformationPlan.single(OperationType.EDIT_CELL, row_index=row_index, col_name="x", value=2)
        result = _runner().execute(snapshot, plan)
        assert result.rows == [{"x": 1}]
        assert result.version == 2
        assert result.history[-1].modifications_count == 0

    @pytest.mark.parametrize("row_index", [None, "0", 1.5, True])
    def test_edit_cell_non_integer_index_rejected(self, row_index):
        snapshot = make_snapshot([{"x": 1}])
        plan = TransformationPlan.single(OperationType.EDIT_CELL, row_index=row_index, col_name="x", value=2)
        with pytest.raises(PlanValidationError):
            validate_plan(plan, snapshot.columns)
