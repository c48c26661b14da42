"""变换执行器：把有序计划应用到快照，产生新版本快照。

流程：
1. 先整体校验计划（删除护栏 + 各操作参数前置条件），任何失败都中止整个计划；
2. 依次执行操作，累计修改计数；
3. 计算新内容指纹，版本号 +1，追加历史条目；
4. 返回新快照，输入快照保持不变。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError

from insightos.activity_log import AGENT_DATAOPS, ActivityLog, LogType
from insightos.dataops.executor import RowSet, apply_operation
from insightos.dataops.hashing import hash_rows
from insightos.exceptions import PlanValidationError, SafetyViolation
from insightos.models.dataset import ColumnSchema, DatasetSnapshot, DatasetVersion, utcnow
from insightos.models.plan import DataOpsOperation, OperationType, RowFilter, TransformationPlan

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_DESCRIPTION = "Applied transformations"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_index(value: Any) -> bool:
    return _is_int(value) and value >= 0


def _check_filter(raw: Any, columns: list[ColumnSchema], op_type: OperationType) -> None:
    try:
        row_filter = raw if isinstance(raw, RowFilter) else RowFilter.model_validate(raw)
    except ValidationError as exc:
        raise PlanValidationError(f"{op_type.value}: invalid filter ({exc.error_count()} errors)") from exc
    if columns and row_filter.column not in {c.name for c in columns}:
        raise PlanValidationError(f"{op_type.value}: unknown filter column '{row_filter.column}'")


def validate_operation(op: DataOpsOperation, columns: list[ColumnSchema]) -> None:
    """校验单个操作的结构性前置条件。"""
    params = op.params
    column_names = {c.name for c in columns}

    if op.type is OperationType.DELETE_ROWS:
        indices = params.get("indices")
        row_ids = params.get("row_ids")
        has_filter = params.get("filter") is not None
        if not indices and not row_ids and not has_filter:
            raise SafetyViolation()
        if indices is not None:
            if not isinstance(indices, list) or not all(_is_index(i) for i in indices):
                raise PlanValidationError("DELETE_ROWS: indices must be a list of non-negative integers")
        if row_ids is not None and not isinstance(row_ids, list):
            raise PlanValidationError("DELETE_ROWS: row_ids must be a list")
        if has_filter:
            _check_filter(params["filter"], columns, op.type)

    elif op.type is OperationType.FILTER_ROWS:
        if params.get("filter") is None:
            raise PlanValidationError("FILTER_ROWS: filter is required")
        _check_filter(params["filter"], columns, op.type)

    elif op.type is OperationType.ADD_ROW:
        row = params.get("row")
        if not isinstance(row, dict):
            raise PlanValidationError("ADD_ROW: row is required")
        unknown = [key for key in row if column_names and key not in column_names]
        if unknown:
            raise PlanValidationError(f"ADD_ROW: unknown columns {unknown}")

    elif op.type is OperationType.EDIT_CELL:
        col_name = params.get("col_name")
        if not col_name:
            raise PlanValidationError("EDIT_CELL: col_name is required")
        if column_names and col_name not in column_names:
            raise PlanValidationError(f"EDIT_CELL: unknown column '{col_name}'")
        if "value" not in params:
            raise PlanValidationError("EDIT_CELL: value is required")
        # 越界（含负数）行号在执行时按无操作处理，这里只校验类型
        if params.get("row_id") is None and not _is_int(params.get("row_index")):
            raise PlanValidationError("EDIT_CELL: row_index (integer) or row_id is required")


def validate_plan(plan: TransformationPlan, columns: list[ColumnSchema]) -> None:
    """整体校验计划，任一操作不合法即抛出。"""
    if not plan.operations:
        raise PlanValidationError("Transformation plan contains no operations")
    for op in plan.operations:
        validate_operation(op, columns)


def _check_targets(op: DataOpsOperation, row_set: RowSet) -> None:
    """校验删除目标在当前行集中存在（依赖前序操作的结果）。"""
    if op.type is not OperationType.DELETE_ROWS:
        return
    for index in op.params.get("indices") or []:
        if index >= len(row_set):
            raise PlanValidationError(f"DELETE_ROWS: index {index} out of range ({len(row_set)} rows)")
    for row_id in op.params.get("row_ids") or []:
        if row_set.position_of(str(row_id)) is None:
            raise PlanValidationError(f"DELETE_ROWS: unknown row id '{row_id}'")


class TransformationRunner:
    """把变换计划应用到快照。"""

    def __init__(
        self,
        activity_log: ActivityLog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._log = activity_log
        self._clock = clock

    def execute(
        self,
        snapshot: DatasetSnapshot,
        plan: TransformationPlan,
        summary: str | None = None,
    ) -> DatasetSnapshot:
        """执行计划并返回新快照；失败时抛出异常且不产生任何快照。"""
        self._record(f"Executing transformation plan: {summary or 'Multiple operations'}", "action")
        try:
            validate_plan(plan, snapshot.columns)

            row_set = RowSet(
                rows=list(snapshot.rows),
                row_ids=list(snapshot.row_ids),
                next_row_seq=snapshot.next_row_seq,
            )
            modifications = 0
            for op in plan.operations:
                _check_targets(op, row_set)
                outcome = apply_operation(row_set, snapshot.columns, op)
                row_set = outcome.row_set
                modifications += outcome.modifications
        except (SafetyViolation, PlanValidationError) as exc:
            logger.warning("变换计划被拒绝: %s", exc.detail)
            self._record(f"Transformation rejected: {exc.detail}", "error")
            raise

        if not row_set.rows and snapshot.rows:
            logger.warning("变换后数据集为空: %s (v%d)", snapshot.file_name, snapshot.version)
            self._record("Warning: Dataset is empty after transformation.", "info")

        now = self._clock()
        entry = DatasetVersion(
            version=snapshot.version,
            timestamp=now,
            change_description=summary or DEFAULT_CHANGE_DESCRIPTION,
            row_count=snapshot.row_count,
            modifications_count=modifications,
        )
        return snapshot.model_copy(
            update={
                "rows": row_set.rows,
                "row_ids": row_set.row_ids,
                "next_row_seq": row_set.next_row_seq,
                "version": snapshot.version + 1,
                "version_hash": hash_rows(row_set.rows),
                "history": [*snapshot.history, entry],
                "last_modified": now,
                "is_modified": False,
            }
        )

    def _record(self, message: str, type: LogType) -> None:
        if self._log is not None:
            self._log.add(AGENT_DATAOPS, message, type)
