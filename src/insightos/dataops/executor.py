"""操作执行器：把单个类型化操作应用到行集。

每个处理函数接收行集与列定义，返回新的行集和修改计数，
从不修改输入。参数的合法性由 Runner 在执行前校验，这里假定输入已校验。
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable

import pandas as pd

from insightos.dataops.cells import CellKind, classify_cell, coerce_scalar, is_missing
from insightos.dataops.hashing import serialize_row
from insightos.models.dataset import ColumnSchema, ColumnType
from insightos.models.plan import DataOpsOperation, OperationType

logger = logging.getLogger(__name__)

FILL_TEXT = "Unknown"


@dataclass
class RowSet:
    """行集：行与平行的稳定行标识。"""

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_ids: list[str] = field(default_factory=list)
    next_row_seq: int = 1

    def __len__(self) -> int:
        return len(self.rows)

    def position_of(self, row_id: str) -> int | None:
        try:
            return self.row_ids.index(row_id)
        except ValueError:
            return None


@dataclass
class OperationOutcome:
    """单个操作的执行结果。"""

    row_set: RowSet
    modifications: int = 0


def make_row_id(seq: int) -> str:
    return f"r{seq}"


def _keep(row_set: RowSet, keep: list[bool]) -> RowSet:
    rows = [row for row, flag in zip(row_set.rows, keep) if flag]
    row_ids = [rid for rid, flag in zip(row_set.row_ids, keep) if flag]
    return RowSet(rows=rows, row_ids=row_ids, next_row_seq=row_set.next_row_seq)


# ---- 日期规范化 ----


def is_date_column(column: ColumnSchema) -> bool:
    return column.type is ColumnType.DATE or "date" in column.name.lower()


def normalize_date_value(value: Any) -> str | None:
    """把可解析的日期值规范为 ``YYYY-MM-DD``，无法解析时返回 None。

    字符串交给 pandas 解析，数值按毫秒时间戳处理；带时区的值先转换到 UTC。
    """
    kind = classify_cell(value)
    if kind is CellKind.MISSING or kind is CellKind.BOOLEAN:
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        if kind is CellKind.NUMBER:
            if value == 0:
                return None
            ts = pd.to_datetime(value, unit="ms", errors="coerce", utc=True)
        else:
            ts = pd.to_datetime(str(value).strip(), errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    return ts.strftime("%Y-%m-%d")


# ---- 处理函数 ----


def _clean_nulls(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    keep = [all(not is_missing(v) for v in row.values()) for row in row_set.rows]
    result = _keep(row_set, keep)
    return OperationOutcome(result, len(row_set) - len(result))


def _fill_nulls(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    filled = 0
    rows: list[dict[str, Any]] = []
    for row in row_set.rows:
        new_row = dict(row)
        for col in columns:
            if is_missing(new_row.get(col.name)):
                new_row[col.name] = 0 if col.type is ColumnType.NUMBER else FILL_TEXT
                filled += 1
        rows.append(new_row)
    return OperationOutcome(
        RowSet(rows=rows, row_ids=list(row_set.row_ids), next_row_seq=row_set.next_row_seq),
        filled,
    )


def _deduplicate(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    seen: set[str] = set()
    keep: list[bool] = []
    for row in row_set.rows:
        signature = serialize_row(row)
        keep.append(signature not in seen)
        seen.add(signature)
    result = _keep(row_set, keep)
    return OperationOutcome(result, len(row_set) - len(result))


def _normalize_dates(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    date_cols = [col.name for col in columns if is_date_column(col)]
    if not date_cols:
        return OperationOutcome(row_set, 0)

    changed = 0
    rows: list[dict[str, Any]] = []
    for row in row_set.rows:
        new_row = dict(row)
        for name in date_cols:
            value = new_row.get(name)
            canonical = normalize_date_value(value)
            if canonical is not None and canonical != value:
                new_row[name] = canonical
                changed += 1
        rows.append(new_row)
    return OperationOutcome(
        RowSet(rows=rows, row_ids=list(row_set.row_ids), next_row_seq=row_set.next_row_seq),
        changed,
    )


def resolve_targets(row_set: RowSet, op: DataOpsOperation) -> set[int]:
    """把 indices / row_ids / filter 汇总为位置下标集合。"""
    targets: set[int] = set()
    for index in op.params.get("indices") or []:
        targets.add(int(index))
    for row_id in op.params.get("row_ids") or []:
        position = row_set.position_of(str(row_id))
        if position is not None:
            targets.add(position)
    row_filter = op.row_filter
    if row_filter is not None:
        for position, row in enumerate(row_set.rows):
            if row_filter.matches(row):
                targets.add(position)
    return targets


def _delete_rows(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    targets = resolve_targets(row_set, op)
    keep = [idx not in targets for idx in range(len(row_set))]
    result = _keep(row_set, keep)
    return OperationOutcome(result, len(row_set) - len(result))


def _filter_rows(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    row_filter = op.row_filter
    assert row_filter is not None
    keep = [row_filter.matches(row) for row in row_set.rows]
    result = _keep(row_set, keep)
    return OperationOutcome(result, len(row_set) - len(result))


def build_row(columns: list[ColumnSchema], values: dict[str, Any]) -> dict[str, Any]:
    """按列定义补齐新行：未给出的数值列填 0，其余填空串。"""
    row: dict[str, Any] = {}
    for col in columns:
        if col.name in values:
            value = values[col.name]
            row[col.name] = coerce_scalar(value) if col.type is ColumnType.NUMBER else value
        else:
            row[col.name] = 0 if col.type is ColumnType.NUMBER else ""
    return row


def _add_row(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    values = op.params.get("row") or {}
    new_row = build_row(columns, values) if columns else dict(values)
    seq = row_set.next_row_seq
    return OperationOutcome(
        RowSet(
            rows=[new_row, *row_set.rows],
            row_ids=[make_row_id(seq), *row_set.row_ids],
            next_row_seq=seq + 1,
        ),
        1,
    )


def _edit_cell(row_set: RowSet, columns: list[ColumnSchema], op: DataOpsOperation) -> OperationOutcome:
    params = op.params
    col_name = str(params["col_name"])
    if params.get("row_id") is not None:
        position = row_set.position_of(str(params["row_id"]))
    else:
        position = int(params["row_index"])

    if position is None or not 0 <= position < len(row_set):
        # 交互式编辑容忍越界：记录后忽略
        logger.info("EDIT_CELL 目标行不存在，忽略: %s", params.get("row_id", params.get("row_index")))
        return OperationOutcome(row_set, 0)

    value = params.get("value")
    column = next((c for c in columns if c.name == col_name), None)
    if column is not None and column.type is ColumnType.NUMBER:
        value = coerce_scalar(value)

    rows = list(row_set.rows)
    rows[position] = {**rows[position], col_name: value}
    return OperationOutcome(
        RowSet(rows=rows, row_ids=list(row_set.row_ids), next_row_seq=row_set.next_row_seq),
        1,
    )


_Handler = Callable[[RowSet, list[ColumnSchema], DataOpsOperation], OperationOutcome]

_HANDLERS: dict[OperationType, _Handler] = {
    OperationType.CLEAN_NULLS: _clean_nulls,
    OperationType.FILL_NULLS: _fill_nulls,
    OperationType.DEDUPLICATE: _deduplicate,
    OperationType.NORMALIZE_DATES: _normalize_dates,
    OperationType.DELETE_ROWS: _delete_rows,
    OperationType.FILTER_ROWS: _filter_rows,
    OperationType.ADD_ROW: _add_row,
    OperationType.EDIT_CELL: _edit_cell,
}


def apply_operation(
    row_set: RowSet,
    columns: list[ColumnSchema],
    operation: DataOpsOperation,
) -> OperationOutcome:
    """应用单个操作，返回新行集与修改计数。"""
    handler = _HANDLERS[operation.type]
    outcome = handler(row_set, columns, operation)
    logger.debug(
        "%s: %d -> %d 行，修改 %d",
        operation.type.value,
        len(row_set),
        len(outcome.row_set),
        outcome.modifications,
    )
    return outcome
