"""变换计划数据模型。

计划由规划器（LLM、规则或界面动作）生成，是有序的类型化操作列表。
规划器输出视为不可信输入，参数在执行前由 Runner 统一校验。
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from insightos.dataops.cells import CellKind, classify_cell, parse_number


class OperationType(str, Enum):
    """可执行的操作类型。"""

    EDIT_CELL = "EDIT_CELL"
    ADD_ROW = "ADD_ROW"
    DELETE_ROWS = "DELETE_ROWS"
    CLEAN_NULLS = "CLEAN_NULLS"
    FILL_NULLS = "FILL_NULLS"
    DEDUPLICATE = "DEDUPLICATE"
    NORMALIZE_DATES = "NORMALIZE_DATES"
    FILTER_ROWS = "FILTER_ROWS"


# 请求模式：除具体操作外，BULK_UPDATE 表示交由规划器解释的自然语言指令
BULK_UPDATE = "BULK_UPDATE"

FilterOperator = Literal["eq", "ne", "gt", "ge", "lt", "le", "contains", "is_null", "not_null"]

# LLM 常用的 camelCase 参数名
_PARAM_ALIASES = {
    "rowIndex": "row_index",
    "rowId": "row_id",
    "rowIds": "row_ids",
    "colName": "col_name",
    "column": "col_name",
}


class RowFilter(BaseModel):
    """行过滤条件（DELETE_ROWS / FILTER_ROWS 使用）。"""

    column: str = Field(min_length=1)
    operator: FilterOperator = "eq"
    value: Any = None

    def matches(self, row: dict[str, Any]) -> bool:
        cell = row.get(self.column)
        kind = classify_cell(cell)
        if self.operator == "is_null":
            return kind is CellKind.MISSING
        if self.operator == "not_null":
            return kind is not CellKind.MISSING
        if kind is CellKind.MISSING:
            return self.operator == "ne" and self.value not in (None, "")
        if self.operator == "contains":
            return str(self.value).lower() in str(cell).lower()

        left: Any = cell
        right: Any = self.value
        target = parse_number(str(right)) if right is not None else None
        if kind is CellKind.NUMBER and target is not None:
            right = target
        else:
            left, right = str(left), str(right)

        if self.operator == "eq":
            return left == right
        if self.operator == "ne":
            return left != right
        if self.operator == "gt":
            return left > right
        if self.operator == "ge":
            return left >= right
        if self.operator == "lt":
            return left < right
        return left <= right


class DataOpsOperation(BaseModel):
    """计划中的单个操作。"""

    type: OperationType
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _normalize_params(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        normalized: dict[str, Any] = {}
        for key, item in value.items():
            normalized[_PARAM_ALIASES.get(key, key)] = item
        return normalized

    @property
    def row_filter(self) -> RowFilter | None:
        raw = self.params.get("filter")
        if raw is None:
            return None
        if isinstance(raw, RowFilter):
            return raw
        return RowFilter.model_validate(raw)


class TransformationPlan(BaseModel):
    """有序操作列表，前一个操作的输出是下一个的输入。"""

    operations: list[DataOpsOperation] = Field(default_factory=list)

    @classmethod
    def single(cls, op_type: OperationType, **params: Any) -> TransformationPlan:
        return cls(operations=[DataOpsOperation(type=op_type, params=params)])


class DataOpsRequest(BaseModel):
    """交给规划器的请求。"""

    mode: str = BULK_UPDATE
    details: Any = None
    natural_language_instruction: Optional[str] = None
    correlation_id: Optional[str] = None
    dataset_id: Optional[str] = None


class DataOpsPreview(BaseModel):
    """规划器给出的预览（仅供展示，行数不被信任）。"""

    rows_sample: list[dict[str, Any]] = Field(default_factory=list)
    row_count_before: Optional[int] = None
    row_count_after: Optional[int] = None


class PlannerResponse(BaseModel):
    """规划器输出：计划 + 可读摘要 + 建议的版本标签。"""

    plan: TransformationPlan
    summary: str = ""
    new_version: Optional[str] = None
    preview: Optional[DataOpsPreview] = None
