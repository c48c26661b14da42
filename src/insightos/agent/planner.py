"""变换规划器。

把 UI 动作或自然语言指令翻译为结构化的 ``TransformationPlan``。
规划器是不可信的黑盒：其输出只负责“做什么”，行数与指纹始终由 Runner 重新计算。

- ``RuleBasedPlanner``：关键词规则，无需网络；
- ``LLMPlanner``：OpenAI 兼容接口，JSON 模式输出。
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from insightos.activity_log import AGENT_DATAOPS, ActivityLog, LogType
from insightos.config import settings
from insightos.exceptions import PlannerFailure
from insightos.models.dataset import DatasetSnapshot
from insightos.models.plan import (
    BULK_UPDATE,
    DataOpsOperation,
    DataOpsPreview,
    DataOpsRequest,
    OperationType,
    PlannerResponse,
    TransformationPlan,
)

logger = logging.getLogger(__name__)

DATAOPS_SYSTEM_PROMPT = """
You are the DataOps agent of a tabular analytics dashboard.
You translate a user's data-editing request into an explicit, safe transformation plan.

Supported operation types and params:
- CLEAN_NULLS {} : drop rows that contain empty values
- FILL_NULLS {} : fill empty cells (numbers -> 0, text -> "Unknown")
- DEDUPLICATE {} : drop exact duplicate rows, keeping the first
- NORMALIZE_DATES {} : rewrite date columns as YYYY-MM-DD
- DELETE_ROWS {"indices": [0-based ints]} or {"filter": {"column", "operator", "value"}}
- FILTER_ROWS {"filter": {"column", "operator", "value"}} : keep only matching rows
- ADD_ROW {"row": {column: value}}
- EDIT_CELL {"row_index": int, "col_name": str, "value": any}
Filter operators: eq, ne, gt, ge, lt, le, contains, is_null, not_null.

Respond with JSON only:
{"plan": {"operations": [{"type": "...", "params": {...}}]},
 "summary": "human readable description", "new_version": "vN"}

Never delete all rows. When the request is ambiguous choose the safest operation.
""".strip()

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")


def build_planner_context(request: DataOpsRequest, snapshot: DatasetSnapshot) -> str:
    """构建交给规划器的数据集摘要（样本行数受配置限制）。"""
    sample = snapshot.rows[: settings.planner_sample_rows]
    columns = ", ".join(f"{c.name}({c.type.value})" for c in snapshot.columns)
    details = request.details if request.details is not None else request.natural_language_instruction
    return (
        f"DATASET: {snapshot.file_name} (v{snapshot.version})\n"
        f"ROWS: {snapshot.row_count}\n"
        f"COLUMNS: {columns}\n"
        f"SAMPLE DATA: {json.dumps(sample, ensure_ascii=False, default=str)}\n"
        f"REQUEST MODE: {request.mode}\n"
        f"REQUEST DETAILS: {json.dumps(details, ensure_ascii=False, default=str)}"
    )


def _preview(snapshot: DatasetSnapshot) -> DataOpsPreview:
    return DataOpsPreview(
        rows_sample=snapshot.rows[: settings.planner_sample_rows],
        row_count_before=snapshot.row_count,
    )


def parse_planner_output(text: str, snapshot: DatasetSnapshot) -> PlannerResponse:
    """解析规划器文本输出（可能包裹在 ```json 代码块中）。"""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    if not cleaned:
        raise PlannerFailure("Planner returned an empty response")
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise PlannerFailure("Planner returned malformed JSON") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("plan"), dict):
        raise PlannerFailure("Planner response has no plan")

    try:
        plan = TransformationPlan.model_validate(payload["plan"])
    except ValidationError as exc:
        raise PlannerFailure(f"Planner returned an invalid plan ({exc.error_count()} errors)") from exc
    if not plan.operations:
        raise PlannerFailure("Planner returned a plan without operations")

    return PlannerResponse(
        plan=plan,
        summary=str(payload.get("summary") or ""),
        new_version=payload.get("new_version"),
        preview=_preview(snapshot),
    )


class Planner(ABC):
    """规划器接口。"""

    def __init__(self, activity_log: ActivityLog | None = None):
        self._log = activity_log

    @abstractmethod
    async def plan(self, request: DataOpsRequest, snapshot: DatasetSnapshot) -> PlannerResponse:
        """生成变换计划；无法生成时抛出 PlannerFailure。"""
        ...

    def _record(self, message: str, type: LogType = "action") -> None:
        if self._log is not None:
            self._log.add(AGENT_DATAOPS, message, type)


# ---- 规则规划器 ----

_MISSING_WORDS = ("null", "empty", "missing", "blank", "nan")
_REMOVE_WORDS = ("remove", "delete", "drop", "clean")
_ROWS_RE = re.compile(r"\brows?\s+((?:\d+(?:\s*(?:,|and)\s*)?)+)", re.IGNORECASE)
_WHERE_RE = re.compile(
    r"\bwhere\s+([A-Za-z_][\w ]*?)\s*"
    r"(==|=|!=|>=|<=|>|<|\bis\s+(?:empty|null|missing|blank)\b|\bcontains\b)\s*(.*)$",
    re.IGNORECASE,
)
_ADD_ROW_RE = re.compile(r"\badd\s+(?:a\s+)?(?:new\s+)?row\b(?:\s+with\s+(.*))?$", re.IGNORECASE)
_ASSIGN_RE = re.compile(r"^([A-Za-z_][\w ]*?)\s*[=:]\s*(.+)$")
_EDIT_RE = re.compile(
    r"\b(?:set|change|edit|update)\s+(?:the\s+)?([A-Za-z_][\w ]*?)\s+(?:of|in|for|on)\s+row\s+(\d+)\s+to\s+(.+)$",
    re.IGNORECASE,
)
_OPERATORS = {
    "=": "eq",
    "==": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "ge",
    "<": "lt",
    "<=": "le",
    "contains": "contains",
}
_DESCRIPTIONS = {
    OperationType.CLEAN_NULLS: "remove rows with empty values",
    OperationType.FILL_NULLS: "fill empty cells",
    OperationType.DEDUPLICATE: "remove duplicate rows",
    OperationType.NORMALIZE_DATES: "normalize date formats",
    OperationType.DELETE_ROWS: "delete the selected rows",
    OperationType.FILTER_ROWS: "keep only matching rows",
    OperationType.ADD_ROW: "add a new row",
    OperationType.EDIT_CELL: "edit a cell value",
}


def _column_lookup(snapshot: DatasetSnapshot) -> dict[str, str]:
    return {c.name.lower(): c.name for c in snapshot.columns}


def _clean_value(text: str) -> str:
    return text.strip().strip("'\"").rstrip(".")


def _parse_where(text: str, snapshot: DatasetSnapshot) -> dict[str, Any] | None:
    match = _WHERE_RE.search(text)
    if match is None:
        return None
    column_raw, op_raw, value_raw = match.groups()
    column = _column_lookup(snapshot).get(column_raw.strip().lower())
    if column is None:
        return None
    op_key = op_raw.lower()
    if op_key.startswith("is"):
        return {"column": column, "operator": "is_null"}
    return {"column": column, "operator": _OPERATORS[op_key], "value": _clean_value(value_raw)}


def _parse_add_row(text: str, snapshot: DatasetSnapshot) -> dict[str, Any] | None:
    """``add a row with name = Eve, salary = 1`` → 新行取值；未知列忽略。"""
    match = _ADD_ROW_RE.search(text)
    if match is None:
        return None
    names = _column_lookup(snapshot)
    row: dict[str, Any] = {}
    for part in re.split(r"\s*,\s*|\s+and\s+", match.group(1) or ""):
        assignment = _ASSIGN_RE.match(part.strip())
        if assignment is None:
            continue
        column = names.get(assignment.group(1).strip().lower())
        if column is not None:
            row[column] = _clean_value(assignment.group(2))
    return row


def _parse_edit(text: str, snapshot: DatasetSnapshot) -> dict[str, Any] | None:
    """``set salary of row 2 to 90000``，行号从 1 开始。"""
    match = _EDIT_RE.search(text)
    if match is None:
        return None
    column_raw, row_raw, value_raw = match.groups()
    column = _column_lookup(snapshot).get(column_raw.strip().lower())
    if column is None:
        return None
    return {"row_index": int(row_raw) - 1, "col_name": column, "value": _clean_value(value_raw)}


class RuleBasedPlanner(Planner):
    """基于关键词的规划器。"""

    async def plan(self, request: DataOpsRequest, snapshot: DatasetSnapshot) -> PlannerResponse:
        self._record(f"Generating plan for {request.mode}")
        if request.mode != BULK_UPDATE:
            try:
                op_type = OperationType(request.mode)
            except ValueError as exc:
                raise PlannerFailure(f"Unsupported request mode: {request.mode}") from exc
            params = request.details if isinstance(request.details, dict) else {}
            operations = [DataOpsOperation(type=op_type, params=params)]
        else:
            operations = self._from_instruction(request.natural_language_instruction or "", snapshot)

        if not operations:
            self._record("Failed to generate transformation plan", "error")
            raise PlannerFailure()

        summary = "Planned: " + ", ".join(_DESCRIPTIONS[op.type] for op in operations) + "."
        return PlannerResponse(
            plan=TransformationPlan(operations=operations),
            summary=summary,
            new_version=f"v{snapshot.version + 1}",
            preview=_preview(snapshot),
        )

    def _from_instruction(self, instruction: str, snapshot: DatasetSnapshot) -> list[DataOpsOperation]:
        text = instruction.lower()

        edit = _parse_edit(instruction, snapshot)
        if edit is not None:
            return [DataOpsOperation(type=OperationType.EDIT_CELL, params=edit)]
        new_row = _parse_add_row(instruction, snapshot)
        if new_row is not None:
            return [DataOpsOperation(type=OperationType.ADD_ROW, params={"row": new_row})]

        operations: list[DataOpsOperation] = []
        mentions_missing = any(word in text for word in _MISSING_WORDS)
        mentions_remove = any(word in text for word in _REMOVE_WORDS)
        where = _parse_where(instruction, snapshot)
        keep_only = "keep only" in text or text.startswith("filter")
        wants_delete = "delete" in text or "remove" in text
        # 带 where 条件的删除只作用于匹配行，不能退化为全表 CLEAN_NULLS
        targeted_delete = wants_delete and not keep_only and where is not None

        if "fill" in text:
            operations.append(DataOpsOperation(type=OperationType.FILL_NULLS))
        elif mentions_missing and mentions_remove and not targeted_delete:
            operations.append(DataOpsOperation(type=OperationType.CLEAN_NULLS))
        if "duplicate" in text or "dedup" in text:
            operations.append(DataOpsOperation(type=OperationType.DEDUPLICATE))
        if "date" in text and ("normalize" in text or "format" in text or "fix" in text):
            operations.append(DataOpsOperation(type=OperationType.NORMALIZE_DATES))

        if keep_only:
            if where is not None:
                operations.append(DataOpsOperation(type=OperationType.FILTER_ROWS, params={"filter": where}))
        elif wants_delete and (targeted_delete or not operations):
            # 没有明确目标时生成空目标删除，由 Runner 的安全护栏拒绝
            params: dict[str, Any] = {}
            rows_match = _ROWS_RE.search(instruction)
            if rows_match is not None:
                numbers = [int(n) for n in re.findall(r"\d+", rows_match.group(1))]
                params["indices"] = sorted({n - 1 for n in numbers if n >= 1})
            elif where is not None:
                params["filter"] = where
            operations.append(DataOpsOperation(type=OperationType.DELETE_ROWS, params=params))

        if not operations and "clean" in text:
            operations.append(DataOpsOperation(type=OperationType.CLEAN_NULLS))
        return operations


# ---- LLM 规划器 ----


class LLMPlanner(Planner):
    """OpenAI 兼容接口的规划器。"""

    def __init__(
        self,
        activity_log: ActivityLog | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
    ):
        super().__init__(activity_log)
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._base_url = base_url if base_url is not None else settings.openai_base_url
        self._model = model or settings.openai_model
        self._client = None

    def is_available(self) -> bool:
        return bool(self._api_key and self._model)

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            kwargs: dict[str, Any] = {
                "api_key": self._api_key,
                "max_retries": max(0, int(settings.llm_max_retries)),
                "timeout": max(1, int(settings.llm_timeout)),
            }
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def complete(self, context: str) -> str:
        """调用模型，返回原始文本。"""
        client = self._ensure_client()
        response = await client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": DATAOPS_SYSTEM_PROMPT},
                {"role": "user", "content": context},
            ],
            temperature=settings.llm_temperature,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def plan(self, request: DataOpsRequest, snapshot: DatasetSnapshot) -> PlannerResponse:
        self._record(f"Generating plan for {request.mode}")
        if not self.is_available():
            raise PlannerFailure("LLM planner is not configured (missing API key)")

        context = build_planner_context(request, snapshot)
        try:
            text = await self.complete(context)
        except Exception as exc:
            logger.error("DataOps 规划调用失败: %s", exc, exc_info=True)
            self._record("Failed to generate transformation plan", "error")
            raise PlannerFailure() from exc

        try:
            return parse_planner_output(text, snapshot)
        except PlannerFailure as exc:
            logger.warning("规划结果无法解析: %s", exc.detail)
            self._record("Failed to generate transformation plan", "error")
            raise


def create_planner(activity_log: ActivityLog | None = None) -> Planner:
    """按配置创建规划器：配置了 LLM 时使用 LLMPlanner，否则规则规划器。"""
    if settings.llm_enabled:
        return LLMPlanner(activity_log)
    return RuleBasedPlanner(activity_log)
