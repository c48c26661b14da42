"""HTTP 请求/响应模型。"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from insightos.models.dataset import DatasetSnapshot
from insightos.models.plan import BULK_UPDATE, TransformationPlan


class APIResponse(BaseModel):
    """通用 API 响应。"""

    success: bool = True
    data: Any = None
    message: Optional[str] = None
    error: Optional[str] = None


class EditCellRequest(BaseModel):
    """编辑单元格：row_id 优先，其次 row_index。"""

    col_name: str = Field(min_length=1)
    value: Any = None
    row_index: Optional[int] = None
    row_id: Optional[str] = None


class AddRowRequest(BaseModel):
    """新增行；未提供 row 时按列生成空白模板。"""

    row: Optional[dict[str, Any]] = None


class DeleteRowsRequest(BaseModel):
    indices: list[int] = Field(default_factory=list)
    row_ids: list[str] = Field(default_factory=list)


class ApplyPlanRequest(BaseModel):
    """对草稿执行计划：直接给出计划，或给出指令交由规划器生成。"""

    plan: Optional[TransformationPlan] = None
    summary: Optional[str] = None
    instruction: Optional[str] = None
    mode: str = BULK_UPDATE
    details: Any = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


def snapshot_payload(snapshot: DatasetSnapshot, **extra: Any) -> dict[str, Any]:
    """快照的 JSON 视图（附加 row_count 与额外字段）。"""
    payload = snapshot.model_dump(mode="json")
    payload["row_count"] = snapshot.row_count
    payload.update(extra)
    return payload
