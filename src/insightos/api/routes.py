"""HTTP 端点（数据集上传/激活、草稿编辑与提交、对话、分析、导出）。"""

from __future__ import annotations

import io
import json
import logging
from typing import Literal
from urllib.parse import quote

import pandas as pd
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from insightos.config import settings
from insightos.exceptions import (
    DataOpsError,
    DatasetNotFound,
    DraftConflict,
    IngestionError,
    NoActiveDataset,
    PlannerFailure,
    PlanValidationError,
    SafetyViolation,
)
from insightos.models.plan import DataOpsRequest
from insightos.models.schemas import (
    AddRowRequest,
    APIResponse,
    ApplyPlanRequest,
    ChatRequest,
    DeleteRowsRequest,
    EditCellRequest,
    snapshot_payload,
)
from insightos.workspace import Workspace

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[DataOpsError], int] = {
    IngestionError: 400,
    PlanValidationError: 400,
    NoActiveDataset: 400,
    DatasetNotFound: 404,
    DraftConflict: 409,
    SafetyViolation: 422,
    PlannerFailure: 502,
}

QuickAction = Literal["clean-nulls", "fill-nulls", "normalize-dates", "deduplicate"]


def get_workspace(request: Request) -> Workspace:
    return request.app.state.workspace


def _http_error(exc: DataOpsError) -> HTTPException:
    for exc_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=exc.detail)
    return HTTPException(status_code=400, detail=exc.detail)


def _draft_response(workspace: Workspace, message: str | None = None) -> APIResponse:
    controller = workspace.controller
    draft = controller.draft
    if draft is None:
        raise HTTPException(status_code=400, detail=NoActiveDataset().detail)
    return APIResponse(
        data=snapshot_payload(draft, has_unsaved_changes=controller.has_unsaved_changes),
        message=message,
    )


# ---- 数据集 ----


@router.post("/datasets", response_model=APIResponse)
async def upload_dataset(
    file: UploadFile = File(...),
    workspace: Workspace = Depends(get_workspace),
) -> APIResponse:
    """上传 CSV/JSON 文件并登记为新数据集。"""
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing file name")

    content = await file.read()
    if len(content) > settings.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large ({len(content)} bytes, max {settings.max_upload_size})",
        )

    try:
        item = workspace.upload(file.filename, content)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return APIResponse(data=item.model_dump(mode="json"), message=f"Uploaded {file.filename}")


@router.get("/datasets", response_model=APIResponse)
async def list_datasets(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    items = workspace.controller.list_datasets()
    return APIResponse(data=[item.model_dump(mode="json") for item in items])


@router.get("/datasets/active", response_model=APIResponse)
async def get_active_dataset(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        active = workspace.require_active()
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return APIResponse(data=snapshot_payload(active))


@router.get("/datasets/{dataset_id}", response_model=APIResponse)
async def get_dataset(dataset_id: str, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        snapshot = workspace.controller.get_committed(dataset_id)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return APIResponse(data=snapshot_payload(snapshot))


@router.post("/datasets/{dataset_id}/activate", response_model=APIResponse)
async def activate_dataset(dataset_id: str, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        active = workspace.controller.activate(dataset_id)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return APIResponse(data=snapshot_payload(active), message=f"Activated {active.file_name}")


@router.get("/datasets/{dataset_id}/export")
async def export_dataset(
    dataset_id: str,
    format: Literal["csv", "json"] = "csv",
    workspace: Workspace = Depends(get_workspace),
) -> Response:
    """导出已提交快照为 CSV 或 JSON。"""
    try:
        snapshot = workspace.controller.get_committed(dataset_id)
    except DataOpsError as exc:
        raise _http_error(exc) from exc

    stem = snapshot.file_name.rsplit(".", 1)[0] or "dataset"
    file_name = f"{stem}_v{snapshot.version}.{format}"
    if format == "csv":
        df = pd.DataFrame(
            [[row.get(name) for name in snapshot.column_names] for row in snapshot.rows],
            columns=snapshot.column_names,
        )
        buffer = io.StringIO()
        df.to_csv(buffer, index=False)
        content = buffer.getvalue()
        media_type = "text/csv"
    else:
        content = json.dumps(snapshot.rows, ensure_ascii=False, indent=2, default=str)
        media_type = "application/json"

    return Response(
        content=content.encode("utf-8"),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"},
    )


# ---- 草稿 ----


@router.get("/draft", response_model=APIResponse)
async def get_draft(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    return _draft_response(workspace)


@router.post("/draft/actions/{action}", response_model=APIResponse)
async def run_quick_action(action: QuickAction, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    """一键清洗动作：clean-nulls / fill-nulls / normalize-dates / deduplicate。"""
    controller = workspace.controller
    handlers = {
        "clean-nulls": controller.clean_nulls,
        "fill-nulls": controller.fill_nulls,
        "normalize-dates": controller.normalize_dates,
        "deduplicate": controller.deduplicate,
    }
    try:
        handlers[action]()
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return _draft_response(workspace)


@router.post("/draft/cells", response_model=APIResponse)
async def edit_cell(req: EditCellRequest, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    if req.row_id is None and req.row_index is None:
        raise HTTPException(status_code=400, detail="row_index or row_id is required")
    try:
        workspace.controller.edit_cell(req.col_name, req.value, row_index=req.row_index, row_id=req.row_id)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return _draft_response(workspace)


@router.post("/draft/rows", response_model=APIResponse)
async def add_row(req: AddRowRequest, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        workspace.controller.add_row(req.row)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return _draft_response(workspace)


@router.post("/draft/rows/delete", response_model=APIResponse)
async def delete_rows(req: DeleteRowsRequest, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        workspace.controller.delete_rows(indices=req.indices, row_ids=req.row_ids)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return _draft_response(workspace)


@router.post("/draft/apply", response_model=APIResponse)
async def apply_plan(req: ApplyPlanRequest, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    """对草稿执行计划；未直接给出计划时先交由规划器生成。"""
    try:
        if req.plan is not None:
            plan, summary = req.plan, req.summary
        else:
            response = await workspace.plan(
                DataOpsRequest(
                    mode=req.mode,
                    details=req.details,
                    natural_language_instruction=req.instruction,
                )
            )
            plan, summary = response.plan, req.summary or response.summary
        workspace.controller.apply(plan, summary)
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return _draft_response(workspace, message=summary)


@router.post("/draft/save", response_model=APIResponse)
async def save_draft(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        notice = workspace.controller.save()
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    if notice is None:
        return APIResponse(data=None, message="No unsaved changes")
    return APIResponse(data=notice.model_dump(mode="json"), message=f"Dataset committed: v{notice.version}")


@router.post("/draft/discard", response_model=APIResponse)
async def discard_draft(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        workspace.controller.discard()
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return _draft_response(workspace, message="Draft discarded")


# ---- 对话 / 分析 / 日志 ----


@router.post("/chat", response_model=APIResponse)
async def chat(req: ChatRequest, workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    reply = await workspace.chat(req.message)
    return APIResponse(data=reply.to_dict())


@router.get("/analytics", response_model=APIResponse)
async def get_analytics(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    try:
        dashboard = workspace.dashboard()
    except DataOpsError as exc:
        raise _http_error(exc) from exc
    return APIResponse(data=dashboard)


@router.get("/activity", response_model=APIResponse)
async def get_activity(workspace: Workspace = Depends(get_workspace)) -> APIResponse:
    return APIResponse(data=[entry.to_dict() for entry in workspace.activity_log.entries()])
