"""工作区：一个进程内的数据集会话。

持有活动日志、Runner、草稿控制器、规划器、分析服务与对话路由，
把它们显式连接起来（日志实例通过构造参数传递，不使用全局单例）。
"""

from __future__ import annotations

import logging
from typing import Any

from insightos.activity_log import AGENT_SYSTEM, ActivityLog
from insightos.agent.analytics import AnalyticsService
from insightos.agent.planner import Planner, create_planner
from insightos.agent.router import ChatReply, ChatRouter
from insightos.dataops.drafts import DraftController
from insightos.dataops.ingestion import build_snapshot, process_file
from insightos.dataops.runner import TransformationRunner
from insightos.exceptions import IngestionError, NoActiveDataset
from insightos.models.dataset import DatasetListItem, DatasetSnapshot
from insightos.models.plan import DataOpsRequest, PlannerResponse

logger = logging.getLogger(__name__)


class Workspace:
    """组装各组件的会话对象。"""

    def __init__(
        self,
        *,
        activity_log: ActivityLog | None = None,
        planner: Planner | None = None,
    ):
        self.activity_log = activity_log if activity_log is not None else ActivityLog()
        self.runner = TransformationRunner(self.activity_log)
        self.controller = DraftController(self.runner, self.activity_log)
        self.planner = planner if planner is not None else create_planner(self.activity_log)
        self.analytics = AnalyticsService(self.activity_log)
        self.router = ChatRouter(self.controller, self.planner, self.analytics, self.activity_log)
        self.controller.subscribe(self.analytics.cache.on_commit)

    def upload(self, file_name: str, content: str | bytes) -> DatasetListItem:
        """解析上传文件并登记为新数据集。"""
        start = ActivityLog.start_timer()
        try:
            ingested = process_file(file_name, content)
        except IngestionError as exc:
            self.activity_log.add(AGENT_SYSTEM, f"Failed to ingest {file_name}: {exc.detail}", "error")
            raise
        snapshot = build_snapshot(ingested)
        item = self.controller.register(snapshot)
        self.activity_log.add(
            AGENT_SYSTEM,
            f"Uploaded {file_name}",
            "action",
            metadata={"rows": snapshot.row_count, "columns": len(snapshot.columns)},
            duration_ms=ActivityLog.end_timer(start),
        )
        return item

    def require_active(self) -> DatasetSnapshot:
        active = self.controller.active
        if active is None:
            raise NoActiveDataset()
        return active

    async def plan(self, request: DataOpsRequest) -> PlannerResponse:
        """为草稿生成计划（仅规划，不执行）。"""
        snapshot = self.controller.draft or self.require_active()
        return await self.planner.plan(request, snapshot)

    async def chat(self, query: str) -> ChatReply:
        return await self.router.route(query)

    def dashboard(self) -> dict[str, Any]:
        return self.analytics.dashboard(self.require_active())
