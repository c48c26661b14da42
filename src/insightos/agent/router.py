"""对话路由：按关键词把用户问题分派给 DataOps 或分析代理。

- 无激活数据集：返回上传提示；
- 命中 DataOps 关键词：规划 + 直接提交（一步式）；
- 命中分析关键词：确定性统计摘要；
- 其余：返回当前数据集的概要描述。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from insightos.activity_log import AGENT_ORCHESTRATOR, ActivityLog, LogType
from insightos.agent.analytics import AnalyticsService
from insightos.agent.planner import Planner
from insightos.dataops.drafts import DraftController
from insightos.exceptions import DraftConflict, PlannerFailure, PlanValidationError, SafetyViolation
from insightos.models.plan import BULK_UPDATE, DataOpsRequest

logger = logging.getLogger(__name__)

DATAOPS_KEYWORDS = (
    "clean",
    "remove",
    "delete",
    "add row",
    "add a row",
    "add a new row",
    "fix",
    "filter",
    "deduplicate",
    "fill",
    "normalize",
    "edit",
    "transform",
)
ANALYTICS_KEYWORDS = (
    "analyze",
    "who",
    "count",
    "average",
    "sum",
    "trend",
    "compare",
    "highest",
    "lowest",
    "department",
    "score",
    "salary",
    "performance",
    "show",
    "list",
    "find",
    "insights",
    "chart",
    "kpi",
)

NO_DATASET_REPLY = (
    "**No Active Dataset**\n\n"
    "Please upload a dataset using the 'Upload Data' button before asking questions."
)


@dataclass
class ChatReply:
    """对话回复。"""

    text: str
    intent: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "intent": self.intent,
            "sources": self.sources,
            "version": self.version,
        }


def classify_query(query: str) -> str:
    """返回 "dataops" / "analytics" / "general"。DataOps 优先。"""
    lowered = query.lower()
    if any(keyword in lowered for keyword in DATAOPS_KEYWORDS):
        return "dataops"
    if any(keyword in lowered for keyword in ANALYTICS_KEYWORDS):
        return "analytics"
    return "general"


class ChatRouter:
    """编排代理。"""

    def __init__(
        self,
        controller: DraftController,
        planner: Planner,
        analytics: AnalyticsService,
        activity_log: ActivityLog | None = None,
    ):
        self._controller = controller
        self._planner = planner
        self._analytics = analytics
        self._log = activity_log

    async def route(self, query: str) -> ChatReply:
        self._record(f'Received user query: "{query}"', "info")
        active = self._controller.active
        if active is None:
            return ChatReply(text=NO_DATASET_REPLY, intent="none")

        intent = classify_query(query)
        source = {"file_name": active.file_name}

        if intent == "dataops":
            self._record("Routing to DATAOPS_AGENT", "action")
            request = DataOpsRequest(
                mode=BULK_UPDATE,
                natural_language_instruction=query,
                dataset_id=active.id,
            )
            try:
                response = await self._planner.plan(request, active)
                notice = self._controller.commit_direct(response.plan, response.summary)
            except PlannerFailure as exc:
                return ChatReply(text=exc.detail, intent=intent)
            except (SafetyViolation, PlanValidationError, DraftConflict) as exc:
                self._record(f"DataOps request rejected: {exc.detail}", "error")
                return ChatReply(text=f"**DataOps Request Rejected**\n\n{exc.detail}", intent=intent)
            return ChatReply(
                text=(
                    "**DataOps Execution Complete**\n\n"
                    f"{response.summary}\n\nDataset updated to **v{notice.version}**."
                ),
                intent=intent,
                sources=[source],
                version=notice.version,
            )

        if intent == "analytics":
            self._record("Routing to HR_ANALYTICS_AGENT", "action")
            analysis = self._analytics.analyze(query, active)
            text = (
                f"{analysis}\n\n"
                "**Agent Actions:**\n"
                "- Identified intent: HR_ANALYTICS\n"
                f"- Delegated to **HR Analytics Agent** (v{active.version})"
            )
            return ChatReply(text=text, intent=intent, sources=[source], version=active.version)

        self._record("Handling as general conversational query", "info")
        columns = ", ".join(active.column_names)
        text = (
            f"The active dataset is **{active.file_name}** (v{active.version}) "
            f"with {active.row_count} rows and columns: {columns}.\n\n"
            "Ask me to analyze it (for example *average salary by department*) "
            "or to transform it (for example *remove duplicate rows*)."
        )
        return ChatReply(text=text, intent=intent, sources=[source], version=active.version)

    def _record(self, message: str, type: LogType) -> None:
        if self._log is not None:
            self._log.add(AGENT_ORCHESTRATOR, message, type)
