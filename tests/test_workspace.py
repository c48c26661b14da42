"""测试工作区组装与上传流程。"""

from __future__ import annotations

import pytest

from insightos.activity_log import ActivityLog
from insightos.agent.planner import RuleBasedPlanner
from insightos.exceptions import IngestionError, NoActiveDataset
from insightos.workspace import Workspace


class TestWorkspace:
    def test_upload_registers_and_activates(self):
        workspace = Workspace(planner=RuleBasedPlanner())
        item = workspace.upload("a.csv", "x\n1\n2\n")
        assert item.active is True
        assert workspace.require_active().row_count == 2

    def test_failed_upload_logged(self):
        log = ActivityLog(max_entries=10)
        workspace = Workspace(activity_log=log, planner=RuleBasedPlanner())
        with pytest.raises(IngestionError):
            workspace.upload("a.json", "{broken")
        assert log.entries()[0].type == "error"
        assert workspace.controller.list_datasets() == []

    def test_require_active(self):
        with pytest.raises(NoActiveDataset):
            Workspace(planner=RuleBasedPlanner()).require_active()

    def test_commit_invalidates_dashboard_cache(self):
        workspace = Workspace(planner=RuleBasedPlanner())
        item = workspace.upload("a.csv", "x\n1\n1\n")
        workspace.dashboard()
        assert item.id in workspace.analytics.cache

        workspace.controller.deduplicate()
        workspace.controller.save()
        assert item.id not in workspace.analytics.cache
        assert workspace.dashboard()["kpis"][0]["value"] == 1

    def test_logging_shared_across_components(self):
        log = ActivityLog(max_entries=50)
        workspace = Workspace(activity_log=log, planner=RuleBasedPlanner())
        workspace.upload("a.csv", "x\n1\n1\n")
        workspace.controller.deduplicate()
        agents = {entry.agent_id for entry in log.entries()}
        assert {"0", "3"} <= agents

    def test_empty_log_passed_in_is_kept(self):
        """空日志（长度为 0）也必须原样使用，而不是被替换。"""
        log = ActivityLog(max_entries=10)
        assert len(log) == 0
        workspace = Workspace(activity_log=log, planner=RuleBasedPlanner())
        assert workspace.activity_log is log
        workspace.upload("a.csv", "x\n1\n")
        assert log.entries()[0].message == "Uploaded a.csv"
