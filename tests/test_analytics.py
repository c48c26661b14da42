"""测试确定性统计、数据健康度与分析缓存。"""

from __future__ import annotations

from insightos.activity_log import ActivityLog
from insightos.agent.analytics import (
    AnalyticsCache,
    AnalyticsService,
    build_dashboard,
    compute_data_health,
    compute_dataset_stats,
    summarize,
)
from insightos.dataops.runner import TransformationRunner
from insightos.models.dataset import ColumnType, CommitNotice
from insightos.models.plan import OperationType, TransformationPlan
from tests.factories import employees_snapshot, make_snapshot


class TestDatasetStats:
    def test_numeric_summary(self):
        stats = compute_dataset_stats(employees_snapshot())
        assert stats["row_count"] == 4
        assert stats["numeric_summary"]["salary"] == {
            "sum": 405000,
            "min": 80000,
            "max": 120000,
            "avg": 101250,
        }

    def test_non_numeric_values_count_as_zero(self):
        snapshot = make_snapshot([{"v": 3}, {"v": "n/a"}, {"v": None}], [("v", ColumnType.NUMBER)])
        summary = compute_dataset_stats(snapshot)["numeric_summary"]["v"]
        assert summary == {"sum": 3, "min": 0, "max": 3, "avg": 1}

    def test_average_rounded_to_two_places(self):
        snapshot = make_snapshot([{"v": 1}, {"v": 1}, {"v": 2}], [("v", ColumnType.NUMBER)])
        assert compute_dataset_stats(snapshot)["numeric_summary"]["v"]["avg"] == 1.33

    def test_categorical_top_values(self):
        stats = compute_dataset_stats(employees_snapshot())
        dept = stats["categorical_summary"]["department"]
        assert dept["unique_count"] == 3
        assert dept["top_values"][0] == {"name": "Engineering", "value": 2}

    def test_top_values_limited(self):
        rows = [{"k": f"v{i}"} for i in range(15)]
        stats = compute_dataset_stats(make_snapshot(rows), top_n=10)
        assert len(stats["categorical_summary"]["k"]["top_values"]) == 10
        assert stats["categorical_summary"]["k"]["unique_count"] == 15

    def test_none_counted_as_unknown(self):
        snapshot = make_snapshot([{"k": None}, {"k": None}, {"k": "a"}], [("k", ColumnType.STRING)])
        top = compute_dataset_stats(snapshot)["categorical_summary"]["k"]["top_values"]
        assert top[0] == {"name": "Unknown", "value": 2}

    def test_empty_dataset(self):
        snapshot = make_snapshot([], [("v", ColumnType.NUMBER), ("k", ColumnType.STRING)])
        stats = compute_dataset_stats(snapshot)
        assert stats["row_count"] == 0
        assert stats["numeric_summary"]["v"] == {"sum": 0, "min": 0, "max": 0, "avg": 0}
        assert stats["categorical_summary"]["k"]["top_values"] == []


class TestDataHealth:
    def test_quality_score(self):
        snapshot = make_snapshot([{"a": 1, "b": ""}, {"a": 1, "b": ""}, {"a": 2, "b": "x"}])
        health = compute_data_health(snapshot)
        assert health.null_cells == 2
        assert health.duplicate_rows == 1
        assert health.total_cells == 6
        # 100 - (2 + 1*2) / 6 * 100 = 33.3
        assert health.quality_score == 33

    def test_clean_dataset_scores_100(self):
        assert compute_data_health(make_snapshot([{"a": 1}, {"a": 2}])).quality_score == 100

    def test_empty_dataset_scores_100(self):
        assert compute_data_health(make_snapshot([], [("a", ColumnType.STRING)])).quality_score == 100


class TestDashboardAndSummary:
    def test_dashboard_uses_exact_row_count(self):
        snapshot = employees_snapshot()
        dashboard = build_dashboard(snapshot, compute_dataset_stats(snapshot))
        kpis = {k["id"]: k["value"] for k in dashboard["kpis"]}
        assert kpis["rows"] == 4
        assert kpis["avg_salary"] == 101250
        assert dashboard["dataset_version_hash"] == snapshot.version_hash
        assert dashboard["charts"][0]["type"] == "bar"
        assert dashboard["charts"][0]["title"] == "department distribution"

    def test_summarize_focuses_on_mentioned_column(self):
        text = summarize("What is the highest salary?", employees_snapshot())
        assert "**Highest salary:** 120000" in text
        assert text.startswith("### Analysis of employees.csv (v1)")

    def test_summarize_overview(self):
        text = summarize("give me insights", employees_snapshot())
        assert "**Total rows:** 4" in text
        assert "**salary:** average 101250" in text


class TestAnalyticsCache:
    """缓存按内容指纹判断过期。"""

    def test_stale_when_hash_differs(self):
        cache = AnalyticsCache()
        snapshot = make_snapshot([{"x": 1}, {"x": 1}])
        cache.put(snapshot, {"value": 1})
        assert cache.get(snapshot) == {"value": 1}

        updated = TransformationRunner().execute(snapshot, TransformationPlan.single(OperationType.DEDUPLICATE))
        assert cache.is_stale(updated)

    def test_same_content_new_version_not_stale(self):
        cache = AnalyticsCache()
        snapshot = make_snapshot([{"x": 1}])
        cache.put(snapshot, {"value": 1})
        updated = TransformationRunner().execute(snapshot, TransformationPlan.single(OperationType.CLEAN_NULLS))
        assert updated.version == 2
        assert not cache.is_stale(updated)

    def test_on_commit_drops_changed_entries(self):
        cache = AnalyticsCache()
        snapshot = make_snapshot([{"x": 1}], dataset_id="d")
        cache.put(snapshot, {"value": 1})
        cache.on_commit(CommitNotice(dataset_id="d", version=2, version_hash=snapshot.version_hash, row_count=1))
        assert "d" in cache
        cache.on_commit(CommitNotice(dataset_id="d", version=3, version_hash="other", row_count=1))
        assert "d" not in cache

    def test_service_caches_dashboard(self):
        log = ActivityLog(max_entries=20)
        service = AnalyticsService(log)
        snapshot = employees_snapshot()
        first = service.dashboard(snapshot)
        second = service.dashboard(snapshot)
        assert first is second
        computes = [e for e in log.entries() if e.message.startswith("Computing deterministic stats")]
        assert len(computes) == 1
