"""确定性分析：统计摘要、数据健康度、仪表盘配置与问答摘要。

所有数字都在本地计算，不依赖模型；缓存以内容指纹（而不是版本号）判断是否过期。
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any

import pandas as pd

from insightos.activity_log import AGENT_ANALYTICS, ActivityLog, LogType
from insightos.config import settings
from insightos.dataops.cells import is_missing, to_number
from insightos.dataops.hashing import serialize_row
from insightos.models.dataset import ColumnType, CommitNotice, DatasetSnapshot

logger = logging.getLogger(__name__)

UNKNOWN_VALUE = "Unknown"


def _tidy(value: float) -> int | float:
    """整数值浮点转为 int，便于展示。"""
    if float(value).is_integer():
        return int(value)
    return float(value)


def _label(value: Any) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return UNKNOWN_VALUE
    return str(value)


def _frame(snapshot: DatasetSnapshot) -> pd.DataFrame:
    names = snapshot.column_names
    records = [[row.get(name) for name in names] for row in snapshot.rows]
    return pd.DataFrame(records, columns=names, dtype=object)


def compute_dataset_stats(snapshot: DatasetSnapshot, top_n: int | None = None) -> dict[str, Any]:
    """计算行数、数值列汇总与分类列频次。

    数值列：不可转换的值按 0 计入，均值保留两位小数；
    其余列：按字符串计数（None 计为 "Unknown"），取频次最高的前 N 项。
    """
    limit = top_n if top_n is not None else settings.analytics_top_values
    df = _frame(snapshot)
    row_count = len(df)

    numeric_summary: dict[str, dict[str, Any]] = {}
    categorical_summary: dict[str, dict[str, Any]] = {}
    for col in snapshot.columns:
        series = df[col.name] if col.name in df.columns else pd.Series([], dtype=object)
        if col.type is ColumnType.NUMBER:
            values = series.map(to_number).astype(float)
            if row_count:
                numeric_summary[col.name] = {
                    "sum": _tidy(values.sum()),
                    "min": _tidy(values.min()),
                    "max": _tidy(values.max()),
                    "avg": _tidy(round(values.sum() / row_count, 2)),
                }
            else:
                numeric_summary[col.name] = {"sum": 0, "min": 0, "max": 0, "avg": 0}
        else:
            labels = series.map(_label)
            counts = labels.value_counts(sort=False).sort_values(ascending=False, kind="stable")
            categorical_summary[col.name] = {
                "unique_count": int(labels.nunique()),
                "top_values": [
                    {"name": str(name), "value": int(count)} for name, count in counts.head(limit).items()
                ],
            }

    return {
        "row_count": row_count,
        "numeric_summary": numeric_summary,
        "categorical_summary": categorical_summary,
    }


@dataclass
class DataHealth:
    """数据健康度指标。"""

    null_cells: int
    duplicate_rows: int
    total_cells: int
    quality_score: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "null_cells": self.null_cells,
            "duplicate_rows": self.duplicate_rows,
            "total_cells": self.total_cells,
            "quality_score": self.quality_score,
        }


def compute_data_health(snapshot: DatasetSnapshot) -> DataHealth:
    """空单元格数、重复行数与质量评分（0-100）。"""
    names = snapshot.column_names
    null_cells = sum(1 for row in snapshot.rows for name in names if is_missing(row.get(name)))
    unique_rows = len({serialize_row(row) for row in snapshot.rows})
    duplicate_rows = snapshot.row_count - unique_rows
    total_cells = snapshot.row_count * len(names)
    if total_cells > 0:
        penalty = (null_cells + duplicate_rows * len(names)) / total_cells * 100
        quality_score = max(0, round(100 - penalty))
    else:
        quality_score = 100
    return DataHealth(
        null_cells=null_cells,
        duplicate_rows=duplicate_rows,
        total_cells=total_cells,
        quality_score=quality_score,
    )


def build_dashboard(snapshot: DatasetSnapshot, stats: dict[str, Any]) -> dict[str, Any]:
    """由统计结果生成仪表盘配置（KPI、图表、洞察）。"""
    health = compute_data_health(snapshot)
    kpis: list[dict[str, Any]] = [
        {"id": "rows", "label": "Total Rows", "value": stats["row_count"]},
        {"id": "columns", "label": "Columns", "value": len(snapshot.columns)},
        {"id": "quality", "label": "Quality Score", "value": f"{health.quality_score}%"},
    ]
    for name, summary in list(stats["numeric_summary"].items())[:1]:
        kpis.append({"id": f"avg_{name}", "label": f"Average {name}", "value": summary["avg"]})

    charts: list[dict[str, Any]] = []
    categorical = [
        (name, summary)
        for name, summary in stats["categorical_summary"].items()
        if 1 < summary["unique_count"] < max(stats["row_count"], 2)
    ]
    for chart_type, (name, summary) in zip(("bar", "pie"), categorical):
        charts.append(
            {
                "id": f"{chart_type}_{name}",
                "type": chart_type,
                "title": f"{name} distribution",
                "data": summary["top_values"],
            }
        )

    insights: list[dict[str, Any]] = []
    for name, summary in categorical[:1]:
        top = summary["top_values"][0]
        insights.append(
            {
                "id": f"top_{name}",
                "tag": "INFO",
                "title": f"Most common {name}",
                "summary": f"'{top['name']}' appears {top['value']} times.",
            }
        )
    for name, summary in list(stats["numeric_summary"].items())[:2]:
        insights.append(
            {
                "id": f"range_{name}",
                "tag": "INFO",
                "title": f"{name} range",
                "summary": f"{name} ranges from {summary['min']} to {summary['max']} (average {summary['avg']}).",
            }
        )
    if health.null_cells or health.duplicate_rows:
        insights.append(
            {
                "id": "data_health",
                "tag": "RISK",
                "title": "Data quality issues",
                "summary": f"{health.null_cells} empty cells and {health.duplicate_rows} duplicate rows detected.",
            }
        )

    return {
        "dataset_id": snapshot.id,
        "dataset_version_hash": snapshot.version_hash,
        "kpis": kpis,
        "charts": charts,
        "insights": insights,
        "health": health.to_dict(),
    }


def _mentioned_columns(query: str, snapshot: DatasetSnapshot) -> list[str]:
    lowered = query.lower()
    return [
        col.name
        for col in snapshot.columns
        if re.search(rf"\b{re.escape(col.name.lower())}s?\b", lowered)
    ]


def summarize(query: str, snapshot: DatasetSnapshot, stats: dict[str, Any] | None = None) -> str:
    """针对问题生成 Markdown 摘要。

    问题中提到的列优先展示；未提到任何列时给出整体概览。
    """
    stats = stats or compute_dataset_stats(snapshot)
    lowered = query.lower()
    mentioned = _mentioned_columns(query, snapshot)
    numeric = stats["numeric_summary"]
    categorical = stats["categorical_summary"]

    lines = [f"### Analysis of {snapshot.file_name} (v{snapshot.version})", ""]
    lines.append(f"- **Total rows:** {stats['row_count']}")

    focus = mentioned or list(numeric)[:2] + list(categorical)[:1]
    for name in focus:
        if name in numeric:
            summary = numeric[name]
            if "highest" in lowered or "max" in lowered:
                lines.append(f"- **Highest {name}:** {summary['max']}")
            elif "lowest" in lowered or "min" in lowered:
                lines.append(f"- **Lowest {name}:** {summary['min']}")
            elif "sum" in lowered or "total" in lowered:
                lines.append(f"- **Total {name}:** {summary['sum']}")
            else:
                lines.append(
                    f"- **{name}:** average {summary['avg']}, "
                    f"min {summary['min']}, max {summary['max']}, sum {summary['sum']}"
                )
        elif name in categorical:
            summary = categorical[name]
            top = ", ".join(f"{item['name']} ({item['value']})" for item in summary["top_values"][:5])
            lines.append(f"- **{name}:** {summary['unique_count']} distinct values; top: {top or 'n/a'}")

    health = compute_data_health(snapshot)
    lines.append("")
    lines.append(
        f"_Data quality score: {health.quality_score}% "
        f"({health.null_cells} empty cells, {health.duplicate_rows} duplicate rows)._"
    )
    return "\n".join(lines)


class AnalyticsCache:
    """按数据集 ID 缓存分析结果；指纹不一致即视为过期。"""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, dict[str, Any]]] = {}

    def get(self, snapshot: DatasetSnapshot) -> dict[str, Any] | None:
        entry = self._entries.get(snapshot.id)
        if entry is None or entry[0] != snapshot.version_hash:
            return None
        return entry[1]

    def put(self, snapshot: DatasetSnapshot, result: dict[str, Any]) -> None:
        self._entries[snapshot.id] = (snapshot.version_hash, result)

    def is_stale(self, snapshot: DatasetSnapshot) -> bool:
        return self.get(snapshot) is None

    def on_commit(self, notice: CommitNotice) -> None:
        """提交通知回调：内容发生变化时丢弃缓存。"""
        entry = self._entries.get(notice.dataset_id)
        if entry is not None and entry[0] != notice.version_hash:
            logger.debug("数据集 %s 内容已变化，清除分析缓存", notice.dataset_id)
            del self._entries[notice.dataset_id]

    def __contains__(self, dataset_id: object) -> bool:
        return dataset_id in self._entries


class AnalyticsService:
    """分析代理：带缓存的仪表盘生成与问答。"""

    def __init__(self, activity_log: ActivityLog | None = None, cache: AnalyticsCache | None = None):
        self._log = activity_log
        self.cache = cache if cache is not None else AnalyticsCache()

    def dashboard(self, snapshot: DatasetSnapshot) -> dict[str, Any]:
        cached = self.cache.get(snapshot)
        if cached is not None:
            return cached
        self._record(f"Computing deterministic stats for {snapshot.file_name} (v{snapshot.version})", "action")
        stats = compute_dataset_stats(snapshot)
        result = build_dashboard(snapshot, stats)
        result["stats"] = stats
        self.cache.put(snapshot, result)
        self._record("Dashboard analytics generated successfully", "info")
        return result

    def analyze(self, query: str, snapshot: DatasetSnapshot) -> str:
        self._record(f'Analyzing query: "{query}"', "action")
        cached = self.cache.get(snapshot)
        stats = cached["stats"] if cached is not None else compute_dataset_stats(snapshot)
        text = summarize(query, snapshot, stats)
        self._record("Analysis complete", "info")
        return text

    def _record(self, message: str, type: LogType) -> None:
        if self._log is not None:
            self._log.add(AGENT_ANALYTICS, message, type)
