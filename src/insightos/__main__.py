"""命令行入口：`python -m insightos` / `insightos`。"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from insightos.config import settings
from insightos.exceptions import DataOpsError
from insightos.models.dataset import DatasetSnapshot
from insightos.models.plan import DataOpsOperation, OperationType, TransformationPlan


def _parse_operation(text: str) -> DataOpsOperation:
    """解析 ``TYPE`` 或 ``TYPE:{json params}``。"""
    name, _, raw_params = text.partition(":")
    try:
        op_type = OperationType(name.strip().upper())
    except ValueError as exc:
        choices = ", ".join(t.value for t in OperationType)
        raise argparse.ArgumentTypeError(f"未知操作 {name!r}，可选: {choices}") from exc
    params: dict[str, Any] = {}
    if raw_params.strip():
        try:
            params = json.loads(raw_params)
        except json.JSONDecodeError as exc:
            raise argparse.ArgumentTypeError(f"操作参数不是合法 JSON: {raw_params}") from exc
        if not isinstance(params, dict):
            raise argparse.ArgumentTypeError("操作参数必须是 JSON 对象")
    return DataOpsOperation(type=op_type, params=params)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="InsightOS - 带版本管理的表格数据运维引擎")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start_parser = subparsers.add_parser("start", help="启动 HTTP 服务")
    start_parser.add_argument("--host", default="127.0.0.1", help="监听地址")
    start_parser.add_argument("--port", type=int, default=8000, help="监听端口")
    start_parser.add_argument("--reload", action="store_true", help="开发模式热重载")
    start_parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="日志级别",
    )
    start_parser.set_defaults(func=_cmd_start)

    inspect_parser = subparsers.add_parser("inspect", help="解析文件并输出列定义与内容指纹")
    inspect_parser.add_argument("file", type=Path, help="CSV / JSON 文件路径")
    inspect_parser.set_defaults(func=_cmd_inspect)

    transform_parser = subparsers.add_parser("transform", help="对文件执行变换计划")
    transform_parser.add_argument("file", type=Path, help="CSV / JSON 文件路径")
    transform_parser.add_argument(
        "--op",
        dest="operations",
        action="append",
        type=_parse_operation,
        required=True,
        help='操作，可重复：TYPE 或 TYPE:{"param": ...}，如 DELETE_ROWS:{"indices":[0]}',
    )
    transform_parser.add_argument("--summary", default=None, help="版本变更描述")
    transform_parser.add_argument(
        "-o", "--output", type=Path, help="结果写出路径（.csv 或 .json），默认不写出"
    )
    transform_parser.set_defaults(func=_cmd_transform)

    return parser


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(path: Path) -> DatasetSnapshot:
    from insightos.dataops.ingestion import build_snapshot, process_file

    ingested = process_file(path.name, path.read_bytes())
    return build_snapshot(ingested)


def _write(snapshot: DatasetSnapshot, path: Path) -> None:
    if path.suffix.lower() == ".json":
        path.write_text(json.dumps(snapshot.rows, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        return
    df = pd.DataFrame(
        [[row.get(name) for name in snapshot.column_names] for row in snapshot.rows],
        columns=snapshot.column_names,
    )
    df.to_csv(path, index=False)


def _cmd_start(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        print("缺少依赖，请先运行: pip install -e .")
        return 1

    uvicorn.run(
        "insightos.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        reload_dirs=["src"] if args.reload else None,
        log_level=args.log_level,
    )
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    if not args.file.exists():
        print(f"文件不存在: {args.file}")
        return 1
    try:
        snapshot = _load(args.file)
    except DataOpsError as exc:
        print(f"解析失败: {exc.detail}")
        return 1

    result = {
        "file_name": snapshot.file_name,
        "rows": snapshot.row_count,
        "version_hash": snapshot.version_hash,
        "columns": [{"name": c.name, "type": c.type.value, "example": c.example} for c in snapshot.columns],
    }
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


def _cmd_transform(args: argparse.Namespace) -> int:
    from insightos.activity_log import ActivityLog
    from insightos.dataops.runner import TransformationRunner

    if not args.file.exists():
        print(f"文件不存在: {args.file}")
        return 1

    activity_log = ActivityLog()
    try:
        snapshot = _load(args.file)
        plan = TransformationPlan(operations=args.operations)
        updated = TransformationRunner(activity_log).execute(snapshot, plan, args.summary)
    except DataOpsError as exc:
        print(f"执行失败: {exc.detail}")
        return 1

    result = {
        "file_name": updated.file_name,
        "version": updated.version,
        "version_hash": updated.version_hash,
        "rows_before": snapshot.row_count,
        "rows_after": updated.row_count,
        "modifications": updated.history[-1].modifications_count,
    }
    if args.output:
        _write(updated, args.output)
        result["output"] = str(args.output)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])
    _configure_logging()
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        print("已中断。")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
