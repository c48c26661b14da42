"""上传文件解析：CSV / JSON → 行 + 列定义，以及初始快照构建。"""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import pandas as pd

from insightos.config import settings
from insightos.dataops.cells import coerce_scalar
from insightos.dataops.executor import make_row_id, normalize_date_value
from insightos.dataops.hashing import hash_rows
from insightos.exceptions import IngestionError
from insightos.models.dataset import (
    ColumnSchema,
    ColumnType,
    DatasetSnapshot,
    DatasetVersion,
    utcnow,
)

logger = logging.getLogger(__name__)

INITIAL_UPLOAD = "Initial Upload"


@dataclass
class ParseResult:
    """解析结果。"""

    rows: list[dict[str, Any]] = field(default_factory=list)
    columns: list[ColumnSchema] = field(default_factory=list)


@dataclass
class IngestedFile(ParseResult):
    file_name: str = ""


def _strip_quotes(text: str) -> str:
    value = text.strip()
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value


def _infer_csv_type(header: str, sample: Any) -> ColumnType:
    if isinstance(sample, (int, float)) and not isinstance(sample, bool):
        return ColumnType.NUMBER
    if "date" in header.lower():
        return ColumnType.DATE
    if isinstance(sample, str) and sample and normalize_date_value(sample) is not None:
        return ColumnType.DATE
    return ColumnType.STRING


def parse_csv(text: str) -> ParseResult:
    """解析 CSV 文本。

    首个非空行为表头；值去除首尾空白与引号，能无损解析为数字的转换为数字。
    字段数与表头不一致的行被跳过。
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise IngestionError("Empty CSV file")

    # pandas 会用空串补齐字段不足的行，因此先按行统计字段数再交给 read_csv
    records = list(csv.reader(lines, skipinitialspace=True))
    width = len(records[0])
    kept = [line for line, fields in zip(lines[1:], records[1:]) if len(fields) == width]
    skipped = len(lines) - 1 - len(kept)
    if skipped:
        logger.info("CSV 中 %d 行字段数与表头不一致，已跳过", skipped)

    try:
        df = pd.read_csv(
            io.StringIO("\n".join([lines[0], *kept])),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise IngestionError(f"Malformed CSV file: {exc}") from exc

    headers = [_strip_quotes(str(col)) for col in df.columns]
    rows: list[dict[str, Any]] = []
    for record in df.itertuples(index=False, name=None):
        row: dict[str, Any] = {}
        for header, raw in zip(headers, record):
            row[header] = coerce_scalar(_strip_quotes(str(raw)))
        rows.append(row)

    columns: list[ColumnSchema] = []
    for header in headers:
        sample = rows[0][header] if rows else ""
        columns.append(
            ColumnSchema(name=header, type=_infer_csv_type(header, sample), example=sample)
        )
    return ParseResult(rows=rows, columns=columns)


def _display_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _infer_json_type(value: Any) -> ColumnType:
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, (int, float)):
        return ColumnType.NUMBER
    return ColumnType.STRING


def _flatten_cell(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return value


def parse_json(text: str) -> ParseResult:
    """解析 JSON：对象数组，或单个对象（视为一行）。"""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise IngestionError("Invalid JSON") from exc

    records = data if isinstance(data, list) else [data]
    if not records:
        raise IngestionError("JSON file contains no records")
    if not all(isinstance(item, dict) for item in records):
        raise IngestionError("JSON records must be objects")

    rows = [{str(k): _flatten_cell(v) for k, v in item.items()} for item in records]
    first = records[0]
    columns = [
        ColumnSchema(
            name=str(key),
            type=_infer_json_type(value),
            example=_display_value(value)[:20],
        )
        for key, value in first.items()
    ]
    return ParseResult(rows=rows, columns=columns)


_PARSERS: dict[str, Callable[[str], ParseResult]] = {
    "csv": parse_csv,
    "json": parse_json,
}


def process_file(file_name: str, content: str | bytes) -> IngestedFile:
    """按扩展名解析上传文件，失败时抛出 IngestionError。"""
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    parser = _PARSERS.get(ext)
    if parser is None or ext not in settings.allowed_extensions_list:
        raise IngestionError("Unsupported file type. Please upload CSV or JSON.")

    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise IngestionError("File is not valid UTF-8 text") from exc
    else:
        text = content

    result = parser(text)
    logger.info("已解析 %s: %d 行 × %d 列", file_name, len(result.rows), len(result.columns))
    return IngestedFile(rows=result.rows, columns=result.columns, file_name=file_name)


def build_snapshot(
    ingested: IngestedFile,
    *,
    dataset_id: str | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> DatasetSnapshot:
    """由解析结果构建版本 1 快照，附带 "Initial Upload" 历史条目。"""
    now = clock()
    rows = ingested.rows
    return DatasetSnapshot(
        id=dataset_id or uuid.uuid4().hex[:9],
        file_name=ingested.file_name,
        columns=ingested.columns,
        rows=rows,
        row_ids=[make_row_id(seq) for seq in range(1, len(rows) + 1)],
        next_row_seq=len(rows) + 1,
        version=1,
        version_hash=hash_rows(rows),
        history=[
            DatasetVersion(
                version=1,
                timestamp=now,
                change_description=INITIAL_UPLOAD,
                row_count=len(rows),
            )
        ],
        last_modified=now,
        uploaded_at=now,
    )
