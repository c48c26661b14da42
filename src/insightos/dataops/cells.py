"""单元格取值分类与数值转换。

行是以列名为键的标量字典。这里把“空字符串也算缺失”这类规则
集中为显式的分类函数，而不是散落在各处的真值判断。
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Any

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")


class CellKind(str, Enum):
    """单元格取值标签。"""

    MISSING = "missing"
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING = "string"


def classify_cell(value: Any) -> CellKind:
    """返回单元格的取值标签。None、空字符串与 NaN 均视为缺失。"""
    if value is None:
        return CellKind.MISSING
    if isinstance(value, bool):
        return CellKind.BOOLEAN
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return CellKind.MISSING
        return CellKind.NUMBER
    if isinstance(value, str) and value == "":
        return CellKind.MISSING
    return CellKind.STRING


def is_missing(value: Any) -> bool:
    return classify_cell(value) is CellKind.MISSING


def parse_number(text: str) -> int | float | None:
    """按十进制字面量解析数字，无法解析时返回 None。"""
    candidate = text.strip()
    if not candidate or not _NUMBER_RE.match(candidate):
        return None
    if _INT_RE.match(candidate):
        return int(candidate)
    number = float(candidate)
    if not math.isfinite(number):
        return None
    return number


def coerce_scalar(value: Any) -> Any:
    """字符串若能解析为数字则转换为数字，否则原样返回。"""
    if isinstance(value, str):
        number = parse_number(value)
        if number is not None:
            return number
    return value


def to_number(value: Any) -> float:
    """宽松数值转换，用于统计：无法转换的值计为 0。"""
    kind = classify_cell(value)
    if kind is CellKind.NUMBER:
        return float(value)
    if kind is CellKind.BOOLEAN:
        return 1.0 if value else 0.0
    if kind is CellKind.STRING:
        number = parse_number(str(value))
        return float(number) if number is not None else 0.0
    return 0.0
