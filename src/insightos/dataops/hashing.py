"""内容指纹：行集序列化与 32 位滚动哈希。

仅用于廉价的相等/过期判断（例如“分析结果是否基于当前内容”），
不具备密码学安全性，也不抗碰撞。
"""

from __future__ import annotations

import json
import math
from typing import Any, Iterable


def content_hash(content: str) -> str:
    """32 位多项式滚动哈希，按 UTF-16 码元迭代。

    每步 ``h = h * 31 + unit`` 并截断为有符号 32 位，结果取绝对值的十六进制。
    空串返回 ``"0"``。
    """
    if not content:
        return "0"
    data = content.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


def _json_safe(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer() and abs(value) < 1e21:
            return int(value)
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def serialize_rows(rows: Iterable[dict[str, Any]]) -> str:
    """紧凑 JSON 序列化，键顺序保持行内插入顺序。

    整数值浮点输出为整数、非有限浮点输出为 null，与浏览器端
    ``JSON.stringify`` 的结果一致。
    """
    return json.dumps(
        [_json_safe(row) for row in rows],
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )


def serialize_row(row: dict[str, Any]) -> str:
    """单行签名，用于结构相等判断。"""
    return json.dumps(_json_safe(row), ensure_ascii=False, separators=(",", ":"), default=str)


def hash_rows(rows: Iterable[dict[str, Any]]) -> str:
    return content_hash(serialize_rows(rows))
