"""活动日志：有界、只追加的环形缓冲区。

由 Workspace 持有并显式传给需要写日志的组件，不使用模块级全局实例。
超出容量时丢弃最旧条目，仅作为无界增长保护。
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from insightos.config import settings

logger = logging.getLogger(__name__)

LogType = Literal["info", "action", "error"]

# 代理标识
AGENT_SYSTEM = "0"
AGENT_ORCHESTRATOR = "1"
AGENT_ANALYTICS = "2"
AGENT_DATAOPS = "3"

Listener = Callable[[list["ActivityEntry"]], None]

_LEVELS = {"info": logging.INFO, "action": logging.INFO, "error": logging.ERROR}


@dataclass
class ActivityEntry:
    """一条活动日志。"""

    agent_id: str
    message: str
    type: LogType = "info"
    metadata: dict[str, Any] | None = None
    correlation_id: str | None = None
    duration_ms: int | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "metadata": self.metadata,
            "correlation_id": self.correlation_id,
            "duration_ms": self.duration_ms,
        }


class ActivityLog:
    """有界活动日志，支持订阅。"""

    def __init__(self, max_entries: int | None = None):
        capacity = max_entries if max_entries is not None else settings.activity_log_max_entries
        self._entries: deque[ActivityEntry] = deque(maxlen=max(1, capacity))
        self._listeners: list[Listener] = []

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def add(
        self,
        agent_id: str,
        message: str,
        type: LogType = "info",
        metadata: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        duration_ms: int | None = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            agent_id=agent_id,
            message=message,
            type=type,
            metadata=metadata,
            correlation_id=correlation_id,
            duration_ms=duration_ms,
        )
        self._entries.append(entry)
        logger.log(_LEVELS.get(type, logging.INFO), "[agent %s] %s", agent_id, message)
        self._notify()
        return entry

    def entries(self) -> list[ActivityEntry]:
        """最新的条目在前。"""
        return list(reversed(self._entries))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册监听器并立即推送一次当前日志，返回取消订阅函数。"""
        self._listeners.append(listener)
        listener(self.entries())

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def clear(self) -> None:
        self._entries.clear()
        self._notify()

    @staticmethod
    def start_timer() -> float:
        return time.perf_counter()

    @staticmethod
    def end_timer(start: float) -> int:
        return round((time.perf_counter() - start) * 1000)

    def _notify(self) -> None:
        snapshot = self.entries()
        for listener in list(self._listeners):
            listener(snapshot)
