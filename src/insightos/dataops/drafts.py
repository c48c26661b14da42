"""草稿/提交控制器。

把“已提出但未保存”的修改与“已提交、全局可见”的版本分开：
交互式编辑只在草稿上产生临时版本，显式保存后才成为新的已提交快照，
放弃则整体回退到最后一次提交的快照。

状态（针对当前激活的数据集）：
- Clean：草稿与已提交快照一致，``has_unsaved_changes=False``；
- Dirty：草稿已偏离，``has_unsaved_changes=True``。
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from insightos.activity_log import AGENT_SYSTEM, ActivityLog, LogType
from insightos.dataops.runner import TransformationRunner
from insightos.exceptions import DatasetNotFound, DraftConflict, NoActiveDataset
from insightos.models.dataset import CommitNotice, DatasetListItem, DatasetSnapshot
from insightos.models.plan import OperationType, TransformationPlan

logger = logging.getLogger(__name__)

CommitListener = Callable[[CommitNotice], None]


class DraftController:
    """维护已提交快照缓存、数据集列表、激活指针与草稿。"""

    def __init__(
        self,
        runner: TransformationRunner | None = None,
        activity_log: ActivityLog | None = None,
    ):
        self._runner = runner if runner is not None else TransformationRunner(activity_log)
        self._log = activity_log
        self._cache: dict[str, DatasetSnapshot] = {}
        self._items: dict[str, DatasetListItem] = {}
        self._active: DatasetSnapshot | None = None
        self._draft: DatasetSnapshot | None = None
        self._has_unsaved_changes = False
        self._listeners: list[CommitListener] = []
        self._state_lock = threading.RLock()
        self._locks: dict[str, threading.RLock] = {}

    # ---- 锁 ----

    @contextmanager
    def _locked(self, dataset_id: str) -> Iterator[None]:
        """按数据集 ID 串行化读-改-写。

        激活指针、草稿与脏标记由所有数据集共享，因此整个过程中同时持有
        状态锁。加锁顺序固定为先数据集锁、后状态锁。
        """
        with self._state_lock:
            lock = self._locks.setdefault(dataset_id, threading.RLock())
        with lock, self._state_lock:
            yield

    @contextmanager
    def _active_session(self) -> Iterator[DatasetSnapshot]:
        """锁定当前激活数据集；等锁期间激活目标被切换则拒绝执行。"""
        active = self._require_active()
        with self._locked(active.id):
            current = self._require_active()
            if current.id != active.id:
                raise DraftConflict(
                    f"Active dataset changed to '{current.file_name}' while the operation was waiting; retry"
                )
            yield current

    # ---- 查询 ----

    @property
    def active(self) -> DatasetSnapshot | None:
        return self._active

    @property
    def draft(self) -> DatasetSnapshot | None:
        return self._draft

    @property
    def has_unsaved_changes(self) -> bool:
        return self._has_unsaved_changes

    def list_datasets(self) -> list[DatasetListItem]:
        with self._state_lock:
            return [item.model_copy() for item in self._items.values()]

    def get_committed(self, dataset_id: str) -> DatasetSnapshot:
        """返回已提交快照的深拷贝。"""
        with self._state_lock:
            snapshot = self._cache.get(dataset_id)
        if snapshot is None:
            raise DatasetNotFound(dataset_id)
        return snapshot.deep_copy()

    def subscribe(self, listener: CommitListener) -> Callable[[], None]:
        """订阅提交通知，返回取消订阅函数。"""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---- 生命周期 ----

    def register(self, snapshot: DatasetSnapshot) -> DatasetListItem:
        """登记新上传的数据集；首个数据集自动激活。"""
        with self._state_lock:
            is_first = not self._items
            self._cache[snapshot.id] = snapshot.deep_copy()
            self._items[snapshot.id] = DatasetListItem.from_snapshot(snapshot)
        if is_first:
            self.activate(snapshot.id)
        return self._items[snapshot.id].model_copy()

    def activate(self, dataset_id: str) -> DatasetSnapshot:
        """激活数据集。

        激活的是缓存快照的深拷贝，修改激活副本不会影响缓存原件；
        若当前草稿属于其他数据集，草稿随之重置。
        """
        with self._locked(dataset_id):
            with self._state_lock:
                cached = self._cache.get(dataset_id)
                if cached is None:
                    raise DatasetNotFound(dataset_id)
                self._active = cached.deep_copy()
                for item_id, item in self._items.items():
                    item.active = item_id == dataset_id
            if self._draft is None or self._draft.id != dataset_id:
                if self._has_unsaved_changes:
                    logger.info("切换数据集，丢弃 %s 的未保存草稿", self._draft.id if self._draft else "-")
                self._draft = self._active.deep_copy()
                self._has_unsaved_changes = False
            self._record(f"Activated dataset {cached.file_name}", "info")
            return self._active

    # ---- 草稿编辑 ----

    def _require_active(self) -> DatasetSnapshot:
        if self._active is None:
            raise NoActiveDataset()
        return self._active

    def apply(self, plan: TransformationPlan, summary: str | None = None) -> DatasetSnapshot:
        """在当前草稿上执行计划，结果作为新的草稿保存。"""
        with self._active_session() as active:
            base = self._draft if self._draft is not None and self._draft.id == active.id else active
            updated = self._runner.execute(base, plan, summary)
            self._draft = updated
            self._has_unsaved_changes = True
            return updated

    def clean_nulls(self) -> DatasetSnapshot:
        return self.apply(TransformationPlan.single(OperationType.CLEAN_NULLS), "Removed rows with NULL values")

    def fill_nulls(self) -> DatasetSnapshot:
        return self.apply(TransformationPlan.single(OperationType.FILL_NULLS), "Filled NULL values")

    def normalize_dates(self) -> DatasetSnapshot:
        return self.apply(TransformationPlan.single(OperationType.NORMALIZE_DATES), "Normalized date formats")

    def deduplicate(self) -> DatasetSnapshot:
        return self.apply(TransformationPlan.single(OperationType.DEDUPLICATE), "Removed duplicate rows")

    def delete_rows(
        self,
        indices: list[int] | None = None,
        row_ids: list[str] | None = None,
    ) -> DatasetSnapshot:
        params: dict[str, Any] = {}
        if indices:
            params["indices"] = list(indices)
        if row_ids:
            params["row_ids"] = list(row_ids)
        count = len(set(indices or [])) + len(set(row_ids or []))
        return self.apply(
            TransformationPlan.single(OperationType.DELETE_ROWS, **params),
            f"Deleted {count} rows",
        )

    def add_row(self, row: dict[str, Any] | None = None) -> DatasetSnapshot:
        """新增一行；未给出的列按列类型补默认值（数值 0，其余空串）。"""
        return self.apply(TransformationPlan.single(OperationType.ADD_ROW, row=row or {}), "Added new row")

    def edit_cell(
        self,
        col_name: str,
        value: Any,
        *,
        row_index: int | None = None,
        row_id: str | None = None,
    ) -> DatasetSnapshot:
        params: dict[str, Any] = {"col_name": col_name, "value": value}
        if row_id is not None:
            params["row_id"] = row_id
        else:
            params["row_index"] = row_index
        return self.apply(TransformationPlan.single(OperationType.EDIT_CELL, **params), "Edited cell value")

    # ---- 提交 / 放弃 ----

    def save(self) -> CommitNotice | None:
        """把草稿提升为新的已提交快照。无未保存修改时不做任何事。"""
        with self._active_session() as active:
            if not self._has_unsaved_changes or self._draft is None or self._draft.id != active.id:
                logger.debug("没有未保存的修改，跳过提交")
                return None
            return self._commit(self._draft)

    def discard(self) -> DatasetSnapshot:
        """丢弃草稿，回到最后一次提交的快照；临时历史不会并入。"""
        with self._active_session() as active:
            self._draft = active.deep_copy()
            self._has_unsaved_changes = False
            self._record(f"Discarded draft changes for {active.file_name}", "info")
            return self._draft

    def commit_direct(self, plan: TransformationPlan, summary: str | None = None) -> CommitNotice:
        """直接对已提交快照执行计划并立即提交（对话代理的一步式操作）。"""
        with self._active_session() as active:
            if self._has_unsaved_changes:
                raise DraftConflict()
            updated = self._runner.execute(active, plan, summary)
            return self._commit(updated)

    def _commit(self, snapshot: DatasetSnapshot) -> CommitNotice:
        committed = snapshot.model_copy(update={"is_modified": False})
        with self._state_lock:
            self._cache[committed.id] = committed.deep_copy()
            item = self._items[committed.id]
            item.rows = committed.row_count
            item.version = committed.version
        self._active = committed.deep_copy()
        self._draft = committed.deep_copy()
        self._has_unsaved_changes = False

        notice = CommitNotice(
            dataset_id=committed.id,
            version=committed.version,
            version_hash=committed.version_hash,
            row_count=committed.row_count,
        )
        self._record(
            f"Dataset committed: v{committed.version}",
            "action",
            metadata=notice.model_dump(),
        )
        for listener in list(self._listeners):
            listener(notice)
        return notice

    def _record(self, message: str, type: LogType, metadata: dict[str, Any] | None = None) -> None:
        if self._log is not None:
            self._log.add(AGENT_SYSTEM, message, type, metadata)
