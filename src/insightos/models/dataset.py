"""数据集快照数据模型。

快照是某个数据集在某一版本下的不可变值（约定不可变）：
变换总是产生新的快照，从不原地修改。
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ColumnType(str, Enum):
    """列的推断语义类型。"""

    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class ColumnSchema(BaseModel):
    """列定义。顺序只影响展示。"""

    name: str = Field(min_length=1, description="列名，数据集内唯一")
    type: ColumnType = Field(default=ColumnType.STRING, description="推断类型")
    example: Any = Field(default="", description="示例值（展示/占位用）")


class DatasetVersion(BaseModel):
    """版本历史条目。

    ``version`` 为被取代的版本号，``row_count`` 为该版本（变换前）的行数。
    首次上传条目为 version=1、描述 "Initial Upload"。
    """

    version: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=utcnow)
    change_description: str
    row_count: int = Field(ge=0)
    modifications_count: Optional[int] = None


class DatasetSnapshot(BaseModel):
    """数据集快照：某一版本下的行、列与历史。"""

    id: str
    file_name: str
    columns: list[ColumnSchema] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_ids: list[str] = Field(default_factory=list, description="与 rows 平行的稳定行标识")
    next_row_seq: int = Field(default=1, ge=1, description="下一个新行标识的序号")
    version: int = Field(default=1, ge=1)
    version_hash: str
    history: list[DatasetVersion] = Field(default_factory=list)
    last_modified: datetime = Field(default_factory=utcnow)
    uploaded_at: Optional[datetime] = None
    is_modified: bool = False

    @model_validator(mode="after")
    def _check_row_ids(self) -> DatasetSnapshot:
        if len(self.row_ids) != len(self.rows):
            raise ValueError(
                f"row_ids 长度 ({len(self.row_ids)}) 与 rows 长度 ({len(self.rows)}) 不一致"
            )
        if len(set(self.row_ids)) != len(self.row_ids):
            raise ValueError("row_ids 存在重复标识")
        return self

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def deep_copy(self) -> DatasetSnapshot:
        """深拷贝快照。

        经由 ``model_validate`` 重新校验，缓存中被序列化为字符串的时间戳
        会被还原为 ``datetime``。
        """
        return DatasetSnapshot.model_validate(copy.deepcopy(self.model_dump()))


class DatasetListItem(BaseModel):
    """数据集列表元数据。"""

    id: str
    name: str
    rows: int = 0
    version: int = 1
    uploaded_at: datetime = Field(default_factory=utcnow)
    active: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: DatasetSnapshot, *, active: bool = False) -> DatasetListItem:
        return cls(
            id=snapshot.id,
            name=snapshot.file_name,
            rows=snapshot.row_count,
            version=snapshot.version,
            uploaded_at=snapshot.uploaded_at or snapshot.last_modified,
            active=active,
        )


class CommitNotice(BaseModel):
    """提交通知：下游消费者据此判断分析缓存是否过期。"""

    dataset_id: str
    version: int
    version_hash: str
    row_count: int
