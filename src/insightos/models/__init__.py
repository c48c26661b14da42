"""数据模型模块。"""

from insightos.models.dataset import (
    ColumnSchema,
    ColumnType,
    CommitNotice,
    DatasetListItem,
    DatasetSnapshot,
    DatasetVersion,
)
from insightos.models.plan import (
    BULK_UPDATE,
    DataOpsOperation,
    DataOpsPreview,
    DataOpsRequest,
    OperationType,
    PlannerResponse,
    RowFilter,
    TransformationPlan,
)

__all__ = [
    "BULK_UPDATE",
    "ColumnSchema",
    "ColumnType",
    "CommitNotice",
    "DataOpsOperation",
    "DataOpsPreview",
    "DataOpsRequest",
    "DatasetListItem",
    "DatasetSnapshot",
    "DatasetVersion",
    "OperationType",
    "PlannerResponse",
    "RowFilter",
    "TransformationPlan",
]
