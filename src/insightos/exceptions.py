"""数据运维引擎的异常层级。

库代码只抛出这些类型化异常；HTTP 层与 CLI 负责转换为响应或退出码。
"""

from __future__ import annotations


class DataOpsError(Exception):
    """所有数据运维错误的基类。"""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class IngestionError(DataOpsError):
    """源文件格式错误、为空或不受支持。"""

    def __init__(self, detail: str = "File ingestion failed"):
        super().__init__(detail)


class SafetyViolation(DataOpsError):
    """破坏性操作缺少明确目标。"""

    def __init__(
        self,
        detail: str = "Safety Check Failed: Cannot execute destructive DELETE without specific target.",
    ):
        super().__init__(detail)


class PlanValidationError(DataOpsError):
    """操作参数不满足执行器前置条件。"""

    def __init__(self, detail: str = "Invalid transformation plan"):
        super().__init__(detail)


class PlannerFailure(DataOpsError):
    """规划器未能给出可用的变换计划。"""

    def __init__(
        self,
        detail: str = "I understood the request but could not generate a valid transformation plan.",
    ):
        super().__init__(detail)


class DatasetNotFound(DataOpsError):
    """数据集 ID 不存在。"""

    def __init__(self, dataset_id: str):
        super().__init__(f"Dataset '{dataset_id}' not found")
        self.dataset_id = dataset_id


class DraftConflict(DataOpsError):
    """草稿存在未保存修改时拒绝直接提交。"""

    def __init__(self, detail: str = "Dataset has unsaved draft changes; save or discard them first"):
        super().__init__(detail)


class NoActiveDataset(DataOpsError):
    """当前没有激活的数据集。"""

    def __init__(self, detail: str = "No active dataset. Please upload a dataset first."):
        super().__init__(detail)
