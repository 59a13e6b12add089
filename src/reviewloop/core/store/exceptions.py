"""Task Store 异常体系"""


class TaskStoreError(Exception):
    """Task Store 基础异常"""


class TaskNotFoundError(TaskStoreError):
    """任务不存在"""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransitionError(TaskStoreError, ValueError):
    """非法状态流转"""

    def __init__(self, task_id: str, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Cannot transition task {task_id} from {from_status} to {to_status}"
        )
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
