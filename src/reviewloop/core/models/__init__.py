"""reviewloop Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    ACTIVE_STATES,
    COMPLETED_STATES,
    VALID_TRANSITIONS,
    TaskStatus,
    validate_transition,
)
from .task import Task, TaskLookup, TaskPatch

__all__ = [
    # 枚举
    "TaskStatus",
    # 状态机
    "VALID_TRANSITIONS",
    "ACTIVE_STATES",
    "COMPLETED_STATES",
    "validate_transition",
    # Task
    "Task",
    "TaskPatch",
    "TaskLookup",
]
