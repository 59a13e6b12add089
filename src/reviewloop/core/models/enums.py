"""枚举定义 -- 评审流水线任务状态

包含 TaskStatus 状态机，VALID_TRANSITIONS 合法流转映射，
以及 ACTIVE_STATES / COMPLETED_STATES 状态分组。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机：todo -> doing -> validating -> done/blocked/cancelled"""

    TODO = "todo"
    DOING = "doing"
    VALIDATING = "validating"
    DONE = "done"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


# 合法状态流转（完整生命周期校验由任务系统负责，这里只做最小约束）
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.TODO: {TaskStatus.DOING, TaskStatus.BLOCKED, TaskStatus.CANCELLED},
    TaskStatus.DOING: {
        TaskStatus.TODO,
        TaskStatus.VALIDATING,
        TaskStatus.BLOCKED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.VALIDATING: {
        TaskStatus.TODO,
        TaskStatus.DOING,
        TaskStatus.DONE,
        TaskStatus.BLOCKED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.BLOCKED: {TaskStatus.TODO, TaskStatus.DOING, TaskStatus.CANCELLED},
    # 已完成/已取消的任务只能重新打开
    TaskStatus.DONE: {TaskStatus.TODO},
    TaskStatus.CANCELLED: {TaskStatus.TODO},
}

# 仍在占用外部变更（PR）的状态
ACTIVE_STATES: frozenset[TaskStatus] = frozenset(
    {
        TaskStatus.TODO,
        TaskStatus.DOING,
        TaskStatus.VALIDATING,
        TaskStatus.BLOCKED,
    }
)

COMPLETED_STATES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.DONE, TaskStatus.CANCELLED}
)


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法（或状态未变化），否则 False
    """
    if from_status == to_status:
        return True
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
