"""Task Domain Model

Task 由外部任务系统拥有，Sweep Engine 只读取并通过窄接口修补其 metadata。
metadata 是开放的 key -> value 字典，同时也是升级状态的唯一持久化来源。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import TaskStatus


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识")
    title: str = Field(default="", description="任务标题")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    assignee: str | None = Field(default=None, description="执行者")
    reviewer: str | None = Field(default=None, description="评审者")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    metadata: dict[str, Any] = Field(default_factory=dict, description="元数据字典")


class TaskPatch(BaseModel):
    """任务更新请求 -- 仅包含需要修改的字段

    metadata 为整体替换（调用方负责合并旧值）。
    """

    status: TaskStatus | None = None
    assignee: str | None = None
    reviewer: str | None = None
    metadata: dict[str, Any] | None = None


class TaskLookup(BaseModel):
    """resolve_task_id 的返回结果"""

    task: Task | None = Field(default=None, description="解析到的任务，未找到为 None")
    resolved_id: str | None = Field(default=None, description="解析后的完整 task_id")
    match_type: str = Field(
        default="none",
        description="匹配方式：exact / prefix / ambiguous / none",
    )
