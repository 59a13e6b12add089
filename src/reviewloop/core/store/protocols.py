"""Store Protocol 接口定义

定义 Sweep Engine 消费的 TaskStore 抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Any, Protocol

from ..models.enums import TaskStatus
from ..models.task import Task, TaskLookup, TaskPatch


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(self, status: TaskStatus | str | None = None) -> list[Task]:
        """查询任务列表，支持按状态筛选"""
        ...

    async def update_task(self, task_id: str, patch: TaskPatch) -> Task | None:
        """更新任务，任务不存在返回 None"""
        ...

    async def patch_task_metadata(self, task_id: str, partial: dict[str, Any]) -> None:
        """轻量 metadata 补丁（None 值删除 key）"""
        ...

    async def resolve_task_id(self, id_or_alias: str) -> TaskLookup:
        """解析任务 id 或别名"""
        ...
