"""TaskStore SQLite 实现

提供 Sweep Engine 消费的窄接口：
- list_tasks / get_task: 读取
- update_task: 常规更新（含最小状态流转校验）
- patch_task_metadata: 轻量 metadata 补丁（绕过流转校验，不更新 updated_at）
- resolve_task_id: id 或前缀别名解析
"""

import json
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

from ..models.enums import TaskStatus, validate_transition
from ..models.task import Task, TaskLookup, TaskPatch
from .exceptions import InvalidTransitionError, TaskNotFoundError

log = structlog.get_logger()

_COLUMNS = "task_id, title, status, assignee, reviewer, created_at, updated_at, metadata"


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        try:
            await self._conn.execute(
                f"""
                INSERT INTO tasks ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.title,
                    task.status.value,
                    task.assignee,
                    task.reviewer,
                    task.created_at.isoformat(),
                    task.updated_at.isoformat(),
                    json.dumps(task.metadata, ensure_ascii=False),
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, status: TaskStatus | str | None = None) -> list[Task]:
        """查询任务列表，支持按状态筛选，按 updated_at 倒序"""
        if status:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE status = ? ORDER BY updated_at DESC",
                (str(status),),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks ORDER BY updated_at DESC"
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_task(self, task_id: str, patch: TaskPatch) -> Task | None:
        """更新任务（仅更新 patch 中显式设置的字段）

        Returns:
            更新后的 Task，任务不存在返回 None

        Raises:
            InvalidTransitionError: 状态流转不合法
        """
        task = await self.get_task(task_id)
        if task is None:
            return None

        updates: dict[str, Any] = {}
        fields = patch.model_fields_set
        if "status" in fields and patch.status is not None:
            if not validate_transition(task.status, patch.status):
                raise InvalidTransitionError(task_id, task.status, patch.status)
            updates["status"] = patch.status
        if "assignee" in fields:
            updates["assignee"] = patch.assignee
        if "reviewer" in fields:
            updates["reviewer"] = patch.reviewer
        if "metadata" in fields and patch.metadata is not None:
            updates["metadata"] = patch.metadata
        updates["updated_at"] = datetime.now(UTC)

        updated = task.model_copy(update=updates)
        try:
            await self._conn.execute(
                """
                UPDATE tasks
                SET status = ?, assignee = ?, reviewer = ?, updated_at = ?, metadata = ?
                WHERE task_id = ?
                """,
                (
                    updated.status.value,
                    updated.assignee,
                    updated.reviewer,
                    updated.updated_at.isoformat(),
                    json.dumps(updated.metadata, ensure_ascii=False),
                    task_id,
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise
        return updated

    async def patch_task_metadata(self, task_id: str, partial: dict[str, Any]) -> None:
        """合并 metadata 补丁，值为 None 的 key 被删除

        轻量路径：不做状态流转校验，也不更新 updated_at，
        仅用于升级状态等簿记信息。

        Raises:
            TaskNotFoundError: 任务不存在
        """
        cursor = await self._conn.execute(
            "SELECT metadata FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise TaskNotFoundError(task_id)

        metadata = json.loads(row[0] or "{}")
        for key, value in partial.items():
            if value is None:
                metadata.pop(key, None)
            else:
                metadata[key] = value

        try:
            await self._conn.execute(
                "UPDATE tasks SET metadata = ? WHERE task_id = ?",
                (json.dumps(metadata, ensure_ascii=False), task_id),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def resolve_task_id(self, id_or_alias: str) -> TaskLookup:
        """解析任务 id：先精确匹配，再尝试唯一前缀匹配"""
        task = await self.get_task(id_or_alias)
        if task is not None:
            return TaskLookup(task=task, resolved_id=task.task_id, match_type="exact")

        escaped = (
            id_or_alias.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id LIKE ? ESCAPE '\\' LIMIT 2",
            (f"{escaped}%",),
        )
        rows = await cursor.fetchall()
        if len(rows) == 1:
            task = self._row_to_task(rows[0])
            return TaskLookup(task=task, resolved_id=task.task_id, match_type="prefix")
        if len(rows) > 1:
            log.debug("task_alias_ambiguous", alias=id_or_alias)
            return TaskLookup(match_type="ambiguous")
        return TaskLookup()

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row[0],
            title=row[1],
            status=row[2],
            assignee=row[3],
            reviewer=row[4],
            created_at=datetime.fromisoformat(row[5]),
            updated_at=datetime.fromisoformat(row[6]),
            metadata=json.loads(row[7] or "{}"),
        )
