"""全局 pytest 配置 -- 临时 SQLite 数据库、TaskStore、可控时钟"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
import pytest
import pytest_asyncio
from reviewloop.core.models import Task, TaskStatus
from reviewloop.core.store.sqlite_init import init_db
from reviewloop.core.store.task_store import SqliteTaskStore

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的时钟，替代 datetime.now(UTC)"""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    conn = await aiosqlite.connect(str(tmp_path / "test.db"))
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def task_store(db_conn: aiosqlite.Connection) -> SqliteTaskStore:
    return SqliteTaskStore(db_conn)


@pytest.fixture
def make_task(clock: FakeClock) -> Callable[..., Task]:
    """构造 Task，updated_at 默认取时钟当前时间，可用 age 指定更早时间"""

    def _make(
        task_id: str,
        status: TaskStatus = TaskStatus.VALIDATING,
        *,
        title: str | None = None,
        assignee: str | None = "dev",
        reviewer: str | None = "rev",
        age: timedelta = timedelta(0),
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        ts = clock.now - age
        return Task(
            task_id=task_id,
            title=title or f"Task {task_id}",
            status=status,
            assignee=assignee,
            reviewer=reviewer,
            created_at=ts,
            updated_at=ts,
            metadata=metadata or {},
        )

    return _make
