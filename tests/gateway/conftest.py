"""gateway 测试配置 -- 绕过 lifespan 手动组装 app.state"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from reviewloop.core.store import create_store_group
from reviewloop.sweeper import (
    DigestEscalator,
    DriftReportGenerator,
    LivePrState,
    LogNotificationChannel,
    PeriodicRunner,
    PrState,
    SweeperConfig,
    SweepOrchestrator,
)


class StaticPrChecker:
    """所有 PR 返回同一状态"""

    def __init__(self, state: PrState = PrState.OPEN) -> None:
        self.state = state

    async def check_live_state(self, pr_url: str) -> LivePrState:
        return LivePrState(state=self.state)


@pytest_asyncio.fixture
async def test_app(tmp_path: Path, clock):
    from reviewloop.gateway.main import create_app

    app = create_app()

    # 手动初始化（绕过 lifespan）
    store_group = await create_store_group(str(tmp_path / "test.db"))
    config = SweeperConfig()
    notifier = LogNotificationChannel()
    orchestrator = SweepOrchestrator(store_group.task_store, notifier, config=config, clock=clock)
    digest = DigestEscalator(notifier, config)

    app.state.store_group = store_group
    app.state.sweeper_config = config
    app.state.notifier = notifier
    app.state.orchestrator = orchestrator
    app.state.digest = digest
    app.state.runner = PeriodicRunner(orchestrator, digest)
    app.state.drift_report_generator = DriftReportGenerator(
        store_group.task_store, StaticPrChecker(), config, clock=clock
    )

    yield app

    await app.state.runner.stop()
    await store_group.conn.close()


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
