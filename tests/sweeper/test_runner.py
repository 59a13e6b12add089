"""PeriodicRunner 测试

测试内容：
1. run_once 执行扫描 + 摘要
2. 扫描异常被捕获，定时器继续
3. start 幂等、stop 停止循环
4. 两轮扫描不重叠
5. 手动触发与定时扫描串行执行
"""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from reviewloop.sweeper.config import SweeperConfig
from reviewloop.sweeper.digest import DigestEscalator
from reviewloop.sweeper.escalation import ESCALATION_COUNT_KEY
from reviewloop.sweeper.models import SweepResult, SweepViolation, ViolationType
from reviewloop.sweeper.notifications import LogNotificationChannel
from reviewloop.sweeper.orchestrator import SweepOrchestrator
from reviewloop.sweeper.runner import PeriodicRunner
from reviewloop.sweeper.timeutil import to_epoch_ms


def _result(violations: list[SweepViolation] | None = None) -> SweepResult:
    return SweepResult(timestamp=datetime.now(UTC), violations=violations or [])


def _orchestrator(sweep: AsyncMock) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.sweep = sweep
    orchestrator.wait_background = AsyncMock()
    return orchestrator


class TestRunOnce:
    """单轮执行"""

    async def test_sweep_then_digest(self):
        violation = SweepViolation(
            task_id="t", title="t", type=ViolationType.ORPHAN_PR, age_minutes=1, message="m"
        )
        result = _result([violation])
        digest = AsyncMock()
        runner = PeriodicRunner(_orchestrator(AsyncMock(return_value=result)), digest)

        assert await runner.run_once() is result
        digest.escalate.assert_awaited_once_with([violation])

    async def test_sweep_failure_returns_none(self):
        digest = AsyncMock()
        runner = PeriodicRunner(
            _orchestrator(AsyncMock(side_effect=RuntimeError("boom"))), digest
        )

        assert await runner.run_once() is None
        digest.escalate.assert_not_awaited()

    async def test_digest_failure_is_caught(self):
        digest = AsyncMock()
        digest.escalate.side_effect = RuntimeError("boom")
        runner = PeriodicRunner(_orchestrator(AsyncMock(return_value=_result())), digest)
        assert await runner.run_once() is None


class TestLoop:
    """定时循环"""

    async def test_keeps_ticking_after_failures(self):
        sweep = AsyncMock(side_effect=[RuntimeError("first"), _result(), _result(), _result()])
        runner = PeriodicRunner(
            _orchestrator(sweep), AsyncMock(), interval_s=0.01, initial_delay_s=0
        )

        runner.start()
        for _ in range(200):
            if sweep.await_count >= 3:
                break
            await asyncio.sleep(0.01)
        await runner.stop()

        assert sweep.await_count >= 3
        assert runner.running is False

    async def test_start_is_idempotent(self):
        runner = PeriodicRunner(
            _orchestrator(AsyncMock(return_value=_result())),
            AsyncMock(),
            interval_s=60,
            initial_delay_s=60,
        )
        runner.start()
        first = runner._task
        runner.start()
        assert runner._task is first
        assert runner.running is True

        await runner.stop()
        assert runner.running is False

    async def test_initial_delay(self):
        sweep = AsyncMock(return_value=_result())
        runner = PeriodicRunner(
            _orchestrator(sweep), AsyncMock(), interval_s=60, initial_delay_s=60
        )
        runner.start()
        await asyncio.sleep(0.05)
        assert sweep.await_count == 0
        await runner.stop()

    async def test_ticks_never_overlap(self):
        in_flight = 0
        max_in_flight = 0
        calls = 0

        async def slow_sweep():
            nonlocal in_flight, max_in_flight, calls
            in_flight += 1
            calls += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.03)
            in_flight -= 1
            return _result()

        runner = PeriodicRunner(
            _orchestrator(AsyncMock(side_effect=slow_sweep)),
            AsyncMock(),
            interval_s=0.01,
            initial_delay_s=0,
        )
        runner.start()
        await asyncio.sleep(0.2)
        await runner.stop()

        assert calls >= 2
        assert max_in_flight == 1

    async def test_stop_without_start(self):
        orchestrator = _orchestrator(AsyncMock())
        runner = PeriodicRunner(orchestrator, AsyncMock())
        await runner.stop()
        orchestrator.wait_background.assert_awaited_once()


class TestSerialization:
    """并发触发的扫描串行执行"""

    async def test_concurrent_run_once_is_serialized(self):
        in_flight = 0
        max_in_flight = 0

        async def slow_sweep():
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return _result()

        sweep = AsyncMock(side_effect=slow_sweep)
        runner = PeriodicRunner(_orchestrator(sweep), AsyncMock())

        results = await asyncio.gather(runner.run_once(), runner.run_once())

        assert all(r is not None for r in results)
        assert sweep.await_count == 2
        assert max_in_flight == 1
        assert runner.sweep_in_progress is False

    async def test_concurrent_runs_escalate_once(self, task_store, make_task, clock):
        await task_store.create_task(
            make_task(
                "T1",
                metadata={"entered_validating_at": to_epoch_ms(clock.now - timedelta(hours=9))},
            )
        )
        notifier = LogNotificationChannel()
        config = SweeperConfig()
        orchestrator = SweepOrchestrator(task_store, notifier, config=config, clock=clock)
        runner = PeriodicRunner(orchestrator, DigestEscalator(notifier, config))

        first, second = await asyncio.gather(runner.run_once(), runner.run_once())
        await orchestrator.wait_background()

        assert [v.type for v in first.violations] == [ViolationType.VALIDATING_CRITICAL]
        assert second.violations == []
        assert len([n for n in notifier.sent if n.sender == "sweeper"]) == 1
        assert (await task_store.get_task("T1")).metadata[ESCALATION_COUNT_KEY] == 1
