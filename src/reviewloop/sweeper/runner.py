"""PeriodicRunner -- 周期扫描定时器

启动后延迟 initial_delay_s 执行首轮扫描（避开服务启动高峰），
之后按固定间隔执行。每轮先 await 扫描与摘要，再计算下一次触发时间，
因此两轮扫描不会重叠；单轮失败只记录日志，定时器继续运行。
手动触发（run_once）与定时器共用同一把锁，同一时刻最多只有一轮扫描。
"""

import asyncio

import structlog
from ulid import ULID

from .digest import DigestEscalator
from .models import SweepResult
from .orchestrator import SweepOrchestrator

log = structlog.get_logger()


class PeriodicRunner:
    """Sweep Engine 定时器"""

    def __init__(
        self,
        orchestrator: SweepOrchestrator,
        digest: DigestEscalator,
        interval_s: float = 5 * 60,
        initial_delay_s: float = 5,
    ) -> None:
        self._orchestrator = orchestrator
        self._digest = digest
        self._interval_s = interval_s
        self._initial_delay_s = initial_delay_s
        self._task: asyncio.Task[None] | None = None
        self._sweep_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    def start(self) -> None:
        """启动定时器（幂等，重复调用不会创建第二个循环）"""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="sweeper-runner")
        log.info(
            "sweeper_started",
            interval_s=self._interval_s,
            initial_delay_s=self._initial_delay_s,
        )

    async def stop(self) -> None:
        """停止定时器并等待后台通知完成"""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            log.info("sweeper_stopped")
        await self._orchestrator.wait_background()

    async def run_once(self) -> SweepResult | None:
        """执行一轮扫描 + 摘要

        已有扫描进行中时等待其结束后再执行，扫描与摘要始终串行。

        Returns:
            本轮结果；扫描抛出异常时返回 None（异常已记录）
        """
        async with self._sweep_lock:
            return await self._sweep_and_escalate()

    async def _sweep_and_escalate(self) -> SweepResult | None:
        sweep_id = str(ULID())
        with structlog.contextvars.bound_contextvars(sweep_id=sweep_id):
            try:
                result = await self._orchestrator.sweep()
                await self._digest.escalate(result.violations)
            except Exception as e:
                log.error(
                    "sweep_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return None
            return result

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        await asyncio.sleep(self._initial_delay_s)
        next_tick = loop.time()
        while True:
            await self.run_once()
            next_tick += self._interval_s
            # 扫描耗时超过间隔时跳过错过的节拍，不补跑
            while next_tick <= loop.time():
                next_tick += self._interval_s
            await asyncio.sleep(next_tick - loop.time())
