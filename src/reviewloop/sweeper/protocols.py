"""Sweeper 外部协作方 Protocol 接口

Sweep Engine 只依赖这些窄接口，不拥有它们的实现。
"""

from typing import Protocol

from reviewloop.core.models import Task

from .models import AutoMergeReport, LivePrState
from .notifications import Notification


class NotificationChannel(Protocol):
    """通知通道 -- 失败由调用方捕获"""

    async def send(self, notification: Notification) -> None:
        """投递一条通知"""
        ...


class PrStateService(Protocol):
    """外部 PR 状态服务 -- 仅供按需 Drift Report 使用"""

    async def check_live_state(self, pr_url: str) -> LivePrState:
        """查询 PR 实时状态，失败返回 unknown"""
        ...


class AutoMergeCollaborator(Protocol):
    """Auto-Merge 协作方 -- 每轮扫描调用一次，结果只记录日志"""

    async def process(self, tasks: list[Task]) -> AutoMergeReport:
        """处理候选任务，返回合并/关闭统计"""
        ...
