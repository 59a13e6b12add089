"""SweepAuditLog -- 有界的内存审计日志

记录每次升级、自动关闭、失败等关键动作，供状态查询展示。
只保留最近 max_entries 条，进程重启后清空。
"""

from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from .models import AuditLogEntry

log = structlog.get_logger()


class SweepAuditLog:
    """Sweeper 审计日志"""

    def __init__(
        self,
        max_entries: int = 500,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._entries: deque[AuditLogEntry] = deque(maxlen=max_entries)
        self._clock = clock or (lambda: datetime.now(UTC))

    def record(self, event: str, detail: str = "") -> None:
        """追加一条审计记录"""
        self._entries.append(
            AuditLogEntry(timestamp=self._clock(), event=event, detail=detail)
        )
        log.debug("sweeper_audit", audit_event=event, detail=detail)

    def entries(self) -> list[AuditLogEntry]:
        """按时间顺序返回当前保留的记录"""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
