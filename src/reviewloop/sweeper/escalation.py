"""升级状态机 -- validating 任务的 SLA 超时分级告警

状态（仅在 validating 内有效）：
    none -> warning -> critical，升级次数达到上限后隐式进入 silenced

任务 metadata 是升级状态唯一的持久化来源；
EscalationTracker 内存中的映射只是从 metadata 回填的读缓存。
任务一旦离开 validating，内存条目与三个 metadata key 同时清除（回到 none）。
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from reviewloop.core.models import Task, TaskStatus
from reviewloop.core.store.protocols import TaskStore

from .audit import SweepAuditLog
from .config import SweeperConfig
from .models import (
    DriftIssue,
    EscalationLevel,
    EscalationState,
    EscalationTrackingEntry,
    SweepViolation,
    ViolationType,
)
from .pr_refs import extract_pr_url
from .remediation import generate_remediation
from .timeutil import (
    coerce_timestamp,
    ensure_utc,
    format_duration,
    minutes_between,
    to_epoch_ms,
    truncate_ms,
)

log = structlog.get_logger()

ESCALATION_LEVEL_KEY = "sweeper_escalation_level"
ESCALATED_AT_KEY = "sweeper_escalated_at"
ESCALATION_COUNT_KEY = "sweeper_escalation_count"

ESCALATION_KEYS: tuple[str, ...] = (
    ESCALATION_LEVEL_KEY,
    ESCALATED_AT_KEY,
    ESCALATION_COUNT_KEY,
)

# 升级时间戳损坏时的替代值，保证冷却期已结束
_COOLDOWN_ELAPSED = datetime(1970, 1, 1, tzinfo=UTC)


def last_activity_at(task: Task, now: datetime | None = None) -> datetime:
    """SLA 时钟起点：max(review_last_activity_at, entered_validating_at)

    entered_validating_at 缺失或无效时回退到 updated_at。
    """
    metadata = task.metadata
    entered = coerce_timestamp(metadata.get("entered_validating_at"), now)
    if entered is None:
        entered = ensure_utc(task.updated_at)
    activity = coerce_timestamp(metadata.get("review_last_activity_at"), now)
    if activity is None:
        return entered
    return max(activity, entered)


class EscalationRepository:
    """以任务 metadata 为后端的升级状态仓库

    只有这里读写 sweeper_escalation_* 三个 key。
    """

    def __init__(self, task_store: TaskStore) -> None:
        self._task_store = task_store

    def load(self, task: Task, now: datetime | None = None) -> EscalationState | None:
        """从 metadata 读取升级状态

        level 无效时视为无状态；仅时间戳无效时保留 level，
        escalated_at 取 epoch 起点（冷却视为已结束），级别不会因此回退。
        """
        metadata = task.metadata
        raw_level = metadata.get(ESCALATION_LEVEL_KEY)
        try:
            level = EscalationLevel(raw_level)
        except ValueError:
            return None
        escalated_at = coerce_timestamp(metadata.get(ESCALATED_AT_KEY), now)
        if escalated_at is None:
            log.warning(
                "escalation_timestamp_invalid",
                task_id=task.task_id,
                level=level.value,
                value=str(metadata.get(ESCALATED_AT_KEY)),
            )
            escalated_at = _COOLDOWN_ELAPSED
        return EscalationState(
            level=level,
            escalated_at=escalated_at,
            count=self.load_count(task),
        )

    @staticmethod
    def load_count(task: Task) -> int:
        """已发出的升级次数，非法值按 0 处理"""
        raw = task.metadata.get(ESCALATION_COUNT_KEY)
        if isinstance(raw, bool) or not isinstance(raw, int | float):
            return 0
        return max(0, int(raw))

    @staticmethod
    def has_state(task: Task) -> bool:
        return any(key in task.metadata for key in ESCALATION_KEYS)

    @staticmethod
    def strip(metadata: dict[str, Any]) -> dict[str, Any]:
        """返回去掉升级 key 的 metadata 副本（任务离开 validating 时使用）"""
        return {k: v for k, v in metadata.items() if k not in ESCALATION_KEYS}

    async def save(self, task_id: str, state: EscalationState) -> None:
        await self._task_store.patch_task_metadata(
            task_id,
            {
                ESCALATION_LEVEL_KEY: state.level.value,
                ESCALATED_AT_KEY: to_epoch_ms(state.escalated_at),
                ESCALATION_COUNT_KEY: state.count,
            },
        )

    async def clear(self, task_id: str) -> None:
        await self._task_store.patch_task_metadata(
            task_id,
            {key: None for key in ESCALATION_KEYS},
        )

    async def find_task(self, task_id: str) -> Task | None:
        lookup = await self._task_store.resolve_task_id(task_id)
        return lookup.task


class EscalationTracker:
    """升级状态机

    每轮扫描对每个未被自动关闭的 validating 任务调用 evaluate()，
    随后调用 clear_departed() 清理已离开 validating 的任务。
    """

    def __init__(
        self,
        repository: EscalationRepository,
        config: SweeperConfig,
        audit: SweepAuditLog | None = None,
    ) -> None:
        self._repository = repository
        self._config = config
        self._audit = audit or SweepAuditLog()
        self._states: dict[str, EscalationState] = {}

    @property
    def repository(self) -> EscalationRepository:
        return self._repository

    def get(self, task_id: str) -> EscalationState | None:
        return self._states.get(task_id)

    def forget(self, task_id: str) -> None:
        self._states.pop(task_id, None)

    def tracked(self) -> list[EscalationTrackingEntry]:
        return [
            EscalationTrackingEntry(
                task_id=task_id,
                level=state.level,
                escalated_at=state.escalated_at,
                count=state.count,
            )
            for task_id, state in self._states.items()
        ]

    async def evaluate(self, task: Task, now: datetime) -> SweepViolation | None:
        """对单个 validating 任务执行一次状态转移

        Returns:
            本轮产生的违规；未转移（未超时、冷却中、已静默、持久化失败）返回 None
        """
        task_id = task.task_id
        activity_at = last_activity_at(task, now)
        age = now - activity_at

        # 首次遇到时从 metadata 回填（进程重启后恢复）
        persisted = self._repository.load(task, now)
        if task_id not in self._states and persisted is not None:
            self._states[task_id] = persisted
        effective = self._states.get(task_id)
        count = self._repository.load_count(task)

        if count >= self._config.max_escalation_count:
            self._audit.record("escalation_silenced", f"{task_id} -- {count} escalations")
            return None

        cooldown = timedelta(seconds=self._config.escalation_cooldown_s)
        if effective is not None and now - effective.escalated_at < cooldown:
            return None

        if age >= timedelta(seconds=self._config.critical_threshold_s) and (
            effective is None or effective.level != EscalationLevel.CRITICAL
        ):
            level = EscalationLevel.CRITICAL
        elif age >= timedelta(seconds=self._config.warning_threshold_s) and effective is None:
            level = EscalationLevel.WARNING
        else:
            return None

        new_state = EscalationState(
            level=level,
            escalated_at=truncate_ms(now),
            count=count + 1,
        )
        try:
            await self._repository.save(task_id, new_state)
        except Exception as e:
            log.warning(
                "escalation_persist_failed",
                task_id=task_id,
                level=level.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._audit.record("escalation_persist_failed", f"{task_id} -- {e}")
            return None

        self._states[task_id] = new_state
        violation = self._build_violation(task, level, age, activity_at, now)
        log.info(
            "task_escalated",
            task_id=task_id,
            level=level.value,
            count=new_state.count,
            age_minutes=violation.age_minutes,
        )
        self._audit.record(
            violation.type.value,
            f"{task_id} -- {violation.age_minutes}m -- reviewer:{task.reviewer} "
            f"assignee:{task.assignee} count:{new_state.count}",
        )
        return violation

    async def clear_departed(self, tasks: list[Task]) -> list[str]:
        """清除已离开 validating 的任务的升级状态

        覆盖两类任务：内存中仍在跟踪的任务，以及 metadata 中残留升级 key
        （例如重启前升级、重启后才离开 validating）的任务。

        Returns:
            被清除的 task_id 列表
        """
        by_id = {t.task_id: t for t in tasks}
        cleared: list[str] = []

        for task_id in list(self._states):
            task = by_id.get(task_id)
            if task is None:
                task = await self._repository.find_task(task_id)
            if task is not None and task.status == TaskStatus.VALIDATING:
                continue
            self._states.pop(task_id, None)
            if task is not None and self._repository.has_state(task):
                await self._clear_persisted(task_id)
            cleared.append(task_id)
            self._audit.record("escalation_cleared", f"{task_id} -- no longer validating")

        for task in tasks:
            if task.status == TaskStatus.VALIDATING or task.task_id in cleared:
                continue
            if self._repository.has_state(task):
                await self._clear_persisted(task.task_id)
                cleared.append(task.task_id)
                self._audit.record(
                    "escalation_cleared", f"{task.task_id} -- persisted state outside validating"
                )

        return cleared

    async def _clear_persisted(self, task_id: str) -> None:
        try:
            await self._repository.clear(task_id)
        except Exception as e:
            log.warning(
                "escalation_clear_failed",
                task_id=task_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    @staticmethod
    def _build_violation(
        task: Task,
        level: EscalationLevel,
        age: timedelta,
        activity_at: datetime,
        now: datetime,
    ) -> SweepViolation:
        reviewer = task.reviewer or "unassigned"
        assignee = task.assignee or "unassigned"
        duration = format_duration(age)
        if level == EscalationLevel.CRITICAL:
            violation_type = ViolationType.VALIDATING_CRITICAL
            message = (
                f'CRITICAL: "{task.title}" ({task.task_id}) stuck in validating for '
                f"{duration}. @{reviewer} please review. @{assignee} -- your PR is blocked."
            )
        else:
            violation_type = ViolationType.VALIDATING_SLA
            message = (
                f'SLA breach: "{task.title}" ({task.task_id}) in validating {duration}. '
                f"@{reviewer} -- review needed. @{assignee} -- ping if blocked."
            )
        return SweepViolation(
            task_id=task.task_id,
            title=task.title,
            assignee=task.assignee,
            reviewer=task.reviewer,
            type=violation_type,
            age_minutes=minutes_between(activity_at, now),
            message=message,
            remediation=generate_remediation(
                task.task_id,
                DriftIssue.STALE_VALIDATING,
                extract_pr_url(task.metadata),
            ),
        )
