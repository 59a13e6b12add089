"""SweepOrchestrator -- 单轮对账扫描

一轮扫描的步骤：
1. 一次性读取全部任务并按状态分桶
2. 自动关闭满足契约的 validating 任务
3. （可选）退回超过宽限期仍缺少产物的 validating 任务
4. 升级状态机 + 清理离开 validating 的升级状态
5. 孤儿 PR / PR 漂移检测
6. 委派 Auto-Merge 协作方（后台执行，不等待）
7. 组装 SweepResult

每个步骤独立做故障隔离：单个任务或单个步骤失败只记录日志，不中断后续步骤。
通知与 Auto-Merge 作为后台任务调度，失败只体现在日志中。
"""

import asyncio
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from reviewloop.core.models import ACTIVE_STATES, COMPLETED_STATES, Task, TaskPatch, TaskStatus
from reviewloop.core.store.exceptions import TaskNotFoundError
from reviewloop.core.store.protocols import TaskStore

from .audit import SweepAuditLog
from .auto_close import has_required_artifacts, is_auto_closable
from .auto_merge import NullAutoMerge
from .config import SweeperConfig
from .detector import OrphanDriftDetector
from .escalation import EscalationRepository, EscalationTracker
from .models import (
    AutoMergeReport,
    DriftIssue,
    PrState,
    SweeperStatus,
    SweepResult,
    SweepViolation,
    ViolationType,
)
from .notifications import Notification
from .pr_refs import extract_pr_url
from .protocols import AutoMergeCollaborator, NotificationChannel
from .remediation import generate_remediation
from .timeutil import coerce_timestamp, ensure_utc, format_duration, to_epoch_ms

log = structlog.get_logger()

AUTO_CLOSE_REASON = "reconciled_no_code_delta"
ARTIFACT_REJECT_REASON = "Missing required artifacts (PR or qa_bundle) after grace period"

NOTIFICATION_SENDER = "system"


class SweepOrchestrator:
    """Sweep Engine 编排器

    所有跨轮次状态（升级缓存、孤儿集合、漂移标记、最近结果、审计日志）
    都是实例状态，由构造参数注入或在此创建。
    """

    def __init__(
        self,
        task_store: TaskStore,
        notifier: NotificationChannel,
        config: SweeperConfig | None = None,
        auto_merge: AutoMergeCollaborator | None = None,
        clock: Callable[[], datetime] | None = None,
        audit: SweepAuditLog | None = None,
        tracker: EscalationTracker | None = None,
        detector: OrphanDriftDetector | None = None,
    ) -> None:
        """
        Args:
            task_store: 任务存储
            notifier: 通知通道
            config: Sweeper 配置，None 时使用默认值
            auto_merge: Auto-Merge 协作方，None 时使用 NullAutoMerge
            clock: 当前时间来源（测试注入可控时钟）
            audit: 审计日志
            tracker: 升级状态机，None 时基于 task_store 创建
            detector: 孤儿/漂移检测器
        """
        self._task_store = task_store
        self._notifier = notifier
        self._config = config or SweeperConfig()
        self._auto_merge = auto_merge or NullAutoMerge()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._audit = audit or SweepAuditLog(clock=self._clock)
        self._tracker = tracker or EscalationTracker(
            EscalationRepository(task_store),
            self._config,
            self._audit,
        )
        self._detector = detector or OrphanDriftDetector(self._config, self._audit)

        self._last_result: SweepResult | None = None
        self._last_auto_merge: AutoMergeReport | None = None
        self._background: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> SweeperConfig:
        return self._config

    @property
    def audit(self) -> SweepAuditLog:
        return self._audit

    @property
    def tracker(self) -> EscalationTracker:
        return self._tracker

    @property
    def detector(self) -> OrphanDriftDetector:
        return self._detector

    @property
    def last_result(self) -> SweepResult | None:
        return self._last_result

    @property
    def last_sweep_at(self) -> datetime | None:
        return self._last_result.timestamp if self._last_result else None

    @property
    def last_auto_merge(self) -> AutoMergeReport | None:
        return self._last_auto_merge

    async def sweep(self) -> SweepResult:
        """执行一轮完整扫描

        Returns:
            本轮 SweepResult（同时保存为 last_result）

        Raises:
            任务列表读取失败时向上抛出，由 PeriodicRunner 捕获
        """
        now = self._clock()
        tasks = await self._task_store.list_tasks()

        validating = [t for t in tasks if t.status == TaskStatus.VALIDATING]
        completed = [t for t in tasks if t.status in COMPLETED_STATES]

        closed_ids = await self._auto_close(validating, now)
        remaining = [t for t in validating if t.task_id not in closed_ids]

        rejected_ids: set[str] = set()
        if self._config.artifact_grace_s > 0:
            rejected_ids = await self._reject_missing_artifacts(remaining, now)
            remaining = [t for t in remaining if t.task_id not in rejected_ids]

        violations: list[SweepViolation] = []
        violations.extend(await self._scan_escalations(remaining, tasks, now))

        active = [
            t for t in tasks if t.status in ACTIVE_STATES and t.task_id not in closed_ids
        ]
        violations.extend(
            self._run_step("orphan_scan", self._detector.scan_orphans, completed, active, now)
        )
        violations.extend(
            self._run_step("drift_scan", self._detector.scan_drift, remaining, now)
        )

        candidates = remaining + [
            t for t in tasks if t.status in (TaskStatus.DOING, TaskStatus.TODO)
        ]
        self._spawn(self._run_auto_merge(candidates), name="sweeper-auto-merge")

        result = SweepResult(
            timestamp=now,
            violations=violations,
            tasks_scanned=len(tasks),
            validating_count=len(remaining),
            auto_closed_count=len(closed_ids),
            artifact_rejected_count=len(rejected_ids),
        )
        self._last_result = result
        log.info(
            "sweep_completed",
            tasks_scanned=result.tasks_scanned,
            validating_count=result.validating_count,
            violation_count=len(violations),
            auto_closed_count=result.auto_closed_count,
            artifact_rejected_count=result.artifact_rejected_count,
        )
        self._audit.record(
            "sweep_complete",
            f"{result.tasks_scanned} tasks, {len(violations)} violations, "
            f"{result.auto_closed_count} auto-closed",
        )
        return result

    async def flag_pr_drift(self, task_id: str, pr_state: PrState) -> SweepViolation | None:
        """外部 PR 事件入口：PR 被合并或关闭时检查任务状态是否滞后

        Raises:
            TaskNotFoundError: 任务不存在（或别名不唯一）
        """
        lookup = await self._task_store.resolve_task_id(task_id)
        task = lookup.task
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status == TaskStatus.DONE:
            return None

        reviewer = task.reviewer or "unassigned"
        assignee = task.assignee or "unassigned"
        pr_url = extract_pr_url(task.metadata)

        if pr_state == PrState.MERGED and task.status == TaskStatus.VALIDATING:
            message = (
                f'PR merged but task "{task.title}" ({task.task_id}) still in validating. '
                f"@{reviewer} -- review or auto-advance. @{assignee} -- confirm status."
            )
            issue = DriftIssue.PR_MERGED_NOT_CLOSED
            event = "pr_drift_event"
        elif pr_state == PrState.CLOSED and task.status != TaskStatus.BLOCKED:
            message = (
                f'PR closed (not merged) for task "{task.title}" ({task.task_id}). '
                f"@{assignee} -- task should be blocked or have replacement PR. "
                f"@{reviewer} -- confirm action."
            )
            issue = DriftIssue.ORPHAN_PR
            event = "pr_closed_event"
        else:
            return None

        log.info(event, task_id=task.task_id, pr_state=pr_state.value, status=task.status)
        self._audit.record(event, f"{task.task_id} -- PR {pr_state.value} while {task.status}")
        return SweepViolation(
            task_id=task.task_id,
            title=task.title,
            assignee=task.assignee,
            reviewer=task.reviewer,
            type=ViolationType.PR_DRIFT,
            age_minutes=0,
            message=message,
            remediation=generate_remediation(task.task_id, issue, pr_url),
        )

    def status(self, running: bool) -> SweeperStatus:
        """构建状态查询结果"""
        return SweeperStatus(
            running=running,
            last_sweep_at=self.last_sweep_at,
            last_result=self._last_result,
            escalation_tracking=self._tracker.tracked(),
            last_auto_merge=self._last_auto_merge,
            audit_log=self._audit.entries(),
        )

    async def wait_background(self) -> None:
        """等待所有后台通知/Auto-Merge 任务结束（测试与关闭时使用）"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ---- 步骤实现 ----

    async def _auto_close(self, validating: list[Task], now: datetime) -> set[str]:
        closed: set[str] = set()
        for task in validating:
            metadata = task.metadata
            if not is_auto_closable(task, metadata):
                continue

            closed_metadata = {
                **EscalationRepository.strip(metadata),
                "auto_closed": True,
                "auto_closed_at": to_epoch_ms(now),
                "auto_close_reason": AUTO_CLOSE_REASON,
            }
            try:
                updated = await self._task_store.update_task(
                    task.task_id,
                    TaskPatch(status=TaskStatus.DONE, metadata=closed_metadata),
                )
            except Exception as e:
                log.warning(
                    "auto_close_failed",
                    task_id=task.task_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._audit.record("auto_close_failed", f"{task.task_id} -- {e}")
                continue
            if updated is None:
                log.warning("auto_close_task_missing", task_id=task.task_id)
                continue

            closed.add(task.task_id)
            self._tracker.forget(task.task_id)
            log.info("task_auto_closed", task_id=task.task_id, reason=AUTO_CLOSE_REASON)
            self._audit.record(
                "auto_closed", f"{task.task_id} -- reconciled + approved, no code delta required"
            )
            self._notify(
                f'Auto-closed reconciled task "{task.title}" ({task.task_id}) '
                f"-- no code delta required."
            )
        return closed

    async def _reject_missing_artifacts(self, validating: list[Task], now: datetime) -> set[str]:
        grace = timedelta(seconds=self._config.artifact_grace_s)
        rejected: set[str] = set()
        for task in validating:
            metadata = task.metadata
            entered = coerce_timestamp(metadata.get("entered_validating_at"), now)
            if entered is None:
                entered = ensure_utc(task.updated_at)
            if now - entered < grace or has_required_artifacts(metadata):
                continue

            rejected_metadata = {
                k: v
                for k, v in EscalationRepository.strip(metadata).items()
                if k not in ("review_state", "reviewer_approved")
            }
            rejected_metadata.update(
                artifact_rejected=True,
                artifact_rejected_at=to_epoch_ms(now),
                artifact_reject_reason=ARTIFACT_REJECT_REASON,
            )
            try:
                updated = await self._task_store.update_task(
                    task.task_id,
                    TaskPatch(status=TaskStatus.TODO, metadata=rejected_metadata),
                )
            except Exception as e:
                log.warning(
                    "artifact_reject_failed",
                    task_id=task.task_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if updated is None:
                continue

            rejected.add(task.task_id)
            self._tracker.forget(task.task_id)
            log.info("task_artifact_rejected", task_id=task.task_id)
            self._audit.record(
                "artifact_rejected",
                f"{task.task_id} -- no artifacts after {format_duration(now - entered)} in validating",
            )
            self._notify(
                f'Auto-rejected "{task.title}" ({task.task_id}) back to todo -- missing required '
                f"artifacts (PR or qa_bundle) after {format_duration(grace)} in validating. "
                f"@{task.assignee or 'unassigned'} please add artifacts and resubmit."
            )
        return rejected

    async def _scan_escalations(
        self,
        validating: list[Task],
        all_tasks: list[Task],
        now: datetime,
    ) -> list[SweepViolation]:
        violations: list[SweepViolation] = []
        for task in validating:
            try:
                violation = await self._tracker.evaluate(task, now)
            except Exception as e:
                log.warning(
                    "escalation_evaluate_failed",
                    task_id=task.task_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if violation is not None:
                violations.append(violation)

        try:
            await self._tracker.clear_departed(all_tasks)
        except Exception as e:
            log.warning(
                "escalation_cleanup_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        return violations

    def _run_step(
        self,
        step: str,
        func: Callable[..., list[SweepViolation]],
        *args: Any,
    ) -> list[SweepViolation]:
        try:
            return func(*args)
        except Exception as e:
            log.warning(
                "sweep_step_failed",
                step=step,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._audit.record("sweep_step_failed", f"{step} -- {e}")
            return []

    # ---- 后台副作用 ----

    async def _run_auto_merge(self, candidates: list[Task]) -> None:
        try:
            report = await self._auto_merge.process(candidates)
        except Exception as e:
            log.warning(
                "auto_merge_failed",
                candidate_count=len(candidates),
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        self._last_auto_merge = report
        log.info("auto_merge_processed", **report.model_dump())
        if report.merge_attempts or report.auto_closes:
            self._audit.record(
                "auto_merge",
                f"{report.merge_attempts} attempted, {report.merge_successes} merged, "
                f"{report.auto_closes} auto-closed",
            )

    def _notify(self, content: str) -> None:
        notification = Notification(
            sender=NOTIFICATION_SENDER,
            channel=self._config.task_channel,
            content=content,
        )
        self._spawn(self._deliver(notification), name="sweeper-notify")

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self._notifier.send(notification)
        except Exception as e:
            log.warning(
                "notification_failed",
                channel=notification.channel,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
