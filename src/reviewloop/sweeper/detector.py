"""孤儿 PR / PR 漂移检测

周期扫描中只读取 metadata，不做实时外部查询，
避免慢速外部调用阻塞对账循环；实时校验仅在按需生成的 Drift Report 中进行。
"""

from datetime import datetime, timedelta

import structlog

from reviewloop.core.models import Task

from .audit import SweepAuditLog
from .config import SweeperConfig
from .models import DriftIssue, SweepViolation, ViolationType
from .pr_refs import extract_pr_url
from .remediation import generate_remediation
from .timeutil import coerce_timestamp, ensure_utc, minutes_between

log = structlog.get_logger()


class OrphanDriftDetector:
    """孤儿 PR 与 PR 漂移检测器

    状态（均为进程生命周期，不持久化）：
    - 已报告的孤儿 PR URL 集合：同一 URL 每个进程最多报告一次
    - 已报告漂移的 task_id：与升级状态分开记录，互不干扰
    """

    def __init__(self, config: SweeperConfig, audit: SweepAuditLog | None = None) -> None:
        self._config = config
        self._audit = audit or SweepAuditLog()
        self._flagged_orphans: set[str] = set()
        self._flagged_drift: dict[str, datetime] = {}

    @property
    def flagged_orphans(self) -> frozenset[str]:
        return frozenset(self._flagged_orphans)

    @property
    def flagged_drift(self) -> frozenset[str]:
        return frozenset(self._flagged_drift)

    def scan_orphans(
        self,
        completed: list[Task],
        active: list[Task],
        now: datetime,
    ) -> list[SweepViolation]:
        """扫描 done/cancelled 任务上遗留的 PR

        Args:
            completed: done / cancelled 任务
            active: todo / doing / validating / blocked 任务
            now: 当前时间
        """
        threshold = timedelta(seconds=self._config.orphan_threshold_s)
        active_refs: dict[str, set[str]] = {}
        for task in active:
            url = extract_pr_url(task.metadata)
            if url:
                active_refs.setdefault(url, set()).add(task.task_id)

        violations: list[SweepViolation] = []
        for task in completed:
            metadata = task.metadata
            pr_url = extract_pr_url(metadata)
            if not pr_url or pr_url in self._flagged_orphans:
                continue

            # 仍被其他活跃任务引用，不算孤儿
            if active_refs.get(pr_url, set()) - {task.task_id}:
                continue

            if metadata.get("pr_merged"):
                continue

            updated_at = ensure_utc(task.updated_at)
            completed_age = now - updated_at
            if completed_age < threshold:
                continue

            age_minutes = minutes_between(updated_at, now)
            assignee = f"@{task.assignee}" if task.assignee else "@unassigned"
            reviewer = f"@{task.reviewer}" if task.reviewer else "@unassigned"
            violations.append(
                SweepViolation(
                    task_id=task.task_id,
                    title=task.title,
                    assignee=task.assignee,
                    reviewer=task.reviewer,
                    type=ViolationType.ORPHAN_PR,
                    age_minutes=age_minutes,
                    message=(
                        f'Orphan PR detected: {pr_url} linked to {task.status} task "{task.title}" '
                        f"({task.task_id}). PR may still be open -- {assignee} close or merge it. "
                        f"{reviewer} -- confirm status."
                    ),
                    remediation=generate_remediation(task.task_id, DriftIssue.ORPHAN_PR, pr_url),
                )
            )
            self._flagged_orphans.add(pr_url)
            log.info("orphan_pr_detected", task_id=task.task_id, pr_url=pr_url)
            self._audit.record(
                "orphan_pr", f"{pr_url} on {task.task_id} -- task {task.status} {age_minutes}m ago"
            )

        return violations

    def scan_drift(self, validating: list[Task], now: datetime) -> list[SweepViolation]:
        """扫描 PR 已合并但任务仍停留在 validating 的漂移

        不再处于 validating 的任务的漂移标记同时被丢弃。
        """
        validating_ids = {t.task_id for t in validating}
        for task_id in list(self._flagged_drift):
            if task_id not in validating_ids:
                del self._flagged_drift[task_id]

        threshold = timedelta(seconds=self._config.orphan_threshold_s)
        violations: list[SweepViolation] = []
        for task in validating:
            metadata = task.metadata
            if not metadata.get("pr_merged") or task.task_id in self._flagged_drift:
                continue

            merged_at = coerce_timestamp(metadata.get("pr_merged_at"), now)
            if merged_at is None:
                merged_at = ensure_utc(task.updated_at)
            if now - merged_at < threshold:
                continue

            age_minutes = minutes_between(merged_at, now)
            violations.append(
                SweepViolation(
                    task_id=task.task_id,
                    title=task.title,
                    assignee=task.assignee,
                    reviewer=task.reviewer,
                    type=ViolationType.PR_DRIFT,
                    age_minutes=age_minutes,
                    message=(
                        f'PR merged {age_minutes}m ago but "{task.title}" ({task.task_id}) still in '
                        f"validating. @{task.reviewer or 'unassigned'} -- approve or close. "
                        f"@{task.assignee or 'unassigned'} -- ping if needed."
                    ),
                    remediation=generate_remediation(
                        task.task_id,
                        DriftIssue.PR_MERGED_NOT_CLOSED,
                        extract_pr_url(metadata),
                    ),
                )
            )
            self._flagged_drift[task.task_id] = now
            log.info("pr_drift_detected", task_id=task.task_id, age_minutes=age_minutes)
            self._audit.record(
                "pr_drift", f"{task.task_id} -- PR merged {age_minutes}m ago, still validating"
            )

        return violations
