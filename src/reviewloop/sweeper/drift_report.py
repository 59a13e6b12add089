"""DriftReportGenerator -- 按需生成的漂移报告

与周期扫描使用相同的判定规则，但额外实时查询 PR 状态。
只读：不修改任务，也不影响扫描的孤儿集合与漂移标记。
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from reviewloop.core.models import ACTIVE_STATES, COMPLETED_STATES, Task, TaskStatus
from reviewloop.core.store.protocols import TaskStore

from .config import SweeperConfig
from .escalation import last_activity_at
from .models import DriftIssue, DriftReport, DriftReportEntry, DriftSummary, LivePrState, PrState
from .pr_refs import extract_pr_url
from .protocols import PrStateService
from .remediation import generate_remediation
from .timeutil import ensure_utc, minutes_between

log = structlog.get_logger()


class DriftReportGenerator:
    """漂移报告生成器"""

    def __init__(
        self,
        task_store: TaskStore,
        pr_checker: PrStateService,
        config: SweeperConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._task_store = task_store
        self._pr_checker = pr_checker
        self._config = config or SweeperConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def generate(self) -> DriftReport:
        """生成漂移报告

        validating 任务分类：
        - pr_merged_not_closed: metadata 或实时状态显示 PR 已合并
        - no_pr_linked: 没有可识别的 PR 链接
        - stale_validating: 超过 SLA 阈值没有评审活动
        - clean: 其余

        孤儿 PR：只被 done/cancelled 任务引用、均未标记合并、
        且实时状态不是 merged/closed 的 PR。
        """
        now = self._clock()
        tasks = await self._task_store.list_tasks()
        validating = [t for t in tasks if t.status == TaskStatus.VALIDATING]

        pr_to_tasks: dict[str, list[Task]] = {}
        for task in tasks:
            url = extract_pr_url(task.metadata)
            if url:
                pr_to_tasks.setdefault(url, []).append(task)

        orphan_candidates = {
            url: linked
            for url, linked in pr_to_tasks.items()
            if not any(t.status in ACTIVE_STATES for t in linked)
            and any(t.status in COMPLETED_STATES for t in linked)
            and not any(t.metadata.get("pr_merged") for t in linked)
        }
        unmerged_validating = {
            url
            for t in validating
            if not t.metadata.get("pr_merged") and (url := extract_pr_url(t.metadata))
        }
        live = await self._check_all(sorted(unmerged_validating | orphan_candidates.keys()))

        report = DriftReport(timestamp=now)
        summary = DriftSummary(total_validating=len(validating))
        for task in validating:
            entry = self._classify(task, now, live)
            report.validating.append(entry)
            match entry.issue:
                case DriftIssue.PR_MERGED_NOT_CLOSED:
                    summary.pr_drift_count += 1
                case DriftIssue.CLEAN:
                    summary.clean_count += 1
                case _:
                    summary.stale_validating += 1

        for url, linked in orphan_candidates.items():
            state = live.get(url)
            if state is not None and state.state in (PrState.MERGED, PrState.CLOSED):
                continue
            first = linked[0]
            report.orphan_prs.append(
                DriftReportEntry(
                    task_id=first.task_id,
                    title=first.title,
                    status=first.status.value,
                    assignee=first.assignee,
                    reviewer=first.reviewer,
                    age_minutes=minutes_between(ensure_utc(first.updated_at), now),
                    pr_url=url,
                    live_state=state.state if state else None,
                    issue=DriftIssue.ORPHAN_PR,
                    detail=(
                        f"PR linked to {len(linked)} completed task(s) but not marked as merged. "
                        "May still be open."
                    ),
                    remediation=generate_remediation(first.task_id, DriftIssue.ORPHAN_PR, url),
                )
            )
        summary.orphan_pr_count = len(report.orphan_prs)
        report.summary = summary

        log.info(
            "drift_report_generated",
            total_validating=summary.total_validating,
            stale_validating=summary.stale_validating,
            orphan_pr_count=summary.orphan_pr_count,
            pr_drift_count=summary.pr_drift_count,
            live_checks=len(live),
        )
        return report

    async def _check_all(self, urls: list[str]) -> dict[str, LivePrState]:
        if not urls:
            return {}
        results = await asyncio.gather(
            *(self._pr_checker.check_live_state(url) for url in urls),
            return_exceptions=True,
        )
        live: dict[str, LivePrState] = {}
        for url, result in zip(urls, results, strict=True):
            if isinstance(result, BaseException):
                log.warning(
                    "pr_state_lookup_failed",
                    pr_url=url,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                result = LivePrState(state=PrState.UNKNOWN, error=str(result))
            live[url] = result
        return live

    def _classify(
        self,
        task: Task,
        now: datetime,
        live: dict[str, LivePrState],
    ) -> DriftReportEntry:
        metadata = task.metadata
        activity_at = last_activity_at(task, now)
        age = now - activity_at
        age_minutes = minutes_between(activity_at, now)
        pr_url = extract_pr_url(metadata)
        pr_merged = bool(metadata.get("pr_merged"))
        live_state = live.get(pr_url) if pr_url else None

        critical = timedelta(seconds=self._config.critical_threshold_s)
        warning = timedelta(seconds=self._config.warning_threshold_s)

        if pr_merged:
            issue = DriftIssue.PR_MERGED_NOT_CLOSED
            detail = f"PR merged but task still validating ({age_minutes}m since last activity)"
        elif live_state is not None and live_state.state == PrState.MERGED:
            issue = DriftIssue.PR_MERGED_NOT_CLOSED
            detail = (
                "PR is merged upstream but task metadata is not updated "
                f"({age_minutes}m since last activity)"
            )
        elif not pr_url:
            issue = DriftIssue.NO_PR_LINKED
            detail = "No PR URL found in task metadata -- cannot verify PR state"
        elif age >= critical:
            issue = DriftIssue.STALE_VALIDATING
            detail = (
                f"{age_minutes}m without reviewer activity "
                f"(CRITICAL threshold: {int(critical.total_seconds() // 60)}m)"
            )
        elif age >= warning:
            issue = DriftIssue.STALE_VALIDATING
            detail = (
                f"{age_minutes}m without reviewer activity "
                f"(SLA threshold: {int(warning.total_seconds() // 60)}m)"
            )
        else:
            issue = DriftIssue.CLEAN
            detail = "On track"

        return DriftReportEntry(
            task_id=task.task_id,
            title=task.title,
            status=task.status.value,
            assignee=task.assignee,
            reviewer=task.reviewer,
            age_minutes=age_minutes,
            pr_url=pr_url,
            pr_merged=pr_merged,
            live_state=live_state.state if live_state else None,
            issue=issue,
            detail=detail,
            remediation=(
                generate_remediation(task.task_id, issue, pr_url)
                if issue != DriftIssue.CLEAN
                else None
            ),
        )
