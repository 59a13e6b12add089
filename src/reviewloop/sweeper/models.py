"""Sweeper 数据模型

SweepViolation / SweepResult 每轮扫描新建，不落盘；
真正持久化的只有它们的副作用（升级 metadata、通知消息）。
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class ViolationType(StrEnum):
    """扫描违规类型"""

    VALIDATING_SLA = "validating_sla"
    VALIDATING_CRITICAL = "validating_critical"
    PR_DRIFT = "pr_drift"
    ORPHAN_PR = "orphan_pr"


class EscalationLevel(StrEnum):
    """升级级别，仅在 validating 状态内有效"""

    WARNING = "warning"
    CRITICAL = "critical"


class DriftIssue(StrEnum):
    """Drift Report 条目分类"""

    STALE_VALIDATING = "stale_validating"
    ORPHAN_PR = "orphan_pr"
    PR_MERGED_NOT_CLOSED = "pr_merged_not_closed"
    NO_PR_LINKED = "no_pr_linked"
    CLEAN = "clean"


class PrState(StrEnum):
    """外部 PR 实时状态"""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class SweepViolation(BaseModel):
    """单条扫描违规"""

    task_id: str
    title: str
    assignee: str | None = None
    reviewer: str | None = None
    type: ViolationType
    age_minutes: int = Field(ge=0)
    message: str
    remediation: str | None = None


class SweepResult(BaseModel):
    """一次完整扫描的结果，仅保存在进程内存"""

    timestamp: datetime
    violations: list[SweepViolation] = Field(default_factory=list)
    tasks_scanned: int = 0
    validating_count: int = 0
    auto_closed_count: int = 0
    artifact_rejected_count: int = 0


class EscalationState(BaseModel):
    """单个任务的升级状态（内存缓存 / metadata 持久化形态）"""

    level: EscalationLevel
    escalated_at: datetime
    count: int = Field(default=0, ge=0)


class EscalationTrackingEntry(BaseModel):
    """状态查询中展示的升级跟踪条目"""

    task_id: str
    level: EscalationLevel
    escalated_at: datetime
    count: int


class LivePrState(BaseModel):
    """外部 PR 状态服务的返回"""

    state: PrState = PrState.UNKNOWN
    error: str | None = None


class AutoMergeReport(BaseModel):
    """Auto-Merge 协作方的处理统计"""

    merge_attempts: int = 0
    merge_successes: int = 0
    auto_closes: int = 0
    skipped: int = 0


class AuditLogEntry(BaseModel):
    """Sweeper 审计日志条目"""

    timestamp: datetime
    event: str
    detail: str = ""


class DriftReportEntry(BaseModel):
    """Drift Report 单条目"""

    task_id: str
    title: str
    status: str
    assignee: str | None = None
    reviewer: str | None = None
    age_minutes: int = 0
    pr_url: str | None = None
    pr_merged: bool = False
    live_state: PrState | None = None
    issue: DriftIssue
    detail: str
    remediation: str | None = None


class DriftSummary(BaseModel):
    """Drift Report 汇总"""

    total_validating: int = 0
    stale_validating: int = 0
    orphan_pr_count: int = 0
    pr_drift_count: int = 0
    clean_count: int = 0


class DriftReport(BaseModel):
    """按需生成的漂移报告（只读，包含实时 PR 状态）"""

    timestamp: datetime
    validating: list[DriftReportEntry] = Field(default_factory=list)
    orphan_prs: list[DriftReportEntry] = Field(default_factory=list)
    summary: DriftSummary = Field(default_factory=DriftSummary)


class SweeperStatus(BaseModel):
    """Sweeper 状态查询结果"""

    running: bool
    last_sweep_at: datetime | None = None
    last_result: SweepResult | None = None
    escalation_tracking: list[EscalationTrackingEntry] = Field(default_factory=list)
    last_auto_merge: AutoMergeReport | None = None
    audit_log: list[AuditLogEntry] = Field(default_factory=list)
