"""reviewloop Sweep Engine -- 评审流水线周期对账

检测 validating 超时、持久化升级状态、PR 漂移与孤儿 PR，
并自动关闭满足零接触契约的任务。
"""

from .audit import SweepAuditLog
from .auto_close import is_auto_closable
from .auto_merge import NullAutoMerge
from .config import SweeperConfig, load_sweeper_config
from .detector import OrphanDriftDetector
from .digest import DigestEscalator, build_digest
from .drift_report import DriftReportGenerator
from .escalation import EscalationRepository, EscalationTracker
from .exceptions import NotificationDeliveryError, PrStateCheckError, SweeperError
from .models import (
    AutoMergeReport,
    DriftIssue,
    DriftReport,
    EscalationLevel,
    EscalationState,
    LivePrState,
    PrState,
    SweeperStatus,
    SweepResult,
    SweepViolation,
    ViolationType,
)
from .notifications import LogNotificationChannel, Notification, WebhookNotificationChannel
from .orchestrator import SweepOrchestrator
from .pr_refs import extract_pr_url, is_valid_pr_url, parse_pr_url
from .pr_state import GitHubPrStateChecker
from .protocols import AutoMergeCollaborator, NotificationChannel, PrStateService
from .runner import PeriodicRunner

__all__ = [
    # 配置
    "SweeperConfig",
    "load_sweeper_config",
    # 模型
    "SweepViolation",
    "SweepResult",
    "ViolationType",
    "EscalationLevel",
    "EscalationState",
    "DriftIssue",
    "DriftReport",
    "PrState",
    "LivePrState",
    "AutoMergeReport",
    "SweeperStatus",
    # 异常
    "SweeperError",
    "PrStateCheckError",
    "NotificationDeliveryError",
    # 组件
    "extract_pr_url",
    "is_valid_pr_url",
    "parse_pr_url",
    "is_auto_closable",
    "EscalationRepository",
    "EscalationTracker",
    "OrphanDriftDetector",
    "SweepOrchestrator",
    "DigestEscalator",
    "build_digest",
    "PeriodicRunner",
    "DriftReportGenerator",
    "SweepAuditLog",
    # 协作方
    "NotificationChannel",
    "PrStateService",
    "AutoMergeCollaborator",
    "Notification",
    "LogNotificationChannel",
    "WebhookNotificationChannel",
    "GitHubPrStateChecker",
    "NullAutoMerge",
]
