"""DigestEscalator -- 将一轮扫描的违规合并为一条摘要通知

N 个超时任务只产生一条消息，按 Critical / SLA Warning / PR Issues 分组。
投递失败只记录日志，不在同一轮重试。
"""

import structlog

from reviewloop.core.config import TITLE_PREVIEW_LENGTH

from .config import SweeperConfig
from .models import SweepViolation, ViolationType
from .notifications import Notification
from .protocols import NotificationChannel

log = structlog.get_logger()

DIGEST_SENDER = "sweeper"


def _preview(title: str) -> str:
    if len(title) <= TITLE_PREVIEW_LENGTH:
        return title
    return title[: TITLE_PREVIEW_LENGTH - 3] + "..."


def _with_reviewer(violation: SweepViolation) -> str:
    return (
        f"  - {_preview(violation.title)} ({violation.task_id}) -- "
        f"{violation.age_minutes}m, reviewer: @{violation.reviewer or 'unassigned'}"
    )


def build_digest(violations: list[SweepViolation]) -> str | None:
    """构建摘要正文

    Returns:
        摘要文本；没有违规时返回 None
    """
    if not violations:
        return None

    critical = [v for v in violations if v.type == ViolationType.VALIDATING_CRITICAL]
    warnings = [v for v in violations if v.type == ViolationType.VALIDATING_SLA]
    pr_issues = [
        v for v in violations if v.type in (ViolationType.PR_DRIFT, ViolationType.ORPHAN_PR)
    ]

    lines = [f"**Sweeper Digest** -- {len(violations)} issue(s) found"]

    if critical:
        lines.append("")
        lines.append(f"**Critical** ({len(critical)}):")
        lines.extend(_with_reviewer(v) for v in critical)

    if warnings:
        lines.append("")
        lines.append(f"**SLA Warning** ({len(warnings)}):")
        lines.extend(_with_reviewer(v) for v in warnings)

    if pr_issues:
        lines.append("")
        lines.append(f"**PR Issues** ({len(pr_issues)}):")
        lines.extend(
            f"  - {_preview(v.title)} ({v.task_id}) -- {v.age_minutes}m [{v.type}]"
            for v in pr_issues
        )

    return "\n".join(lines)


class DigestEscalator:
    """每轮扫描最多发出一条摘要通知"""

    def __init__(self, notifier: NotificationChannel, config: SweeperConfig) -> None:
        self._notifier = notifier
        self._config = config

    async def escalate(self, violations: list[SweepViolation]) -> bool:
        """发送摘要

        Returns:
            True 表示已成功投递；无违规或投递失败返回 False
        """
        content = build_digest(violations)
        if content is None:
            return False

        notification = Notification(
            sender=DIGEST_SENDER,
            channel=self._config.digest_channel,
            content=content,
        )
        try:
            await self._notifier.send(notification)
        except Exception as e:
            log.warning(
                "digest_delivery_failed",
                channel=notification.channel,
                violation_count=len(violations),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        log.info(
            "digest_sent",
            channel=notification.channel,
            violation_count=len(violations),
            by_type={t.value: sum(1 for v in violations if v.type == t) for t in ViolationType},
        )
        return True
