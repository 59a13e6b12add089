"""DigestEscalator 测试"""

from unittest.mock import AsyncMock

from reviewloop.sweeper.config import SweeperConfig
from reviewloop.sweeper.digest import DigestEscalator, build_digest
from reviewloop.sweeper.models import SweepViolation, ViolationType
from reviewloop.sweeper.notifications import LogNotificationChannel


def _violation(task_id: str, vtype: ViolationType, **kwargs) -> SweepViolation:
    return SweepViolation(
        task_id=task_id,
        title=kwargs.pop("title", f"Task {task_id}"),
        type=vtype,
        age_minutes=kwargs.pop("age_minutes", 130),
        message="msg",
        **kwargs,
    )


class TestBuildDigest:
    """摘要正文"""

    def test_empty(self):
        assert build_digest([]) is None

    def test_grouped_sections(self):
        content = build_digest(
            [
                _violation("c1", ViolationType.VALIDATING_CRITICAL, reviewer="alice"),
                _violation("w1", ViolationType.VALIDATING_SLA),
                _violation("w2", ViolationType.VALIDATING_SLA, reviewer="bob"),
                _violation("o1", ViolationType.ORPHAN_PR),
                _violation("d1", ViolationType.PR_DRIFT),
            ]
        )
        lines = content.splitlines()
        assert lines[0] == "**Sweeper Digest** -- 5 issue(s) found"
        assert "**Critical** (1):" in lines
        assert "**SLA Warning** (2):" in lines
        assert "**PR Issues** (2):" in lines
        assert lines.index("**Critical** (1):") < lines.index("**SLA Warning** (2):")
        assert "  - Task c1 (c1) -- 130m, reviewer: @alice" in lines
        assert "  - Task w1 (w1) -- 130m, reviewer: @unassigned" in lines

    def test_omits_empty_sections(self):
        content = build_digest([_violation("o1", ViolationType.ORPHAN_PR)])
        assert "Critical" not in content
        assert "SLA Warning" not in content
        assert "**PR Issues** (1):" in content

    def test_long_titles_truncated(self):
        content = build_digest(
            [_violation("c1", ViolationType.VALIDATING_CRITICAL, title="x" * 500)]
        )
        assert "x" * 500 not in content
        assert "..." in content


class TestEscalate:
    """escalate 投递"""

    async def test_single_notification_per_sweep(self):
        notifier = LogNotificationChannel()
        digest = DigestEscalator(notifier, SweeperConfig(digest_channel="ops"))

        violations = [_violation(f"t{i}", ViolationType.VALIDATING_SLA) for i in range(10)]
        assert await digest.escalate(violations) is True

        assert len(notifier.sent) == 1
        assert notifier.sent[0].channel == "ops"
        assert notifier.sent[0].sender == "sweeper"

    async def test_no_violations_no_message(self):
        notifier = LogNotificationChannel()
        assert await DigestEscalator(notifier, SweeperConfig()).escalate([]) is False
        assert len(notifier.sent) == 0

    async def test_delivery_failure_not_retried(self):
        notifier = AsyncMock()
        notifier.send.side_effect = RuntimeError("chat down")
        digest = DigestEscalator(notifier, SweeperConfig())

        violations = [_violation("t", ViolationType.VALIDATING_CRITICAL)]
        assert await digest.escalate(violations) is False
        notifier.send.assert_awaited_once()
