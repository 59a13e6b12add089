"""孤儿 PR / PR 漂移检测测试"""

from datetime import timedelta

from reviewloop.core.models import TaskStatus
from reviewloop.sweeper.config import SweeperConfig
from reviewloop.sweeper.detector import OrphanDriftDetector
from reviewloop.sweeper.models import ViolationType
from reviewloop.sweeper.timeutil import to_epoch_ms

PR = "https://github.com/acme/app/pull/42"


def _detector() -> OrphanDriftDetector:
    return OrphanDriftDetector(SweeperConfig())


class TestOrphanScan:
    """scan_orphans"""

    def test_orphan_reported_once(self, make_task, clock):
        done = make_task("T3", TaskStatus.DONE, age=timedelta(hours=3), metadata={"pr_url": PR})
        detector = _detector()

        first = detector.scan_orphans([done], [], clock.now)
        assert [v.type for v in first] == [ViolationType.ORPHAN_PR]
        assert PR in first[0].message
        assert "gh pr close 42 --repo acme/app" in first[0].remediation
        assert first[0].age_minutes == 180

        assert detector.scan_orphans([done], [], clock.now) == []
        assert PR in detector.flagged_orphans

    def test_same_url_on_multiple_completed_tasks(self, make_task, clock):
        done = make_task("a", TaskStatus.DONE, age=timedelta(hours=3), metadata={"pr_url": PR})
        cancelled = make_task(
            "b", TaskStatus.CANCELLED, age=timedelta(hours=4), metadata={"pr_url": PR}
        )
        violations = _detector().scan_orphans([done, cancelled], [], clock.now)
        assert len(violations) == 1

    def test_active_reference_suppresses(self, make_task, clock):
        done = make_task("a", TaskStatus.DONE, age=timedelta(hours=3), metadata={"pr_url": PR})
        for status in (
            TaskStatus.TODO,
            TaskStatus.DOING,
            TaskStatus.VALIDATING,
            TaskStatus.BLOCKED,
        ):
            active = make_task("b", status, metadata={"qa_bundle": {"pr_link": PR}})
            assert _detector().scan_orphans([done], [active], clock.now) == []

    def test_merged_pr_not_orphan(self, make_task, clock):
        done = make_task(
            "a",
            TaskStatus.DONE,
            age=timedelta(hours=3),
            metadata={"pr_url": PR, "pr_merged": True},
        )
        assert _detector().scan_orphans([done], [], clock.now) == []

    def test_below_threshold(self, make_task, clock):
        done = make_task("a", TaskStatus.DONE, age=timedelta(hours=1), metadata={"pr_url": PR})
        detector = _detector()
        assert detector.scan_orphans([done], [], clock.now) == []
        # 达到阈值后才报告，且不会因之前的跳过而被标记
        clock.advance(hours=1)
        assert len(detector.scan_orphans([done], [], clock.now)) == 1

    def test_no_pr_reference(self, make_task, clock):
        done = make_task("a", TaskStatus.DONE, age=timedelta(hours=5))
        assert _detector().scan_orphans([done], [], clock.now) == []


class TestDriftScan:
    """scan_drift"""

    def test_merged_but_validating(self, make_task, clock):
        task = make_task(
            "t",
            metadata={
                "pr_url": PR,
                "pr_merged": True,
                "pr_merged_at": to_epoch_ms(clock.now - timedelta(hours=3)),
            },
        )
        detector = _detector()
        violations = detector.scan_drift([task], clock.now)
        assert [v.type for v in violations] == [ViolationType.PR_DRIFT]
        assert violations[0].age_minutes == 180
        assert detector.scan_drift([task], clock.now) == []

    def test_merged_at_falls_back_to_updated_at(self, make_task, clock):
        task = make_task("t", age=timedelta(hours=2), metadata={"pr_merged": True})
        assert len(_detector().scan_drift([task], clock.now)) == 1

    def test_recent_merge_not_reported(self, make_task, clock):
        task = make_task(
            "t",
            metadata={
                "pr_merged": True,
                "pr_merged_at": to_epoch_ms(clock.now - timedelta(minutes=30)),
            },
        )
        assert _detector().scan_drift([task], clock.now) == []

    def test_flag_dropped_when_task_leaves_validating(self, make_task, clock):
        task = make_task("t", age=timedelta(hours=3), metadata={"pr_merged": True})
        detector = _detector()
        assert len(detector.scan_drift([task], clock.now)) == 1
        assert "t" in detector.flagged_drift

        detector.scan_drift([], clock.now)
        assert "t" not in detector.flagged_drift
        # 重新进入 validating 后可再次报告
        assert len(detector.scan_drift([task], clock.now)) == 1

    def test_unmerged_ignored(self, make_task, clock):
        task = make_task("t", age=timedelta(hours=30), metadata={"pr_url": PR})
        assert _detector().scan_drift([task], clock.now) == []
