"""Sweeper 路由测试

测试内容：
1. GET /api/sweeper/status 返回状态快照
2. POST /api/sweeper/run 执行扫描并发送摘要；扫描失败返回 503
3. GET /api/sweeper/drift-report 返回漂移报告
4. POST /api/sweeper/pr-events 处理外部 PR 事件
5. 扫描进行中再次触发返回 409
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

from httpx import AsyncClient
from reviewloop.core.models import Task, TaskStatus
from reviewloop.sweeper import SweepResult

PR_URL = "https://github.com/acme/app/pull/9"


def _task(clock, task_id: str, status=TaskStatus.VALIDATING, age=timedelta(0), **metadata):
    ts = clock.now - age
    return Task(
        task_id=task_id,
        title=f"Task {task_id}",
        status=status,
        assignee="dev",
        reviewer="rev",
        created_at=ts,
        updated_at=ts,
        metadata=metadata,
    )


class TestStatus:
    async def test_initial_status(self, client: AsyncClient):
        resp = await client.get("/api/sweeper/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["running"] is False
        assert data["last_result"] is None
        assert data["escalation_tracking"] == []


class TestRun:
    async def test_run_once(self, test_app, client: AsyncClient, clock):
        store = test_app.state.store_group.task_store
        await store.create_task(_task(clock, "stale", age=timedelta(hours=9), pr_url=PR_URL))

        resp = await client.post("/api/sweeper/run")
        assert resp.status_code == 200
        data = resp.json()
        assert data["tasks_scanned"] == 1
        assert [v["type"] for v in data["violations"]] == ["validating_critical"]

        await test_app.state.orchestrator.wait_background()
        digests = [n for n in test_app.state.notifier.sent if n.sender == "sweeper"]
        assert len(digests) == 1
        assert "**Critical** (1):" in digests[0].content

        status = (await client.get("/api/sweeper/status")).json()
        assert status["last_result"]["tasks_scanned"] == 1
        assert [e["task_id"] for e in status["escalation_tracking"]] == ["stale"]

    async def test_run_failure_returns_503(self, test_app, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(
            test_app.state.orchestrator, "sweep", AsyncMock(side_effect=RuntimeError("db gone"))
        )
        resp = await client.post("/api/sweeper/run")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "SWEEP_FAILED"


class TestDriftReport:
    async def test_drift_report(self, test_app, client: AsyncClient, clock):
        store = test_app.state.store_group.task_store
        await store.create_task(_task(clock, "merged", pr_url=PR_URL, pr_merged=True))
        await store.create_task(_task(clock, "no-pr"))

        resp = await client.get("/api/sweeper/drift-report")
        assert resp.status_code == 200
        data = resp.json()
        issues = {e["task_id"]: e["issue"] for e in data["validating"]}
        assert issues == {"merged": "pr_merged_not_closed", "no-pr": "no_pr_linked"}
        assert data["summary"]["total_validating"] == 2
        assert data["orphan_prs"] == []

        # 报告只读
        assert (await store.get_task("merged")).status == TaskStatus.VALIDATING


class TestPrEvents:
    async def test_merged_event_flags_drift(self, test_app, client: AsyncClient, clock):
        store = test_app.state.store_group.task_store
        await store.create_task(_task(clock, "task-1", pr_url=PR_URL))

        resp = await client.post(
            "/api/sweeper/pr-events", json={"task_id": "task-1", "pr_state": "merged"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["violation"]["type"] == "pr_drift"
        assert data["notified"] is True
        assert "**PR Issues** (1):" in test_app.state.notifier.sent[-1].content

    async def test_no_drift(self, test_app, client: AsyncClient, clock):
        store = test_app.state.store_group.task_store
        await store.create_task(_task(clock, "task-1", TaskStatus.DONE))

        resp = await client.post(
            "/api/sweeper/pr-events", json={"task_id": "task-1", "pr_state": "closed"}
        )
        assert resp.status_code == 200
        assert resp.json() == {"task_id": "task-1", "violation": None, "notified": False}

    async def test_unknown_task_returns_404(self, client: AsyncClient):
        resp = await client.post(
            "/api/sweeper/pr-events", json={"task_id": "missing", "pr_state": "merged"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_invalid_state_rejected(self, client: AsyncClient):
        resp = await client.post(
            "/api/sweeper/pr-events", json={"task_id": "task-1", "pr_state": "open"}
        )
        assert resp.status_code == 422


class TestRunConcurrency:
    async def test_run_while_sweeping_returns_409(
        self, test_app, client: AsyncClient, clock, monkeypatch
    ):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocked_sweep():
            started.set()
            await release.wait()
            return SweepResult(timestamp=clock.now)

        monkeypatch.setattr(test_app.state.orchestrator, "sweep", blocked_sweep)
        in_flight = asyncio.create_task(test_app.state.runner.run_once())
        await started.wait()

        resp = await client.post("/api/sweeper/run")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "SWEEP_IN_PROGRESS"

        release.set()
        assert await in_flight is not None
