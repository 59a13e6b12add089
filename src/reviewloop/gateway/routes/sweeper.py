"""Sweeper 路由

GET  /api/sweeper/status: 最近一次扫描结果、升级跟踪、审计日志
POST /api/sweeper/run: 立即执行一轮扫描（已有扫描进行中返回 409，扫描失败返回 503）
GET  /api/sweeper/drift-report: 按需漂移报告（含实时 PR 状态）
POST /api/sweeper/pr-events: 外部 PR 合并/关闭事件，产生的违规通过摘要通知
"""

from typing import Literal

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from reviewloop.core.store import TaskNotFoundError
from reviewloop.sweeper import (
    DigestEscalator,
    DriftReport,
    DriftReportGenerator,
    PeriodicRunner,
    PrState,
    SweeperStatus,
    SweepOrchestrator,
    SweepResult,
    SweepViolation,
)
from starlette.responses import JSONResponse

from ..deps import get_digest, get_drift_report_generator, get_orchestrator, get_runner

log = structlog.get_logger()

router = APIRouter()


class PrEventRequest(BaseModel):
    """外部 PR 事件"""

    task_id: str = Field(min_length=1, description="任务 ID 或唯一前缀")
    pr_state: Literal["merged", "closed"] = Field(description="PR 最新状态")


class PrEventResponse(BaseModel):
    """PR 事件处理结果"""

    task_id: str
    violation: SweepViolation | None = None
    notified: bool = False


@router.get("/api/sweeper/status", response_model=SweeperStatus)
async def sweeper_status(
    orchestrator: SweepOrchestrator = Depends(get_orchestrator),
    runner: PeriodicRunner = Depends(get_runner),
):
    """查询 Sweeper 状态"""
    return orchestrator.status(running=runner.running)


@router.post("/api/sweeper/run", response_model=SweepResult)
async def run_sweep(runner: PeriodicRunner = Depends(get_runner)):
    """立即执行一轮扫描 + 摘要"""
    if runner.sweep_in_progress:
        return JSONResponse(
            status_code=409,
            content={
                "error": {
                    "code": "SWEEP_IN_PROGRESS",
                    "message": "A sweep is already running, retry later",
                }
            },
        )
    result = await runner.run_once()
    if result is None:
        return JSONResponse(
            status_code=503,
            content={
                "error": {
                    "code": "SWEEP_FAILED",
                    "message": "Sweep failed, see logs for details",
                }
            },
        )
    return result


@router.get("/api/sweeper/drift-report", response_model=DriftReport)
async def drift_report(
    generator: DriftReportGenerator = Depends(get_drift_report_generator),
):
    """生成漂移报告"""
    return await generator.generate()


@router.post("/api/sweeper/pr-events", response_model=PrEventResponse)
async def pr_event(
    body: PrEventRequest,
    orchestrator: SweepOrchestrator = Depends(get_orchestrator),
    digest: DigestEscalator = Depends(get_digest),
):
    """处理外部 PR 事件"""
    try:
        violation = await orchestrator.flag_pr_drift(body.task_id, PrState(body.pr_state))
    except TaskNotFoundError:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "code": "TASK_NOT_FOUND",
                    "message": f"Task {body.task_id} not found",
                }
            },
        )

    notified = False
    if violation is not None:
        notified = await digest.escalate([violation])
    log.info(
        "pr_event_processed",
        task_id=body.task_id,
        pr_state=body.pr_state,
        drift=violation is not None,
    )
    return PrEventResponse(task_id=body.task_id, violation=violation, notified=notified)
