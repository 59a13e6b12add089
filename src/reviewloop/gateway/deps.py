"""依赖注入模块 -- 通过 FastAPI Depends 注入 Sweeper 组件

所有实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from reviewloop.sweeper import (
    DigestEscalator,
    DriftReportGenerator,
    PeriodicRunner,
    SweepOrchestrator,
)


def get_orchestrator(request: Request) -> SweepOrchestrator:
    return request.app.state.orchestrator


def get_runner(request: Request) -> PeriodicRunner:
    return request.app.state.runner


def get_digest(request: Request) -> DigestEscalator:
    return request.app.state.digest


def get_drift_report_generator(request: Request) -> DriftReportGenerator:
    return request.app.state.drift_report_generator
