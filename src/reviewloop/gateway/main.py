"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + Sweep Engine 组装与启停 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from reviewloop.core.config import get_db_path
from reviewloop.core.store import create_store_group
from reviewloop.sweeper import (
    DigestEscalator,
    DriftReportGenerator,
    GitHubPrStateChecker,
    LogNotificationChannel,
    NullAutoMerge,
    PeriodicRunner,
    SweepOrchestrator,
    WebhookNotificationChannel,
    load_sweeper_config,
)

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import health, sweeper

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与 Sweeper，关闭时停止定时器并清理连接"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    app.state.store_group = store_group

    config = load_sweeper_config()
    app.state.sweeper_config = config

    if config.notify_webhook_url:
        notifier = WebhookNotificationChannel(config.notify_webhook_url)
        log.info("notification_channel_initialized", mode="webhook")
    else:
        notifier = LogNotificationChannel()
        log.info("notification_channel_initialized", mode="log")

    orchestrator = SweepOrchestrator(
        store_group.task_store,
        notifier,
        config=config,
        auto_merge=NullAutoMerge(),
    )
    digest = DigestEscalator(notifier, config)
    runner = PeriodicRunner(
        orchestrator,
        digest,
        interval_s=config.interval_s,
        initial_delay_s=config.initial_delay_s,
    )
    pr_checker = GitHubPrStateChecker(
        api_base_url=config.github_api_url,
        token=config.github_token.get_secret_value(),
        timeout_s=config.pr_check_timeout_s,
        cache_ttl_s=config.pr_state_cache_ttl_s,
    )

    app.state.orchestrator = orchestrator
    app.state.digest = digest
    app.state.runner = runner
    app.state.drift_report_generator = DriftReportGenerator(
        store_group.task_store,
        pr_checker,
        config,
    )

    if config.enabled:
        runner.start()
    else:
        log.info("sweeper_disabled")

    yield

    # 关闭：先停止定时器，再清理数据库连接
    await runner.stop()
    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="reviewloop Gateway",
        version="0.1.0",
        description="评审流水线 Sweep Engine API",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    setup_logging()

    app.include_router(sweeper.router, tags=["sweeper"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
