"""命令行入口 -- python -m reviewloop.sweeper {run-once,drift-report}

对配置的数据库执行一次扫描或生成漂移报告，结果以 JSON 输出到 stdout。
"""

import argparse
import asyncio
import sys

from reviewloop.core.config import get_db_path
from reviewloop.core.store import create_store_group
from reviewloop.gateway.middleware.logging_config import setup_logging

from .auto_merge import NullAutoMerge
from .config import load_sweeper_config
from .digest import DigestEscalator
from .drift_report import DriftReportGenerator
from .notifications import LogNotificationChannel, WebhookNotificationChannel
from .orchestrator import SweepOrchestrator
from .pr_state import GitHubPrStateChecker
from .runner import PeriodicRunner


async def _run_once(db_path: str, notify: bool) -> int:
    config = load_sweeper_config()
    store_group = await create_store_group(db_path)
    try:
        if notify and config.notify_webhook_url:
            notifier = WebhookNotificationChannel(config.notify_webhook_url)
        else:
            notifier = LogNotificationChannel()
        orchestrator = SweepOrchestrator(
            store_group.task_store,
            notifier,
            config=config,
            auto_merge=NullAutoMerge(),
        )
        runner = PeriodicRunner(orchestrator, DigestEscalator(notifier, config))
        result = await runner.run_once()
        await orchestrator.wait_background()
    finally:
        await store_group.conn.close()

    if result is None:
        print('{"error": "sweep failed"}')
        return 1
    print(result.model_dump_json(indent=2))
    return 0


async def _drift_report(db_path: str) -> int:
    config = load_sweeper_config()
    store_group = await create_store_group(db_path)
    try:
        checker = GitHubPrStateChecker(
            api_base_url=config.github_api_url,
            token=config.github_token.get_secret_value(),
            timeout_s=config.pr_check_timeout_s,
            cache_ttl_s=config.pr_state_cache_ttl_s,
        )
        report = await DriftReportGenerator(store_group.task_store, checker, config).generate()
    finally:
        await store_group.conn.close()

    print(report.model_dump_json(indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m reviewloop.sweeper",
        description="Review pipeline sweep engine",
    )
    parser.add_argument("--db", default=None, help="SQLite path (default: REVIEWLOOP_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)
    run_once = sub.add_parser("run-once", help="run a single sweep and print the result")
    run_once.add_argument(
        "--notify",
        action="store_true",
        help="deliver notifications through the configured webhook",
    )
    sub.add_parser("drift-report", help="print a drift report with live PR state")
    args = parser.parse_args(argv)

    # 日志写 stderr，stdout 只输出 JSON 结果
    setup_logging()

    db_path = args.db or get_db_path()
    if args.command == "run-once":
        return asyncio.run(_run_once(db_path, args.notify))
    return asyncio.run(_drift_report(db_path))


if __name__ == "__main__":
    sys.exit(main())
