"""structlog 配置模块

gateway 与命令行共用：日志统一写 stderr（命令行的 stdout 只输出 JSON 结果）。
dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出
"""

import logging
import os
import sys

import structlog

SERVICE_NAME = "reviewloop"

# 每次 PR 状态查询 / webhook 投递都会在 INFO 级别打印请求行
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _add_service(
    logger: logging.Logger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json"（生产环境）或 "dev"（默认），None 时读取 REVIEWLOOP_LOG_FORMAT
        log_level: 日志级别，None 时读取 REVIEWLOOP_LOG_LEVEL
    """
    log_format = log_format or os.environ.get("REVIEWLOOP_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("REVIEWLOOP_LOG_LEVEL", "INFO")

    # sweep_id / request_id 由 PeriodicRunner 与 LoggingMiddleware 绑定到 contextvars
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
