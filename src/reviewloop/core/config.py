"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径等核心可配置项。Sweeper 相关阈值见 reviewloop.sweeper.config。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("REVIEWLOOP_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "REVIEWLOOP_DB_PATH",
        str(_get_base_dir() / "sqlite" / "reviewloop.db"),
    )


# 任务标题截断长度（通知/报告中使用）
TITLE_PREVIEW_LENGTH: int = 120
