"""SweeperConfig -- Sweep Engine 配置加载

从环境变量加载阈值、周期与外部协作方地址。
非法取值记录告警后回退默认值，不阻塞启动。
"""

import os

import structlog
from pydantic import BaseModel, Field, SecretStr, ValidationError

log = structlog.get_logger()


class SweeperConfig(BaseModel):
    """Sweep Engine 配置 -- 时间单位均为秒

    环境变量映射见 load_sweeper_config()。
    """

    enabled: bool = Field(default=True, description="是否启动周期扫描")
    interval_s: int = Field(default=5 * 60, ge=1, description="扫描周期")
    initial_delay_s: int = Field(
        default=5,
        ge=0,
        description="启动后首次扫描延迟（避免与服务启动争抢资源）",
    )
    warning_threshold_s: int = Field(
        default=2 * 60 * 60,
        ge=1,
        description="validating SLA 告警阈值（评审者异步，不宜过短）",
    )
    critical_threshold_s: int = Field(
        default=8 * 60 * 60,
        ge=1,
        description="validating 严重超时阈值",
    )
    orphan_threshold_s: int = Field(
        default=2 * 60 * 60,
        ge=0,
        description="孤儿 PR / PR 漂移判定阈值",
    )
    escalation_cooldown_s: int = Field(
        default=4 * 60 * 60,
        ge=0,
        description="同一任务两次升级之间的最短间隔",
    )
    max_escalation_count: int = Field(
        default=3,
        ge=1,
        description="单个任务最多升级次数，达到后静默",
    )
    artifact_grace_s: int = Field(
        default=0,
        ge=0,
        description="validating 缺少产物的宽限期，0 表示不启用自动退回",
    )
    pr_state_cache_ttl_s: int = Field(default=5 * 60, ge=0, description="PR 状态缓存 TTL")
    pr_check_timeout_s: int = Field(default=10, ge=1, description="PR 状态查询超时")
    digest_channel: str = Field(default="general", description="摘要通知频道")
    task_channel: str = Field(
        default="task-notifications",
        description="任务级通知频道（自动关闭等）",
    )
    notify_webhook_url: str | None = Field(
        default=None,
        description="通知 webhook 地址，None 时仅写日志",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub REST API 基础 URL",
    )
    github_token: SecretStr = Field(default=SecretStr(""), description="GitHub 访问令牌")


_INT_ENV_FIELDS: dict[str, str] = {
    "REVIEWLOOP_SWEEP_INTERVAL_S": "interval_s",
    "REVIEWLOOP_SWEEP_INITIAL_DELAY_S": "initial_delay_s",
    "REVIEWLOOP_VALIDATING_SLA_S": "warning_threshold_s",
    "REVIEWLOOP_VALIDATING_CRITICAL_S": "critical_threshold_s",
    "REVIEWLOOP_ORPHAN_PR_THRESHOLD_S": "orphan_threshold_s",
    "REVIEWLOOP_ESCALATION_COOLDOWN_S": "escalation_cooldown_s",
    "REVIEWLOOP_MAX_ESCALATION_COUNT": "max_escalation_count",
    "REVIEWLOOP_ARTIFACT_GRACE_S": "artifact_grace_s",
    "REVIEWLOOP_PR_STATE_CACHE_TTL_S": "pr_state_cache_ttl_s",
    "REVIEWLOOP_PR_CHECK_TIMEOUT_S": "pr_check_timeout_s",
}

_STR_ENV_FIELDS: dict[str, str] = {
    "REVIEWLOOP_DIGEST_CHANNEL": "digest_channel",
    "REVIEWLOOP_TASK_NOTIFICATION_CHANNEL": "task_channel",
    "REVIEWLOOP_NOTIFY_WEBHOOK_URL": "notify_webhook_url",
    "GITHUB_API_URL": "github_api_url",
}


def load_sweeper_config() -> SweeperConfig:
    """从环境变量加载 Sweeper 配置

    Returns:
        SweeperConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("REVIEWLOOP_SWEEPER_ENABLED"):
        kwargs["enabled"] = val.strip().lower() not in ("0", "false", "no", "off")

    for env_var, field_name in _INT_ENV_FIELDS.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        try:
            parsed = int(val)
        except ValueError:
            parsed = None
        default = SweeperConfig.model_fields[field_name].default
        if parsed is None:
            log.warning(
                "invalid_sweeper_config",
                env_var=env_var,
                value=val,
                fallback=default,
            )
            continue
        kwargs[field_name] = parsed

    for env_var, field_name in _STR_ENV_FIELDS.items():
        if val := os.environ.get(env_var):
            kwargs[field_name] = val

    if val := os.environ.get("GITHUB_TOKEN"):
        kwargs["github_token"] = SecretStr(val)

    try:
        return SweeperConfig(**kwargs)
    except ValidationError as e:
        # 超出取值范围的字段回退默认值
        invalid = {err["loc"][0] for err in e.errors() if err["loc"]}
        log.warning("invalid_sweeper_config", fields=sorted(invalid), fallback="default")
        return SweeperConfig(**{k: v for k, v in kwargs.items() if k not in invalid})
