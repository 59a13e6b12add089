"""时间工具 -- metadata 时间戳的清洗与时长格式化

metadata 中的时间戳来自多个外部写入方，格式并不统一：
epoch 毫秒、epoch 秒、ISO-8601 字符串都出现过。
所有作为 SLA 时钟使用的值都必须先经过 coerce_timestamp()。
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

log = structlog.get_logger()

# 小于该值的 epoch 数值按秒处理（1e11 ms ≈ 1973 年，1e11 s 远在未来）
_EPOCH_SECONDS_CEILING = 100_000_000_000

# 允许的未来时钟偏差，超出视为无效时间戳
MAX_FUTURE_SKEW = timedelta(minutes=5)

# 超过一年的"时长"几乎一定是把时间戳误当作时长传入
_MAX_SANE_DURATION = timedelta(days=365)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def ensure_utc(dt: datetime) -> datetime:
    """naive datetime 视为 UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def truncate_ms(dt: datetime) -> datetime:
    """截断到毫秒精度，与 metadata 中持久化的 epoch 毫秒保持一致"""
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def to_epoch_ms(dt: datetime) -> int:
    """datetime -> epoch 毫秒（写入 metadata 的统一格式）"""
    return (ensure_utc(dt) - _EPOCH) // timedelta(milliseconds=1)


def coerce_timestamp(value: Any, now: datetime | None = None) -> datetime | None:
    """将 metadata 中的时间戳清洗为带时区的 UTC datetime

    接受：datetime、epoch 毫秒、epoch 秒、数字字符串、ISO-8601 字符串。
    拒绝（返回 None）：bool、非正数、无法解析的字符串、
    以及比 now 晚超过 MAX_FUTURE_SKEW 的时间。

    Args:
        value: 原始值
        now: 当前时间，提供时用于拒绝未来时间戳

    Returns:
        清洗后的 datetime，无效时返回 None
    """
    result: datetime | None = None

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        result = value if value.tzinfo else value.replace(tzinfo=UTC)
    elif isinstance(value, int | float):
        result = _from_epoch(float(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = _from_epoch(float(text))
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            result = parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    if result is None:
        return None
    if now is not None and result - now > MAX_FUTURE_SKEW:
        log.warning(
            "future_timestamp_rejected",
            value=str(value),
            now=now.isoformat(),
        )
        return None
    return result.astimezone(UTC)


def _from_epoch(number: float) -> datetime | None:
    if number <= 0:
        return None
    if number < _EPOCH_SECONDS_CEILING:
        # epoch 秒
        number *= 1000
    try:
        return _EPOCH + timedelta(milliseconds=number)
    except (OverflowError, OSError, ValueError):
        return None


def minutes_between(start: datetime, end: datetime) -> int:
    """两个时间点间隔的整分钟数（负值截断为 0）"""
    seconds = (end - start).total_seconds()
    return max(0, int(seconds // 60))


def format_duration(delta: timedelta) -> str:
    """时长格式化：'<1m' / '45m' / '3h 20m' / '2d 4h'

    对明显失真的输入（负数或超过一年）做单位校验，
    返回 'unknown' 并记录告警，避免把错误的时长发到通知里。
    """
    if delta < timedelta(0) or delta > _MAX_SANE_DURATION:
        log.warning("duration_out_of_range", seconds=delta.total_seconds())
        return "unknown"

    total_minutes = int(delta.total_seconds() // 60)
    if total_minutes < 1:
        return "<1m"
    days, rem_minutes = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rem_minutes, 60)
    if days:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{minutes}m"
