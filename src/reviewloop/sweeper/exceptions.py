"""Sweeper 异常体系

Sweep Engine 自身从不向宿主进程抛出这些异常：
它们由协作方实现抛出，在扫描的隔离边界被捕获并记录。
"""


class SweeperError(Exception):
    """Sweeper 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 下一轮扫描是否可能自行恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class PrStateCheckError(SweeperError):
    """外部 PR 状态查询失败（网络错误、超时、非预期响应）"""

    def __init__(self, pr_url: str, reason: str) -> None:
        super().__init__(f"PR 状态查询失败: {pr_url} -- {reason}")
        self.pr_url = pr_url
        self.reason = reason


class NotificationDeliveryError(SweeperError):
    """通知投递失败，调用方记录后丢弃，不在同一轮重试"""

    def __init__(self, channel: str, original_error: Exception) -> None:
        super().__init__(f"通知投递失败: channel={channel} -- {original_error}")
        self.channel = channel
        self.original_error = original_error

