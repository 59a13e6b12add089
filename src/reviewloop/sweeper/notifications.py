"""通知通道实现

- LogNotificationChannel: 只写结构化日志（未配置 webhook 时的默认通道）
- WebhookNotificationChannel: 通过 httpx POST JSON 到外部聊天服务
"""

from collections import deque

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import NotificationDeliveryError

log = structlog.get_logger()


class Notification(BaseModel):
    """出站通知 -- 序列化为 {from, channel, content}"""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from", description="发送方标识")
    channel: str = Field(description="目标频道")
    content: str = Field(description="消息正文")


class LogNotificationChannel:
    """日志通知通道，永不失败；保留最近 max_recent 条供排查"""

    def __init__(self, max_recent: int = 100) -> None:
        self.sent: deque[Notification] = deque(maxlen=max_recent)

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        log.info(
            "notification_logged",
            sender=notification.sender,
            channel=notification.channel,
            content=notification.content,
        )


class WebhookNotificationChannel:
    """Webhook 通知通道

    非 2xx 响应或网络错误统一包装为 NotificationDeliveryError。
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_s: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            webhook_url: 外部聊天服务的 webhook 地址
            timeout_s: 请求超时（秒）
            transport: 自定义 httpx transport（测试注入 MockTransport）
        """
        self._webhook_url = webhook_url
        self._timeout_s = timeout_s
        self._transport = transport

    async def send(self, notification: Notification) -> None:
        payload = notification.model_dump(by_alias=True)
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._timeout_s,
            ) as http_client:
                resp = await http_client.post(self._webhook_url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(notification.channel, e) from e
        log.debug(
            "notification_delivered",
            channel=notification.channel,
            status_code=resp.status_code,
        )
