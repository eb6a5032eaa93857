"""
Webhook 分发模块 - 把会话事件推送到配置的 HTTP 端点。

WebhookConductor 订阅会话的事件通道，对每个匹配的事件发起一次 POST：
- 请求体：{"event": ..., "session": ..., "payload": {...}}
- 每次投递在独立的任务中执行，慢端点不会阻塞会话或其他端点
- 投递失败只记录日志，不重试

【签名】
配置了 hmac.key 时附带以下请求头：
- X-Webhook-Hmac：请求体的 HMAC-SHA512（十六进制）
- X-Webhook-Hmac-Algorithm：sha512
每个请求都带有 X-Webhook-Request-Id，以及 customHeaders 中的自定义头。
"""

import asyncio
import hashlib
import hmac
import json
import uuid
from typing import TYPE_CHECKING

import httpx
from loguru import logger

from wagate.bus.events import SessionEvent
from wagate.structures import WebhookConfig

if TYPE_CHECKING:
    from wagate.engines.base import WhatsappSession


class WebhookConductor:
    """
    Webhook 分发器。所有会话共享一个实例（共享 HTTP 连接池）。

    属性:
        timeout: 单次投递的超时时间（秒）
        _http: 异步 HTTP 客户端（未传入时在首次投递时创建）
        _tasks: 进行中的投递任务
    """

    def __init__(self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None):
        self.timeout = timeout
        self._http = http_client
        self._tasks: set[asyncio.Task] = set()

    def configure(
        self,
        session: "WhatsappSession",
        webhooks: list[WebhookConfig],
        initial: SessionEvent | None = None,
    ) -> None:
        """
        为会话挂接 Webhook。

        参数:
            session: 会话
            webhooks: 该会话生效的 Webhook 列表（会话级在前，全局在后）
            initial: 触发挂接的事件（通常是 engine.start），挂接后立即按过滤规则投递
        """
        targets = [w for w in webhooks if w.url]
        if not targets:
            logger.debug(f"'{session.name}' - no webhooks configured")
            return

        def dispatch(event: SessionEvent) -> None:
            for webhook in targets:
                if webhook.matches(event.kind.value):
                    self._spawn(self.deliver(webhook, event))

        async def on_event(event: SessionEvent) -> None:
            dispatch(event)

        session.events.subscribe(on_event)
        if initial is not None:
            dispatch(initial)
        for webhook in targets:
            logger.info(f"'{session.name}' - webhook {webhook.url} configured for {webhook.events}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, webhook: WebhookConfig, event: SessionEvent) -> None:
        """投递单个事件到单个端点。所有异常在这里被记录，不会向外传播。"""
        body = json.dumps(event.to_webhook_body(), default=str).encode("utf-8")
        headers = self.build_headers(webhook, body)
        try:
            response = await self._client().post(webhook.url, content=body, headers=headers)
            response.raise_for_status()
            logger.debug(f"'{event.session}' - {event.kind.value} delivered to {webhook.url}")
        except httpx.HTTPError as e:
            logger.error(f"'{event.session}' - failed to deliver {event.kind.value} to {webhook.url}: {e}")

    @staticmethod
    def build_headers(webhook: WebhookConfig, body: bytes) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "X-Webhook-Request-Id": uuid.uuid4().hex,
        }
        if webhook.hmac and webhook.hmac.key:
            headers["X-Webhook-Hmac"] = signature(webhook.hmac.key, body)
            headers["X-Webhook-Hmac-Algorithm"] = "sha512"
        headers.update(webhook.custom_headers)
        return headers

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def drain(self) -> None:
        """等待所有进行中的投递完成。"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """等待进行中的投递并关闭 HTTP 客户端。"""
        await self.drain()
        if self._http:
            await self._http.aclose()
            self._http = None


def signature(key: str, body: bytes | str) -> str:
    """计算请求体签名，供接收端校验使用。"""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(key.encode("utf-8"), body, hashlib.sha512).hexdigest()
