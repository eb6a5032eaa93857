"""
引擎桥接传输模块 - 与外部引擎桥接进程之间的 WebSocket 通信。

聊天协议本身（握手、扫码配对、消息编解码）由独立运行的引擎桥接进程实现，
wagate 只通过 WebSocket 与之交换 JSON 帧：

  wagate (Python) <-> WebSocket <-> 引擎桥接进程 <-> 聊天平台

【消息协议】
wagate → 桥接：
- auth：{"type": "auth", "token": "..."}                      认证（配置了 token 时）
- start：{"type": "start", "session": "...", "engine": "...", "options": {...}}
- request：{"type": "request", "id": "...", "action": "...", "payload": {...}}

桥接 → wagate：
- response：{"type": "response", "id": "...", "ok": true, "result": ...}
- qr：{"type": "qr", "qr": "..."}                           需要扫码
- status：{"type": "status", "status": "authenticated|connected|disconnected"}
- message：{"type": "message", "message": {...}}              入站消息（引擎原生格式）
- error：{"type": "error", "error": "..."}

response 帧在 frames() 中被消费并唤醒对应的 request() 调用，其余帧原样交给会话处理，
因此 request() 只能在会话的监听任务运行期间使用，并且不能在处理 frames() 产出帧的代码里等待。
"""

import asyncio
import json
import uuid
from typing import Any, AsyncIterator

import websockets
from loguru import logger

from wagate.errors import TransportFailure
from wagate.utils.helpers import truncate_string


class BridgeTransport:
    """
    引擎桥接传输 - 一个会话对应一条 WebSocket 连接。

    属性:
        url: 桥接服务地址
        token: 认证令牌
        session: 会话名
        engine: 引擎名
        options: 交给桥接进程的引擎原生选项（凭证目录、浏览器参数、代理等）
        _ws: WebSocket 连接对象
        _pending: 等待响应的请求 {请求 ID: Future}
    """

    def __init__(
        self,
        url: str,
        session: str,
        engine: str,
        options: dict[str, Any] | None = None,
        token: str = "",
        connect_timeout: float = 30.0,
        request_timeout: float = 60.0,
    ):
        self.url = url
        self.session = session
        self.engine = engine
        self.options = options or {}
        self.token = token
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self._ws = None
        self._pending: dict[str, asyncio.Future] = {}

    async def connect(self) -> None:
        """
        连接桥接服务并启动引擎会话。

        流程：建立 WebSocket 连接 → 发送认证令牌（如果配置了）→ 发送 start 指令
        """
        logger.info(f"'{self.session}' - connecting to {self.engine} bridge at {self.url}...")
        try:
            self._ws = await websockets.connect(self.url, open_timeout=self.connect_timeout)
            if self.token:
                await self._send({"type": "auth", "token": self.token})
            await self._send({
                "type": "start",
                "session": self.session,
                "engine": self.engine,
                "options": self.options,
            })
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise TransportFailure(f"Failed to connect to {self.url}: {e}", session=self.session) from e
        logger.info(f"'{self.session}' - connected to {self.engine} bridge")

    async def frames(self) -> AsyncIterator[dict[str, Any]]:
        """
        持续读取桥接服务推送的帧。

        response 帧在这里直接完成对应的请求，不会产出；
        连接断开时迭代结束（由会话判断是否属于异常断开）。
        """
        if not self._ws:
            raise TransportFailure("Bridge is not connected", session=self.session)
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"'{self.session}' - invalid JSON from bridge: {truncate_string(str(raw))}")
                    continue
                if data.get("type") == "response":
                    self._resolve(data)
                    continue
                yield data
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"'{self.session}' - bridge connection closed: {e}")
        finally:
            self._fail_pending("Bridge connection closed")

    async def request(self, action: str, payload: dict[str, Any] | None = None) -> Any:
        """
        向桥接服务发送请求并等待响应。

        参数:
            action: 动作名（如 "sendMessage"、"downloadMedia"）
            payload: 动作参数

        返回:
            桥接服务返回的 result 字段

        异常:
            TransportFailure: 未连接、超时或桥接服务返回错误
        """
        if not self._ws:
            raise TransportFailure("Bridge is not connected", session=self.session)

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({
                "type": "request",
                "id": request_id,
                "action": action,
                "payload": payload or {},
            })
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransportFailure(f"Bridge request '{action}' timed out", session=self.session) from e
        finally:
            self._pending.pop(request_id, None)

    async def close(self) -> None:
        """关闭 WebSocket 连接并让所有未完成的请求失败。"""
        self._fail_pending("Bridge connection closed")
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()

    async def _send(self, data: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(data))
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportFailure(f"Bridge connection closed: {e}", session=self.session) from e

    def _resolve(self, data: dict[str, Any]) -> None:
        future = self._pending.get(data.get("id", ""))
        if not future or future.done():
            return
        if data.get("ok", True):
            future.set_result(data.get("result"))
        else:
            future.set_exception(
                TransportFailure(data.get("error") or "Bridge request failed", session=self.session)
            )

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportFailure(reason, session=self.session))
        self._pending.clear()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None
