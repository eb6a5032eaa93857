"""
会话基类模块 - 定义所有引擎会话共享的状态机与能力契约。

本模块提供了 WhatsappSession 抽象基类，每种引擎（WEBJS、NOWEB、VENOM）
都继承此基类并实现引擎相关的能力方法。

【状态机】
  STOPPED → STARTING → (SCAN_QR_CODE → STARTING →) WORKING
  任意状态 → FAILED（传输构建失败或连接不可恢复地断开）
  任意状态 → STOPPED（显式 stop）

状态只能由会话自身的流转改变，外部只能读取。

【引擎必须实现的能力】
- build_transport()：构造引擎原生客户端（桥接连接 + 引擎选项）
- download_media(message)：下载消息媒体，通过 MediaStore 保存并写入 mediaUrl
- send_image() / send_file() / send_voice()：发送媒体，url 与 data 都缺失时抛出 InvalidAttachment

【公共能力】
- start() / stop()：生命周期
- send_text()：发送文本
- events：会话事件通道（engine.start、qr、session.status、message、message.media）

【Java 开发者类比】
- WhatsappSession 相当于 abstract class + 模板方法模式
- _listen() 相当于消费者线程的 run() 循环
"""

import asyncio
import base64
from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

from loguru import logger

from wagate.bus.channel import SessionEventChannel
from wagate.bus.events import EventKind
from wagate.config.schema import BridgeConfig
from wagate.engines.transport import BridgeTransport
from wagate.errors import InvalidAttachment, TransportFailure
from wagate.media.storage import MediaStore
from wagate.structures import (
    AttachmentFile,
    Engine,
    MessageFileRequest,
    MessageImageRequest,
    MessageTextRequest,
    MessageVoiceRequest,
    ProxyConfig,
    SessionConfig,
    SessionStatus,
)

# 仅在类型检查时导入，避免与 wagate.sessions.manager 循环导入
if TYPE_CHECKING:
    from wagate.sessions.storage import SessionStorage

# 无头浏览器引擎（WEBJS、VENOM）的 Chromium 启动参数
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]


class WhatsappSession(ABC):
    """
    会话抽象基类 - 所有引擎会话的统一契约。

    属性:
        engine: 引擎种类（子类覆盖）
        name: 会话名（注册表中的唯一键，不可变）
        storage: 媒体存储
        session_storage: 会话持久化存储（凭证目录 + 配置记录）
        bridge: 引擎桥接服务配置
        proxy_config: 生效的代理配置
        session_config: 会话级配置
        events: 会话事件通道
        transport: 引擎原生客户端（build_transport() 的产物）
    """

    engine: Engine

    def __init__(
        self,
        name: str,
        storage: MediaStore,
        session_storage: "SessionStorage",
        bridge: BridgeConfig,
        proxy_config: ProxyConfig | None = None,
        session_config: SessionConfig | None = None,
    ):
        self.name = name
        self.storage = storage
        self.session_storage = session_storage
        self.bridge = bridge
        self.proxy_config = proxy_config
        self.session_config = session_config
        self.events = SessionEventChannel(name)
        self.transport: BridgeTransport | None = None
        self._status = SessionStatus.STOPPED
        self._listener: asyncio.Task | None = None
        self._worker: asyncio.Task | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._stopping = False

    @property
    def status(self) -> SessionStatus:
        return self._status

    # ========== 引擎能力（子类实现） ==========

    @abstractmethod
    def build_transport(self) -> BridgeTransport:
        """构造引擎原生客户端。失败时会话进入 FAILED。"""

    @abstractmethod
    async def download_media(self, message: dict[str, Any]) -> dict[str, Any]:
        """
        下载消息中的媒体并保存到 MediaStore。

        参数:
            message: 引擎原生格式的消息

        返回:
            补充了 mediaUrl 字段的消息（没有媒体时原样返回）
        """

    @abstractmethod
    async def send_image(self, request: MessageImageRequest) -> Any:
        pass

    @abstractmethod
    async def send_file(self, request: MessageFileRequest) -> Any:
        pass

    @abstractmethod
    async def send_voice(self, request: MessageVoiceRequest) -> Any:
        pass

    @abstractmethod
    def get_message_id(self, message: dict[str, Any]) -> str:
        """从引擎原生格式的消息中提取消息 ID。"""

    # ========== 生命周期 ==========

    async def start(self) -> None:
        """
        启动会话。

        流程：
        1. 状态切换到 STARTING
        2. 构造引擎客户端（失败 → FAILED，通过事件通道报告）
        3. 发布 engine.start 事件
        4. 在后台任务中连接桥接服务并监听引擎推送，入站消息交给另一个后台任务按顺序处理

        本方法在后台任务启动后立即返回，此时状态通常仍是 STARTING。
        """
        if self._status not in (SessionStatus.STOPPED, SessionStatus.FAILED):
            logger.warning(f"'{self.name}' - session is already {self._status.value}")
            return

        self._stopping = False
        await self._set_status(SessionStatus.STARTING)
        try:
            self.transport = self.build_transport()
        except Exception as e:
            logger.error(f"'{self.name}' - failed to build {self.engine.value} client: {e}")
            await self._set_status(SessionStatus.FAILED, reason=str(e))
            return

        self.events.emit(EventKind.ENGINE_START, {"engine": self.engine.value})
        if self._worker:
            # 上一次运行进入 FAILED 后遗留的消息任务
            self._worker.cancel()
        self._inbox = asyncio.Queue()
        self._worker = asyncio.create_task(self._process_messages())
        self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        """
        停止会话并释放资源。

        可重复调用：对已停止或正在停止的会话再次调用不会出错。
        """
        self._stopping = True

        tasks = [t for t in (self._listener, self._worker) if t]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._listener = self._worker = None

        await self._close_transport()

        await self._set_status(SessionStatus.STOPPED)
        await self.events.close()

    async def _listen(self) -> None:
        """
        引擎监听循环（后台任务）。

        连接桥接服务后持续处理推送帧；连接失败或非预期断开时会话进入 FAILED，
        不会自动重连（需要通过 SessionManager.start 显式重启）。
        """
        try:
            await self.transport.connect()
            async for frame in self.transport.frames():
                await self._handle_frame(frame)
            if not self._stopping:
                raise TransportFailure("Connection closed by bridge", session=self.name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._stopping:
                return
            logger.error(f"'{self.name}' - {self.engine.value} connection failed: {e}")
            await self._set_status(SessionStatus.FAILED, reason=str(e))
            await self._close_transport()

    async def _close_transport(self) -> None:
        if not self.transport:
            return
        transport, self.transport = self.transport, None
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"'{self.name}' - error closing {self.engine.value} client: {e}")

    async def _handle_frame(self, frame: dict[str, Any]) -> None:
        """
        处理引擎推送的帧。

        根据帧类型（type 字段）分发处理：
        - qr：需要扫码登录 → SCAN_QR_CODE
        - status：authenticated → STARTING；connected/ready → WORKING；disconnected → FAILED
        - message：入站消息，放入收件队列（下载媒体需要本循环读取响应帧，不能在这里等待）
        - error：引擎报告的错误，仅记录日志
        """
        kind = frame.get("type")

        if kind == "qr":
            await self._set_status(SessionStatus.SCAN_QR_CODE)
            self.events.emit(EventKind.QR, {"qr": frame.get("qr", "")})

        elif kind == "status":
            status = frame.get("status")
            logger.info(f"'{self.name}' - {self.engine.value} status: {status}")
            if status == "authenticated":
                await self._set_status(SessionStatus.STARTING)
            elif status in ("connected", "ready"):
                await self._set_status(SessionStatus.WORKING)
            elif status == "disconnected":
                raise TransportFailure(
                    frame.get("reason") or "Disconnected by engine", session=self.name
                )

        elif kind == "message":
            self._inbox.put_nowait(frame.get("message") or {})

        elif kind == "error":
            logger.error(f"'{self.name}' - {self.engine.value} error: {frame.get('error')}")

    async def _process_messages(self) -> None:
        """入站消息处理循环（后台任务）：按到达顺序逐条下载媒体并发布事件。"""
        while True:
            message = await self._inbox.get()
            try:
                await self._handle_message(message)
            except Exception as e:
                logger.error(f"'{self.name}' - failed to handle message: {e}")

    async def _handle_message(self, message: dict[str, Any]) -> None:
        """
        处理入站消息：先下载媒体，再发布 message 事件。

        媒体下载失败只记录日志，消息本身仍会发布（不带 mediaUrl）。
        """
        try:
            message = await self.download_media(message)
        except Exception as e:
            logger.error(f"'{self.name}' - failed to download media: {e}")

        media_url = message.get("mediaUrl")
        if media_url:
            self.events.emit(EventKind.MESSAGE_MEDIA, {
                "id": self.get_message_id(message),
                "mediaUrl": media_url,
            })
        self.events.emit(EventKind.MESSAGE, message)

    async def _set_status(self, status: SessionStatus, reason: str | None = None) -> None:
        """
        切换会话状态并发布 session.status 事件。

        非 STOPPED 状态会写回持久化记录；STOPPED 由 SessionManager 决定是否持久化
        （进程退出时的停止不应影响下次启动恢复）。
        """
        if status == self._status:
            return
        previous, self._status = self._status, status
        logger.info(f"'{self.name}' - status {previous.value} → {status.value}")

        payload: dict[str, Any] = {"status": status.value, "previous": previous.value}
        if reason:
            payload["reason"] = reason
        self.events.emit(EventKind.STATUS_CHANGE, payload)

        if status != SessionStatus.STOPPED:
            try:
                await self.session_storage.config_repository.set_status(self.name, status)
            except OSError as e:
                logger.warning(f"'{self.name}' - failed to persist status: {e}")

    # ========== 公共能力 ==========

    async def send_text(self, request: MessageTextRequest) -> Any:
        """发送文本消息。"""
        return await self._request("sendText", {"chatId": request.chat_id, "text": request.text})

    async def _request(self, action: str, payload: dict[str, Any]) -> Any:
        """向引擎发送请求。会话没有引擎客户端时抛出 TransportFailure。"""
        if not self.transport:
            raise TransportFailure(
                f"Session '{self.name}' is not started (status: {self._status.value})",
                session=self.name,
            )
        return await self.transport.request(action, payload)

    def _make_transport(self, options: dict[str, Any]) -> BridgeTransport:
        """用引擎选项构造桥接传输（供子类的 build_transport 使用）。"""
        return BridgeTransport(
            url=self.bridge.url,
            session=self.name,
            engine=self.engine.value,
            options=options,
            token=self.bridge.token,
            connect_timeout=self.bridge.connect_timeout,
            request_timeout=self.bridge.request_timeout,
        )

    def get_proxy_options(self) -> dict[str, Any] | None:
        """把代理配置转换为引擎选项格式，没有代理时返回 None。"""
        if not self.proxy_config:
            return None
        return self.proxy_config.model_dump(exclude_none=True)

    def get_browser_args(self) -> list[str]:
        """无头浏览器引擎的启动参数，配置了代理时追加 --proxy-server。"""
        args = list(BROWSER_ARGS)
        if self.proxy_config:
            args.append(f"--proxy-server={self.proxy_config.server}")
        return args

    @staticmethod
    def check_file(file: AttachmentFile) -> None:
        """校验附件：url 与 data 至少提供一个。"""
        if not (file.is_remote or file.is_inline):
            raise InvalidAttachment()

    async def save_media(self, message_id: str, mimetype: str | None, data: str | bytes) -> str:
        """
        把引擎返回的媒体内容保存到 MediaStore。

        参数:
            message_id: 消息 ID
            mimetype: 文件类型（可为空，由 MediaStore 识别）
            data: base64 字符串或原始字节

        返回:
            公开 URL；被过滤或保存失败时为空字符串
        """
        buffer = base64.b64decode(data) if isinstance(data, str) else data
        logger.debug(f"'{self.name}' - writing file from the message {message_id}...")
        url = await self.storage.save(message_id, mimetype, buffer)
        if url:
            logger.info(f"'{self.name}' - the file from {message_id} has been saved to {url}")
        return url
