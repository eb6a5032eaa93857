"""
会话管理器模块 - 所有会话的注册表与生命周期入口。

SessionManager 是 wagate 的顶层组件，外部 HTTP 层只通过它操作会话：
- start()：创建会话（按配置的引擎选择会话类）→ 挂接媒体存储、代理、Webhook → 启动
- stop()：停止会话并从注册表移除（可选同时登出）
- logout()：清除会话的持久化凭证与配置
- get_session() / get_sessions()：查询

【启动流程 boot()】
1. 清空媒体目录（只做一次）
2. sessions.restart_all 开启时，并发恢复所有最后状态不是 STOPPED 的持久化会话
3. 启动 sessions.start 中列出的、尚未运行的会话
单个会话的失败只记录日志，不影响其他会话。

【注册表不变式】
- 同一会话名在内存中最多只有一个会话对象
- 显式 start 一个正在运行的会话名 → DuplicateSession；恢复流程会跳过已运行的会话名
- 同一会话名的 start/stop 通过 asyncio.Lock 串行执行
- 不在注册表中的持久化会话视为 STOPPED

【Java 开发者类比】
- SessionManager 相当于一个带生命周期管理的 ConcurrentHashMap<String, Session>
- _locks 相当于按 key 分段的 ReentrantLock
"""

import asyncio

from loguru import logger

from wagate.bus.events import EventKind, SessionEvent
from wagate.config.schema import Config
from wagate.engines import WhatsappSession, get_engine
from wagate.errors import DuplicateSession, SessionNotFound
from wagate.media import EvictionScheduler, MediaStore
from wagate.sessions.proxy import resolve_proxy
from wagate.sessions.storage import SessionStorage
from wagate.structures import (
    ProxyConfig,
    SessionDTO,
    SessionLogoutRequest,
    SessionStartRequest,
    SessionStatus,
    SessionStopRequest,
    WebhookConfig,
)
from wagate.webhooks import WebhookConductor


class SessionManager:
    """
    会话管理器。

    属性:
        config: 全局配置
        session_storage: 当前引擎的会话持久化存储
        scheduler: 所有 MediaStore 共享的过期删除调度器
        conductor: 所有会话共享的 Webhook 分发器
        sessions: 会话注册表 {会话名: 会话}
    """

    def __init__(
        self,
        config: Config,
        scheduler: EvictionScheduler | None = None,
        conductor: WebhookConductor | None = None,
    ):
        self.config = config
        self.session_storage = SessionStorage(config.sessions_path, config.engine)
        self.scheduler = scheduler or EvictionScheduler()
        self.conductor = conductor or WebhookConductor()
        self.sessions: dict[str, WhatsappSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    def _new_media_store(self, session: str | None = None) -> MediaStore:
        files = self.config.files
        return MediaStore(
            folder=self.config.files_path,
            base_url=files.url,
            lifetime=files.lifetime,
            mimetypes=files.mimetypes,
            scheduler=self.scheduler,
            session=session,
        )

    # ========== 启动与关闭 ==========

    async def boot(self) -> None:
        """进程启动时调用：清理媒体目录 → 恢复会话 → 启动预定义会话。"""
        await self.session_storage.init()
        await self._new_media_store().purge()
        await self._restart_stopped_sessions()
        await self._start_predefined_sessions()

    async def _restart_stopped_sessions(self) -> None:
        """并发恢复所有最后状态不是 STOPPED 的持久化会话。"""
        if not self.config.sessions.restart_all:
            return

        names = await self.session_storage.get_running()
        names = [name for name in names if name not in self.sessions]
        if not names:
            return

        async def _restart(name: str) -> None:
            logger.info(f"Restarting STOPPED session - {name}...")
            config = await self.session_storage.config_repository.get(name)
            await self.start(SessionStartRequest(name=name, config=config))

        await self._gather_isolated(names, _restart)

    async def _start_predefined_sessions(self) -> None:
        """启动配置中列出的会话（已在运行的跳过）。"""
        names = [name for name in self.config.sessions.start if name not in self.sessions]
        if not names:
            return

        async def _start(name: str) -> None:
            config = await self.session_storage.config_repository.get(name)
            await self.start(SessionStartRequest(name=name, config=config))

        await self._gather_isolated(names, _start)

    @staticmethod
    async def _gather_isolated(names: list[str], func) -> None:
        """对每个会话名并发执行 func，单个失败只记录日志。"""
        results = await asyncio.gather(*(func(name) for name in names), return_exceptions=True)
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"'{name}' - failed to start session: {result}")

    async def shutdown(self) -> None:
        """
        进程退出时调用：停止所有会话。

        与 stop() 不同，这里不会把持久化状态改为 STOPPED，
        下次启动时这些会话会被恢复。
        """
        logger.info("Stop all sessions...")
        for name in list(self.sessions):
            async with self._lock(name):
                session = self.sessions.pop(name, None)
                if not session:
                    continue
                try:
                    await session.stop()
                except Exception as e:
                    logger.error(f"'{name}' - error stopping session: {e}")
        await self.conductor.close()
        self.scheduler.stop()

    # ========== 生命周期 API ==========

    async def start(self, request: SessionStartRequest) -> SessionDTO:
        """
        启动会话。

        异常:
            EngineNotFound: 配置的引擎名未知
            DuplicateSession: 同名会话已在运行
        """
        name = request.name
        async with self._lock(name):
            if name in self.sessions:
                raise DuplicateSession(name)

            logger.info(f"'{name}' - starting session...")
            engine_class = get_engine(self.config.engine)
            session = engine_class(
                name=name,
                storage=self._new_media_store(session=name),
                session_storage=self.session_storage,
                bridge=self.config.get_bridge(engine_class.engine.value),
                proxy_config=self._get_proxy_config(request),
                session_config=request.config,
            )
            self.sessions[name] = session

            webhooks = self._get_webhooks(request)

            async def on_engine_start(event: SessionEvent) -> None:
                self.conductor.configure(session, webhooks, initial=event)

            session.events.subscribe(on_engine_start, kinds=[EventKind.ENGINE_START])

            try:
                await self.session_storage.config_repository.save(name, request.config)
            except OSError as e:
                logger.error(f"'{name}' - failed to persist session config: {e}")

            try:
                await session.start()
            except Exception:
                self.sessions.pop(name, None)
                raise

            return self._to_dto(session)

    def _get_webhooks(self, request: SessionStartRequest) -> list[WebhookConfig]:
        """会话级 Webhook 在前，全局 Webhook 追加在最后。"""
        webhooks: list[WebhookConfig] = []
        if request.config and request.config.webhooks:
            webhooks.extend(request.config.webhooks)
        webhooks.append(self.config.get_webhook_config())
        return webhooks

    def _get_proxy_config(self, request: SessionStartRequest) -> ProxyConfig | None:
        """请求中显式指定的代理优先，否则按全局配置解析。"""
        if request.config and request.config.proxy:
            return request.config.proxy
        return resolve_proxy(self.config.proxy, self.sessions, request.name)

    async def stop(self, request: SessionStopRequest) -> None:
        """
        停止会话。

        无论会话的 stop() 是否抛出异常，会话都会从注册表中移除。

        异常:
            SessionNotFound: 会话不在运行
        """
        name = request.name
        async with self._lock(name):
            session = self.get_session(name)
            logger.info(f"Stopping {name} session...")
            try:
                await session.stop()
            finally:
                self.sessions.pop(name, None)
                if request.logout:
                    await self.session_storage.clean(name)
                else:
                    await self.session_storage.config_repository.set_status(name, SessionStatus.STOPPED)
            logger.info(f"'{name}' has been stopped.")

    async def logout(self, request: SessionLogoutRequest) -> None:
        """清除会话的持久化凭证与配置（会话不需要在运行）。"""
        await self.session_storage.clean(request.name)

    def get_session(self, name: str, error_if_missing: bool = True) -> WhatsappSession | None:
        """
        获取运行中的会话。

        异常:
            SessionNotFound: 会话不存在且 error_if_missing 为 True
        """
        session = self.sessions.get(name)
        if session is None and error_if_missing:
            raise SessionNotFound(name)
        return session

    async def get_sessions(self, all: bool = False) -> list[SessionDTO]:
        """
        列出会话。

        参数:
            all: 为 True 时同时列出持久化存储中未运行的会话（状态为 STOPPED）
        """
        names = list(self.sessions)
        if all:
            for name in await self.session_storage.get_all():
                if name not in names:
                    names.append(name)

        async def _describe(name: str) -> SessionDTO:
            session = self.sessions.get(name)
            if session:
                return self._to_dto(session)
            config = await self.session_storage.config_repository.get(name)
            return SessionDTO(name=name, status=SessionStatus.STOPPED, config=config)

        return list(await asyncio.gather(*(_describe(name) for name in names)))

    @staticmethod
    def _to_dto(session: WhatsappSession) -> SessionDTO:
        return SessionDTO(
            name=session.name,
            status=session.status,
            config=session.session_config,
        )
