"""
会话事件通道模块 - 单个会话的事件广播实现。

每个会话拥有一个独立的 SessionEventChannel（单生产者、多消费者）：

  引擎回调 → emit() → 每个订阅者各自的队列 → 订阅者的分发任务 → 异步回调

【核心设计】
- 每个订阅者拥有独立的 asyncio.Queue 和独立的分发任务，慢消费者不会拖慢其他订阅者
- emit() 使用 put_nowait，永远不会阻塞会话自身的处理流程
- 同一订阅者收到事件的顺序与 emit 的顺序严格一致
- 单个回调抛出的异常只记录日志，不影响后续事件和其他订阅者

【Java 开发者类比】
- 每个订阅者相当于一个拥有独立 LinkedBlockingQueue 的消费者线程
- subscribe() 相当于 Spring 的 ApplicationListener 注册
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from wagate.bus.events import EventKind, SessionEvent

EventCallback = Callable[[SessionEvent], Awaitable[None]]

# 关闭通道时投递给订阅者队列的结束标记
_STREAM_END = object()


class Subscription:
    """
    一个订阅者：回调 + 事件过滤 + 独立队列 + 分发任务。

    属性:
        callback: 异步回调函数
        kinds: 关心的事件种类集合，None 表示全部
        queue: 待分发事件队列
        task: 分发任务句柄
    """

    def __init__(self, callback: EventCallback, kinds: frozenset[EventKind] | None, maxsize: int):
        self.callback = callback
        self.kinds = kinds
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.task: asyncio.Task | None = None

    def accepts(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds


class SessionEventChannel:
    """
    单个会话的事件广播通道。

    属性:
        session: 所属会话名
        _subscribers: 当前订阅者列表
        _closed: 通道是否已关闭（关闭后 emit 被忽略）
    """

    def __init__(self, session: str, maxsize: int = 1000):
        self.session = session
        self._maxsize = maxsize
        self._subscribers: list[Subscription] = []
        self._closed = False

    def subscribe(
        self,
        callback: EventCallback,
        kinds: Iterable[EventKind] | None = None,
    ) -> Subscription:
        """
        注册订阅者并启动其分发任务。

        必须在运行中的事件循环内调用。

        参数:
            callback: 异步回调函数，接收 SessionEvent
            kinds: 只接收这些种类的事件；None 表示接收全部

        返回:
            Subscription 句柄，可用于 unsubscribe()
        """
        sub = Subscription(callback, frozenset(kinds) if kinds else None, self._maxsize)
        sub.task = asyncio.create_task(self._dispatch(sub))
        self._subscribers.append(sub)
        logger.debug(f"'{self.session}' - subscriber added (total: {len(self._subscribers)})")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """移除订阅者并停止其分发任务。重复调用是安全的。"""
        try:
            self._subscribers.remove(sub)
        except ValueError:
            return
        if sub.task and not sub.task.done():
            sub.task.cancel()

    def emit(self, kind: EventKind, payload: dict[str, Any] | None = None) -> SessionEvent:
        """
        发布一个事件到所有关心该种类的订阅者（非阻塞）。

        参数:
            kind: 事件种类
            payload: 事件载荷

        返回:
            构造出的 SessionEvent
        """
        event = SessionEvent(kind=kind, session=self.session, payload=payload or {})
        if self._closed:
            return event
        for sub in self._subscribers:
            if not sub.accepts(kind):
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"'{self.session}' - subscriber queue full, dropping {kind.value} event"
                )
        return event

    async def close(self) -> None:
        """
        关闭通道：通知所有订阅者结束，并等待已排队的事件分发完毕。

        可以在订阅者回调内部调用（不会等待调用者自己的分发任务）。
        """
        if self._closed:
            return
        self._closed = True
        current = asyncio.current_task()
        pending = []
        for sub in self._subscribers:
            try:
                sub.queue.put_nowait(_STREAM_END)
            except asyncio.QueueFull:
                # 队列已满时无法投递结束标记，只能直接取消
                if sub.task:
                    sub.task.cancel()
            if sub.task and sub.task is not current:
                pending.append(sub.task)
        self._subscribers.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _dispatch(self, sub: Subscription) -> None:
        """订阅者分发循环：按顺序逐个调用回调，直到收到结束标记。"""
        while True:
            event = await sub.queue.get()
            if event is _STREAM_END:
                break
            try:
                await sub.callback(event)
            except Exception as e:
                logger.error(f"'{self.session}' - error handling {event.kind.value} event: {e}")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
