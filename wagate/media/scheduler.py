"""
媒体文件过期删除调度器 - 延迟队列实现。

每个保存下来的媒体文件都会登记一个到期时间，调度器在到期后删除文件。

架构设计（沿用单一定时器模式）：
- 所有到期项放在一个按到期时间排序的最小堆里
- 只设置一个 asyncio 定时器，指向最早到期的那一项
- 定时器到期后删除所有已到期的文件，然后重新设置定时器

代次（generation）机制：
同一路径可能被重复保存（例如同一条消息的媒体被下载两次），
每次保存都会产生一个新代次并独立计时。到期时只有"最新代次"才会真正删除文件，
因此文件一直保留到最后一次保存的到期时刻。

限制：
- 到期项只保存在内存中，进程重启后不会恢复；启动时的 purge() 负责清理遗留文件
- 到期项登记后不可取消；文件被提前删除时，到期删除会静默跳过
"""

import asyncio
import heapq
import itertools
from pathlib import Path

from loguru import logger

from wagate.utils.helpers import now_ms


class EvictionScheduler:
    """
    媒体文件过期删除调度器。

    属性:
        _heap: 到期项最小堆，元素为 (到期毫秒时间戳, 序号, 路径, 代次)
        _generations: 每个路径当前的最新代次
        _timer_task: 当前激活的定时器任务
    """

    def __init__(self):
        self._heap: list[tuple[int, int, Path, int]] = []
        self._generations: dict[Path, int] = {}
        self._counter = itertools.count()  # 到期时间相同时保持登记顺序
        self._timer_task: asyncio.Task | None = None
        self._running = True

    def schedule(self, path: Path, delay_s: float) -> int:
        """
        登记一个文件在 delay_s 秒后删除。

        参数:
            path: 文件路径
            delay_s: 延迟秒数（从现在开始计算）

        返回:
            到期时间（毫秒时间戳）
        """
        generation = self._generations.get(path, 0) + 1
        self._generations[path] = generation
        expires_at_ms = now_ms() + int(delay_s * 1000)
        heapq.heappush(self._heap, (expires_at_ms, next(self._counter), path, generation))
        self._arm_timer()
        return expires_at_ms

    def stop(self) -> None:
        """停止调度器并取消定时器。未到期的文件不再删除。"""
        self._running = False
        if self._timer_task:
            self._timer_task.cancel()
            self._timer_task = None

    def _arm_timer(self) -> None:
        """设置下一个定时器触发点。取消旧定时器，创建新的 asyncio 任务。"""
        if self._timer_task and self._timer_task is not asyncio.current_task():
            self._timer_task.cancel()
        self._timer_task = None

        if not self._heap or not self._running:
            return

        delay_s = max(0, self._heap[0][0] - now_ms()) / 1000

        async def tick():
            await asyncio.sleep(delay_s)
            if self._running:
                await self._on_timer()

        self._timer_task = asyncio.create_task(tick())

    async def _on_timer(self) -> None:
        """定时器到期回调 - 删除所有已到期的文件。先重新设置定时器，再在线程中删除文件。"""
        now = now_ms()
        expired: list[Path] = []
        while self._heap and self._heap[0][0] <= now:
            _, _, path, generation = heapq.heappop(self._heap)
            if self._generations.get(path) != generation:
                # 该路径之后又被保存过，交给更新的代次处理
                continue
            del self._generations[path]
            expired.append(path)
        self._arm_timer()

        for path in expired:
            await self._remove(path)

    @staticmethod
    async def _remove(path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink)
            logger.info(f"File {path} was removed")
        except FileNotFoundError:
            logger.debug(f"File {path} was already removed")
        except OSError as e:
            logger.warning(f"Failed to remove file {path}: {e}")

    @property
    def pending(self) -> int:
        """尚未到期的登记项数量。"""
        return len(self._heap)
