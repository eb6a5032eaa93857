"""
会话持久化模块 - 会话凭证目录与会话配置记录的存储。

本模块包含两个核心类：
- SessionStorage：按引擎划分的会话目录命名空间，负责枚举和清理会话
- SessionConfigRepository：每个会话的配置记录（session.json），启动恢复的数据来源

【存储布局】
  <sessions.folder>/
  └── <engine>/                 ← 每种引擎一个命名空间（如 webjs、noweb）
      └── <sessionName>/        ← 引擎桥接服务在这里保存登录凭证
          └── session.json      ← wagate 的会话配置记录

session.json 格式：
  {"name": "...", "status": "WORKING", "config": {...}, "updatedAt": "..."}

会话目录在会话不运行时依然存在，因此 SessionManager 可以在没有任何活跃会话的情况下
枚举出所有已知的会话名。删除目录（clean）等同于登出：凭证和配置一起清除。

【Java 开发者类比】
- SessionConfigRepository 类似于 Spring Data 的 Repository
- 文件读写通过 asyncio.to_thread 放到线程池执行，类似 Java 的 CompletableFuture.supplyAsync
"""

import asyncio
import json
import shutil
from pathlib import Path
from typing import Any

from loguru import logger

from wagate.structures import SessionConfig, SessionStatus
from wagate.utils.helpers import ensure_dir, safe_filename, timestamp

RECORD_FILENAME = "session.json"


class SessionConfigRepository:
    """
    会话配置记录仓库。

    属性:
        storage: 所属的 SessionStorage（提供目录定位）
    """

    def __init__(self, storage: "SessionStorage"):
        self.storage = storage

    def _record_path(self, name: str) -> Path:
        return self.storage.get_folder_path(name) / RECORD_FILENAME

    def _load(self, name: str) -> dict[str, Any] | None:
        """
        从磁盘读取会话记录。

        文件不存在返回 None；文件损坏时记录警告并返回 None（按"没有配置"处理）。
        """
        path = self._record_path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load session record {name}: {e}")
            return None

    def _write(self, name: str, record: dict[str, Any]) -> None:
        path = self._record_path(name)
        ensure_dir(path.parent)
        record["updatedAt"] = timestamp()
        path.write_text(json.dumps(record, indent=2))

    async def get(self, name: str) -> SessionConfig | None:
        """
        获取会话配置。

        参数:
            name: 会话名

        返回:
            SessionConfig；没有记录或记录中没有配置时返回 None
        """
        record = await asyncio.to_thread(self._load, name)
        if not record or not record.get("config"):
            return None
        try:
            return SessionConfig.model_validate(record["config"])
        except ValueError as e:
            logger.warning(f"Invalid config in session record {name}: {e}")
            return None

    async def get_status(self, name: str) -> SessionStatus:
        """获取最后一次持久化的会话状态，没有记录时视为 STOPPED。"""
        record = await asyncio.to_thread(self._load, name)
        if not record:
            return SessionStatus.STOPPED
        try:
            return SessionStatus(record.get("status", SessionStatus.STOPPED.value))
        except ValueError:
            return SessionStatus.STOPPED

    async def save(
        self,
        name: str,
        config: SessionConfig | None,
        status: SessionStatus = SessionStatus.STARTING,
    ) -> None:
        """
        写入会话配置记录（全量覆盖）。

        参数:
            name: 会话名
            config: 会话配置，None 表示没有会话级配置
            status: 要记录的会话状态
        """
        record = {
            "name": name,
            "status": status.value,
            "config": config.model_dump(by_alias=True, exclude_none=True) if config else None,
        }
        await asyncio.to_thread(self._write, name, record)

    async def set_status(self, name: str, status: SessionStatus) -> None:
        """只更新记录中的状态字段，保留已有配置。"""

        def _update() -> None:
            record = self._load(name) or {"name": name, "config": None}
            record["status"] = status.value
            self._write(name, record)

        await asyncio.to_thread(_update)


class SessionStorage:
    """
    会话存储 - 某一种引擎下所有会话目录的命名空间。

    属性:
        sessions_folder: 会话存储根目录
        engine: 引擎名（小写，作为子目录名）
        engine_folder: 该引擎的会话目录
        config_repository: 会话配置记录仓库
    """

    def __init__(self, sessions_folder: Path | str, engine: str):
        self.sessions_folder = Path(sessions_folder)
        self.engine = engine.lower()
        self.engine_folder = self.sessions_folder / self.engine
        self.config_repository = SessionConfigRepository(self)

    async def init(self) -> None:
        """确保引擎目录存在。"""
        await asyncio.to_thread(ensure_dir, self.engine_folder)

    def get_folder_path(self, name: str) -> Path:
        """获取会话目录路径（引擎凭证与配置记录都放在这里）。"""
        return self.engine_folder / safe_filename(name)

    def _list_names(self) -> list[str]:
        if not self.engine_folder.exists():
            return []
        names = []
        for path in sorted(self.engine_folder.iterdir()):
            if not path.is_dir():
                continue
            # 优先使用记录中保存的原始会话名（目录名经过了安全化处理）
            name = path.name
            record_path = path / RECORD_FILENAME
            if record_path.exists():
                try:
                    name = json.loads(record_path.read_text()).get("name") or name
                except (OSError, json.JSONDecodeError):
                    pass
            names.append(name)
        return names

    async def get_all(self) -> list[str]:
        """枚举该引擎下所有已知的会话名（无论是否在运行）。"""
        return await asyncio.to_thread(self._list_names)

    async def get_running(self) -> list[str]:
        """枚举最后持久化状态不是 STOPPED 的会话名（启动恢复的候选）。"""
        names = await self.get_all()
        running = []
        for name in names:
            if await self.config_repository.get_status(name) != SessionStatus.STOPPED:
                running.append(name)
        return running

    async def clean(self, name: str) -> None:
        """
        删除会话目录（凭证 + 配置记录）。

        目录不存在时什么也不做。
        """
        folder = self.get_folder_path(name)

        def _remove() -> None:
            if folder.exists():
                shutil.rmtree(folder)

        await asyncio.to_thread(_remove)
        logger.info(f"'{name}' - session storage cleaned")
