"""
媒体存储模块 - 把消息附件转换为有时效的公开 URL。

本模块实现了 MediaStore：
- save()：按 mimetype 白名单过滤 → 写入共享目录 → 登记过期删除 → 返回公开 URL
- purge()：启动时清空共享目录（目录不存在则创建）

存储布局：
  <files.folder>/<messageId>.<扩展名>   ← 所有会话共享同一个目录
  对外 URL = <files.url> + 文件名

依赖：
- filetype：在引擎没有提供 mimetype 时，根据文件头魔数识别类型
- mimetypes（标准库）：根据 mimetype 推断扩展名

错误处理：
存储层的任何失败都不向会话传播。save() 失败时记录日志并返回空字符串，
purge() 失败时记录日志并继续启动流程。
"""

import asyncio
import mimetypes
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import filetype
from loguru import logger

from wagate.errors import StorageFailure
from wagate.media.scheduler import EvictionScheduler
from wagate.utils.helpers import ensure_dir, safe_filename

DEFAULT_MIMETYPE = "application/octet-stream"

# 标准库映射表不覆盖或者给出非常规扩展名的类型
_EXTENSION_OVERRIDES = {
    "image/jpeg": "jpg",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "video/mp4": "mp4",
    "image/webp": "webp",
}

# 不读取系统 mime.types 文件，保证不同机器上扩展名一致
_MIME_DB = mimetypes.MimeTypes()


def extension_for(mimetype: str) -> str:
    """
    根据 mimetype 推断文件扩展名（不带点）。

    会先去掉参数部分，例如 "audio/ogg; codecs=opus" → "audio/ogg"。
    无法识别时返回 "bin"。
    """
    base = mimetype.split(";", 1)[0].strip().lower()
    if base in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[base]
    ext = _MIME_DB.guess_extension(base)
    return ext.lstrip(".") if ext else "bin"


def sniff_mimetype(buffer: bytes) -> str:
    """根据文件头识别 mimetype，无法识别时返回 application/octet-stream。"""
    kind = filetype.guess(buffer)
    return kind.mime if kind else DEFAULT_MIMETYPE


@dataclass
class MediaFile:
    """
    一个已保存的媒体文件。

    属性:
        message_id: 所属消息 ID
        mimetype: 文件类型
        path: 磁盘路径
        url: 对外公开 URL
        created_at: 保存时间
        expires_at: 到期删除时间
    """

    message_id: str
    mimetype: str
    path: Path
    url: str
    created_at: datetime
    expires_at: datetime


class MediaStore:
    """
    媒体存储 - 会话下载的附件在这里落盘并获得一个有时效的 URL。

    SessionManager 为每个会话创建一个 MediaStore 实例，
    但所有实例指向同一个目录，并共享同一个过期删除调度器。

    属性:
        folder: 文件存储目录
        base_url: 对外公开的基础 URL
        lifetime: 文件生存时间（秒）
        mimetypes: 允许保存的 mimetype 前缀列表，为空表示全部保存
        scheduler: 过期删除调度器
        session: 所属会话名（仅用于日志）
    """

    def __init__(
        self,
        folder: Path | str,
        base_url: str,
        lifetime: float,
        mimetypes: list[str] | None = None,
        scheduler: EvictionScheduler | None = None,
        session: str | None = None,
    ):
        self.folder = Path(folder)
        self.base_url = base_url
        self.lifetime = lifetime
        self.mimetypes = list(mimetypes or [])
        self.scheduler = scheduler or EvictionScheduler()
        self.session = session

    @property
    def _prefix(self) -> str:
        return f"'{self.session}' - " if self.session else ""

    def need_to_download(self, mimetype: str) -> bool:
        """
        检查是否需要保存该 mimetype 的文件。

        白名单为空 → 全部保存；否则只要 mimetype 以任一白名单项开头即保存。
        """
        if not self.mimetypes:
            return True
        return any(mimetype.startswith(allowed) for allowed in self.mimetypes)

    async def save(self, message_id: str, mimetype: str | None, buffer: bytes) -> str:
        """
        保存消息附件并返回公开 URL。

        参数:
            message_id: 消息 ID（决定文件名）
            mimetype: 文件类型，为空时根据文件内容识别
            buffer: 文件内容

        返回:
            公开 URL；被白名单过滤或写入失败时返回空字符串
        """
        media = await self.save_file(message_id, mimetype, buffer)
        return media.url if media else ""

    async def save_file(
        self, message_id: str, mimetype: str | None, buffer: bytes
    ) -> MediaFile | None:
        """与 save() 相同，但返回完整的 MediaFile 记录（未保存时返回 None）。"""
        if not mimetype:
            mimetype = sniff_mimetype(buffer)

        if not self.need_to_download(mimetype):
            logger.info(f"{self._prefix}The message {message_id} has {mimetype} media, skip it.")
            return None

        filename = f"{safe_filename(message_id)}.{extension_for(mimetype)}"
        path = (self.folder / filename).resolve()
        try:
            await asyncio.to_thread(self._write, path, buffer)
        except StorageFailure as e:
            logger.error(f"{self._prefix}{e.message}")
            return None

        created_at = datetime.now()
        expires_at_ms = self.scheduler.schedule(path, self.lifetime)
        return MediaFile(
            message_id=message_id,
            mimetype=mimetype,
            path=path,
            url=self.base_url + filename,
            created_at=created_at,
            expires_at=datetime.fromtimestamp(expires_at_ms / 1000),
        )

    @staticmethod
    def _write(path: Path, buffer: bytes) -> None:
        try:
            ensure_dir(path.parent)
            path.write_bytes(buffer)
        except OSError as e:
            raise StorageFailure(f"Failed to write file {path}: {e}", path=str(path)) from e

    async def purge(self) -> None:
        """
        清空存储目录（启动时调用一次）。

        - 目录存在：删除其中所有文件和子目录
        - 目录不存在：创建目录
        任何删除失败只记录日志，不会抛出异常。可以重复调用。
        """
        await asyncio.to_thread(self._purge)

    def _purge(self) -> None:
        if not self.folder.exists():
            try:
                ensure_dir(self.folder)
                logger.info(f"Directory '{self.folder}' created from scratch")
            except OSError as e:
                logger.error(f"Failed to create directory '{self.folder}': {e}")
            return

        deleted = []
        for child in self.folder.iterdir():
            try:
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
                deleted.append(str(child))
            except OSError as e:
                logger.warning(f"Failed to delete {child}: {e}")

        if deleted:
            logger.info("Deleted files and directories:\n" + "\n".join(deleted))
