"""
媒体存储模块 - 所有会话共享的附件缓存。

- MediaStore：mimetype 过滤 + 落盘 + 返回公开 URL
- EvictionScheduler：按到期时间删除文件的延迟队列
"""

from wagate.media.scheduler import EvictionScheduler
from wagate.media.storage import MediaFile, MediaStore

__all__ = ["MediaStore", "MediaFile", "EvictionScheduler"]
