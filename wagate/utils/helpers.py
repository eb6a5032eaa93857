"""
工具函数集合 - wagate 项目全局通用的辅助函数。

本模块提供路径管理、字符串处理、时间戳等基础工具函数，
被会话存储、媒体存储、Webhook 投递等多个模块引用。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 字符串工具：truncate_string, safe_filename
- 时间工具：timestamp, now_ms
"""

import time
from datetime import datetime
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 wagate 数据目录（~/.wagate）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".wagate")


def timestamp() -> str:
    """获取当前时间的 ISO 8601 格式字符串。"""
    return datetime.now().isoformat()


def now_ms() -> int:
    """获取当前时间的毫秒级 Unix 时间戳。"""
    return int(time.time() * 1000)


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def safe_filename(name: str) -> str:
    """
    将字符串转换为安全的文件名（移除/替换不安全字符）。

    会话名和消息 ID 都来自外部输入（API 请求、引擎推送），
    落盘前必须经过这一步，防止出现 "../" 之类的路径穿越。

    参数:
        name: 原始文件名

    返回:
        安全的文件名字符串
    """
    unsafe = '<>:"/\\|?*'
    for char in unsafe:
        name = name.replace(char, "_")
    name = name.strip()
    # 纯 "." 或 ".." 会被文件系统解释为目录引用
    if name in {".", ".."}:
        name = name.replace(".", "_")
    return name
