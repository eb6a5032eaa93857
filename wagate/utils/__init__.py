"""
工具函数模块 - 提供 wagate 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- get_data_path：获取数据存储路径（~/.wagate）
- safe_filename：把会话名/消息 ID 转换为安全的文件名
"""

from wagate.utils.helpers import ensure_dir, get_data_path, safe_filename

__all__ = ["ensure_dir", "get_data_path", "safe_filename"]
