"""
会话管理模块 - 会话注册表、持久化存储与代理解析。

- SessionManager：会话注册表与生命周期 API（start / stop / logout / 查询 / 启动恢复）
- SessionStorage：按引擎划分的会话目录，SessionConfigRepository 保存每个会话的配置记录
- resolve_proxy：为会话选择生效的代理
"""

from wagate.sessions.manager import SessionManager
from wagate.sessions.proxy import resolve_proxy
from wagate.sessions.storage import SessionConfigRepository, SessionStorage

__all__ = ["SessionManager", "SessionStorage", "SessionConfigRepository", "resolve_proxy"]
