"""
代理解析模块 - 为每个会话选择生效的代理配置。

优先级：
1. start 请求中显式指定的会话级代理（由 SessionManager 处理）
2. 全局单一代理：所有会话共用
3. 全局代理池：按会话名分配

代理池分配规则：
- 会话已在运行且使用的代理仍在池中 → 继续使用原代理（粘性）
- 否则按 crc32(会话名) 对池大小取模，同一个会话名每次都分到同一个代理
"""

import zlib
from typing import Mapping, Protocol

from wagate.config.schema import ProxySettings
from wagate.structures import ProxyConfig


class _HasProxy(Protocol):
    proxy_config: ProxyConfig | None


def resolve_proxy(
    settings: ProxySettings,
    live_sessions: Mapping[str, _HasProxy],
    session_name: str,
) -> ProxyConfig | None:
    """
    根据全局配置为会话解析代理。

    参数:
        settings: 全局代理配置
        live_sessions: 当前注册表中的会话 {会话名: 会话}
        session_name: 要解析的会话名

    返回:
        ProxyConfig；没有配置全局代理时返回 None
    """
    servers = settings.servers
    if not servers:
        return None
    if len(servers) == 1:
        return settings.to_proxy_config(servers[0])

    live = live_sessions.get(session_name)
    current = getattr(live, "proxy_config", None) if live else None
    if current and current.server in servers:
        return current

    index = zlib.crc32(session_name.encode("utf-8")) % len(servers)
    return settings.to_proxy_config(servers[index])
