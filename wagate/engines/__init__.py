"""
引擎模块 - 会话状态机与各引擎实现。

引擎集合是封闭的：每个 Engine 枚举值对应一个会话类，通过 get_engine() 查找。
"""

from wagate.engines.base import WhatsappSession
from wagate.engines.noweb import NowebSession
from wagate.engines.transport import BridgeTransport
from wagate.engines.venom import VenomSession
from wagate.engines.webjs import WebJSSession
from wagate.errors import EngineNotFound
from wagate.structures import Engine

ENGINES: dict[Engine, type[WhatsappSession]] = {
    Engine.WEBJS: WebJSSession,
    Engine.NOWEB: NowebSession,
    Engine.VENOM: VenomSession,
}


def get_engine(name: str | Engine) -> type[WhatsappSession]:
    """
    根据引擎名查找会话类（不区分大小写）。

    异常:
        EngineNotFound: 未知的引擎名
    """
    try:
        engine = Engine(name.upper() if isinstance(name, str) else name)
    except ValueError:
        raise EngineNotFound(str(name)) from None
    return ENGINES[engine]


__all__ = [
    "WhatsappSession",
    "WebJSSession",
    "NowebSession",
    "VenomSession",
    "BridgeTransport",
    "ENGINES",
    "get_engine",
]
