"""
会话事件类型定义模块 - 定义会话事件通道中传输的数据结构。

本模块定义了：
- EventKind：事件种类枚举（其取值同时也是 Webhook 配置中 events 列表使用的名称）
- SessionEvent：一条会话事件（种类 + 会话名 + 事件载荷 + 时间戳）

所有引擎实现都通过这两个统一的数据结构对外发布事件，
WebhookConductor 与 SessionManager 只认识 SessionEvent，不关心事件来自哪个引擎。

【Java 开发者类比】
- SessionEvent 使用 @dataclass，等价于 Java 的 record 类
- EventKind 继承 str 的枚举，等价于带字符串值的 Java enum
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """会话事件种类。"""

    ENGINE_START = "engine.start"  # 引擎客户端已构建，连接流程开始
    QR = "qr"  # 需要扫码登录，载荷中带有二维码内容
    STATUS_CHANGE = "session.status"  # 会话状态变化
    MESSAGE = "message"  # 收到入站消息（媒体已处理完毕）
    MESSAGE_MEDIA = "message.media"  # 消息中的媒体已保存，载荷中带有 mediaUrl


@dataclass
class SessionEvent:
    """
    会话事件 - 会话内部状态或消息流上的一个事件。

    属性:
        kind: 事件种类
        session: 产生该事件的会话名
        payload: 事件载荷（不同事件结构不同）
        timestamp: 事件产生时间
    """

    kind: EventKind
    session: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_webhook_body(self) -> dict[str, Any]:
        """
        转换为 Webhook 投递的请求体。

        格式：{"event": "<事件名>", "session": "<会话名>", "payload": {...}}
        """
        return {
            "event": self.kind.value,
            "session": self.session,
            "payload": self.payload,
        }
