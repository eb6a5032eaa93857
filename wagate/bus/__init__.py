"""
会话事件总线模块 - 实现引擎与外部订阅者（Webhook、管理器）之间的解耦通信。

事件流向：
  引擎推送 → 会话状态机 → SessionEventChannel → WebhookConductor → 外部 HTTP 端点
                                             → SessionManager（启动接线逻辑）

每个会话拥有自己的事件通道，不同会话之间互不干扰。
"""

from wagate.bus.channel import SessionEventChannel, Subscription
from wagate.bus.events import EventKind, SessionEvent

__all__ = ["SessionEventChannel", "Subscription", "EventKind", "SessionEvent"]
