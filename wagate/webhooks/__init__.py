"""Webhook 模块 - 会话事件的对外推送。"""

from wagate.webhooks.conductor import WebhookConductor, signature

__all__ = ["WebhookConductor", "signature"]
