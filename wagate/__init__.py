"""
wagate - 多会话 WhatsApp 网关

模块概述：
    wagate 把任意数量相互独立的聊天会话（每个账号一个）通过统一的接口暴露出来，
    与底层使用哪种连接引擎无关。

    核心功能包括：
    - 会话注册表与生命周期状态机（启动、停止、登出、启动时恢复）
    - 引擎选择（WEBJS、NOWEB、VENOM）
    - 会话事件到 Webhook 的分发
    - 会话级与全局代理配置解析
    - 有时效的共享媒体文件存储
"""

__version__ = "0.1.0"

__logo__ = "📱"
