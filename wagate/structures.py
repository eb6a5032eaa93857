"""
数据结构定义模块 - 生命周期 API 与聊天接口中传输的数据模型。

本模块定义了外部 HTTP 层与 SessionManager / 会话之间交换的所有结构：
- 枚举：Engine（引擎种类）、SessionStatus（会话状态）
- 会话配置：SessionConfig、ProxyConfig、WebhookConfig、HmacConfig
- 生命周期请求：SessionStartRequest、SessionStopRequest、SessionLogoutRequest
- 生命周期响应：SessionDTO
- 聊天请求：AttachmentFile、MessageTextRequest、MessageImageRequest、
  MessageFileRequest、MessageVoiceRequest

所有模型对外使用 camelCase 字段名（如 chatId），Python 内部使用 snake_case，
两种写法在构造时都可以接受。

【Java 开发者类比】
- 这些 Pydantic 模型相当于 Spring MVC 里的 @RequestBody DTO
- alias_generator=to_camel 相当于 Jackson 的 @JsonNaming(LowerCamelCaseStrategy)
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """对外 camelCase、对内 snake_case 的模型基类。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Engine(str, Enum):
    """引擎种类。每种引擎对应一个独立的桥接服务和一个会话实现类。"""

    WEBJS = "WEBJS"
    NOWEB = "NOWEB"
    VENOM = "VENOM"


class SessionStatus(str, Enum):
    """
    会话状态。

    状态流转：
      STOPPED → STARTING → (SCAN_QR_CODE → STARTING →) WORKING
      任意状态 → FAILED（连接不可恢复）
      任意状态 → STOPPED（显式停止）
    """

    STOPPED = "STOPPED"
    STARTING = "STARTING"
    SCAN_QR_CODE = "SCAN_QR_CODE"
    WORKING = "WORKING"
    FAILED = "FAILED"


# ==============================================================================
# 会话配置
# ==============================================================================


class HmacConfig(_CamelModel):
    """Webhook 签名配置。设置 key 后每个请求都会带上 HMAC-SHA512 签名头。"""
    key: str | None = None


class WebhookConfig(_CamelModel):
    """
    单个 Webhook 端点配置。

    events 中的 "*" 表示订阅所有事件。
    """
    url: str = ""
    events: list[str] = Field(default_factory=lambda: ["message"])
    hmac: HmacConfig | None = None
    custom_headers: dict[str, str] = Field(default_factory=dict)

    def matches(self, event: str) -> bool:
        """判断该 Webhook 是否订阅了指定事件。"""
        return "*" in self.events or event in self.events


class ProxyConfig(_CamelModel):
    """代理配置，server 形如 "proxy.example.com:3128"。"""
    server: str
    username: str | None = None
    password: str | None = None


class SessionConfig(_CamelModel):
    """会话级配置（随 start 请求传入，并持久化用于恢复）。"""
    proxy: ProxyConfig | None = None
    webhooks: list[WebhookConfig] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)


# ==============================================================================
# 生命周期 API
# ==============================================================================


class SessionStartRequest(_CamelModel):
    name: str = "default"
    config: SessionConfig | None = None


class SessionStopRequest(_CamelModel):
    name: str = "default"
    logout: bool = False


class SessionLogoutRequest(_CamelModel):
    name: str = "default"


class SessionDTO(_CamelModel):
    """会话信息，生命周期 API 的统一返回结构。"""
    name: str
    status: SessionStatus
    config: SessionConfig | None = None


# ==============================================================================
# 聊天接口
# ==============================================================================


class AttachmentFile(_CamelModel):
    """
    待发送的附件。

    url 与 data（base64）二选一；两者都缺失时发送方法会抛出 InvalidAttachment。
    """
    mimetype: str | None = None
    filename: str | None = None
    url: str | None = None
    data: str | None = None

    @property
    def is_remote(self) -> bool:
        return bool(self.url)

    @property
    def is_inline(self) -> bool:
        return bool(self.data)


class MessageTextRequest(_CamelModel):
    chat_id: str
    text: str


class MessageImageRequest(_CamelModel):
    chat_id: str
    file: AttachmentFile
    caption: str = ""


class MessageFileRequest(_CamelModel):
    chat_id: str
    file: AttachmentFile
    caption: str = ""


class MessageVoiceRequest(_CamelModel):
    chat_id: str
    file: AttachmentFile
