"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 wagate 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── engine        - 默认引擎名称（WEBJS / NOWEB / VENOM）
├── bridges       - 各引擎桥接服务的连接参数
├── sessions      - 会话持久化目录、启动恢复策略、预定义会话列表
├── files         - 媒体文件存储（目录、公开 URL、生存时间、mimetype 白名单）
├── webhook       - 全局 Webhook（与会话级 Webhook 同时生效）
└── proxy         - 全局代理（单个地址或轮换代理池）

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wagate.structures import ProxyConfig, WebhookConfig


# ==============================================================================
# 引擎桥接配置
# 每个引擎都是一个独立运行的桥接进程，wagate 通过 WebSocket 与之通信
# ==============================================================================


class BridgeConfig(BaseModel):
    """单个引擎桥接服务配置。"""
    url: str = "ws://localhost:3001"  # 桥接服务的 WebSocket 地址
    token: str = ""  # 桥接认证令牌（可选但推荐设置）
    connect_timeout: float = 30.0  # 建立连接的超时时间（秒）
    request_timeout: float = 60.0  # 单次请求（发送消息、下载媒体）的超时时间（秒）


class BridgesConfig(BaseModel):
    """所有引擎桥接服务的聚合配置。"""
    webjs: BridgeConfig = Field(default_factory=lambda: BridgeConfig(url="ws://localhost:3001"))
    noweb: BridgeConfig = Field(default_factory=lambda: BridgeConfig(url="ws://localhost:3002"))
    venom: BridgeConfig = Field(default_factory=lambda: BridgeConfig(url="ws://localhost:3003"))


# ==============================================================================
# 会话与文件配置
# ==============================================================================


class SessionsConfig(BaseModel):
    """会话持久化与启动策略配置。"""
    folder: str = "./.sessions"  # 会话凭证和配置记录的根目录
    restart_all: bool = False  # 启动时是否恢复所有未停止的会话
    start: list[str] = Field(default_factory=list)  # 启动时无条件拉起的会话名列表

    @field_validator("start", mode="before")
    @classmethod
    def _split_names(cls, value):
        # 允许 "a,b,c" 这种逗号分隔的写法
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value


class FilesConfig(BaseModel):
    """媒体文件存储配置。所有会话共享同一个目录。"""
    folder: str = "/tmp/whatsapp-files"  # 文件落盘目录
    url: str = "http://localhost:3000/api/files/"  # 对外公开的基础 URL（与文件名直接拼接）
    lifetime: int = 180  # 文件生存时间（秒），到期自动删除
    mimetypes: list[str] = Field(default_factory=list)  # 允许保存的 mimetype 前缀，为空表示全部保存

    @field_validator("mimetypes", mode="before")
    @classmethod
    def _split_mimetypes(cls, value):
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value


class ProxySettings(BaseModel):
    """
    全局代理配置。

    server 可以是：
    - None：不使用代理
    - 字符串：所有会话共用一个代理
    - 列表：代理池，按会话名分配（见 sessions/proxy.py）
    """
    server: str | list[str] | None = None
    username: str | None = None
    password: str | None = None

    @property
    def servers(self) -> list[str]:
        """统一返回列表形式的代理地址。"""
        if not self.server:
            return []
        if isinstance(self.server, str):
            return [self.server]
        return [s for s in self.server if s]

    def to_proxy_config(self, server: str) -> ProxyConfig:
        return ProxyConfig(server=server, username=self.username, password=self.password)


# ==============================================================================
# 根配置类：整个 wagate 的配置入口
# ==============================================================================


class Config(BaseSettings):
    """
    wagate 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: WAGATE_
    - 嵌套分隔符: __ (双下划线)
    - 示例: WAGATE_FILES__LIFETIME=600 可覆盖 files.lifetime
    """
    engine: str = "WEBJS"  # 默认引擎
    bridges: BridgesConfig = Field(default_factory=BridgesConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)  # 全局 Webhook
    proxy: ProxySettings = Field(default_factory=ProxySettings)

    @property
    def files_path(self) -> Path:
        """获取展开后的媒体文件目录（将 ~ 展开为用户主目录）。"""
        return Path(self.files.folder).expanduser()

    @property
    def sessions_path(self) -> Path:
        """获取展开后的会话存储根目录。"""
        return Path(self.sessions.folder).expanduser()

    def get_bridge(self, engine: str) -> BridgeConfig:
        """
        获取指定引擎的桥接配置。

        参数:
            engine: 引擎名称（大小写不敏感）

        返回:
            对应的 BridgeConfig；未知引擎返回默认配置
        """
        return getattr(self.bridges, engine.lower(), None) or BridgeConfig()

    def get_webhook_config(self) -> WebhookConfig:
        """获取全局 Webhook 配置（未配置 url 时投递阶段会被跳过）。"""
        return self.webhook

    # Pydantic Settings 配置：支持 WAGATE_ 前缀的环境变量，嵌套用 __ 分隔
    model_config = SettingsConfigDict(
        env_prefix="WAGATE_",
        env_nested_delimiter="__",
    )
