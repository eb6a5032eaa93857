"""
异常定义模块 - wagate 的统一异常体系。

所有自定义异常都继承自 WagateError，并携带一个机器可读的错误码（ErrorCode），
外部 HTTP 层可以据此把异常映射为对应的响应状态码。

异常分为两类：
- 调用方错误（is_client_error=True）：EngineNotFound、SessionNotFound、
  DuplicateSession、InvalidAttachment。直接向 API 调用方抛出。
- 运行时故障：TransportFailure、StorageFailure。在组件边界被捕获并记录日志，
  转换为会话状态变化（FAILED）或空结果，不会中断管理器。

【Java 开发者类比】
- WagateError 相当于项目自定义的 RuntimeException 基类
- ErrorCode 相当于 Java 中携带错误码的枚举（如 Spring 的 HttpStatus）
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """错误码枚举，同时用于日志和 API 响应。"""

    ENGINE_NOT_FOUND = "ENGINE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    DUPLICATE_SESSION = "DUPLICATE_SESSION"
    INVALID_ATTACHMENT = "INVALID_ATTACHMENT"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    STORAGE_FAILURE = "STORAGE_FAILURE"


class WagateError(Exception):
    """
    wagate 所有异常的基类。

    属性:
        message: 人类可读的错误描述
        error_code: 机器可读的错误码
        is_client_error: 是否属于调用方错误（外部 API 层映射为 4xx）
    """

    is_client_error: bool = False

    def __init__(self, message: str, error_code: ErrorCode, **kwargs: Any) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        # 允许附带额外上下文（如 session、engine），便于日志排查
        for key, value in kwargs.items():
            setattr(self, key, value)

    def to_dict(self) -> dict[str, Any]:
        """转换为 API 响应体格式。"""
        return {"error": self.error_code.value, "message": self.message}


class EngineNotFound(WagateError):
    """请求了未知的引擎名称。"""

    is_client_error = True

    def __init__(self, engine: str) -> None:
        super().__init__(
            f"Unknown whatsapp engine '{engine}'.",
            ErrorCode.ENGINE_NOT_FOUND,
            engine=engine,
        )


class SessionNotFound(WagateError):
    """操作引用了一个不在注册表中的会话。"""

    is_client_error = True

    def __init__(self, name: str) -> None:
        super().__init__(
            f"We didn't find a session with name '{name}'. "
            f"Please start it first by using POST /sessions/start request",
            ErrorCode.SESSION_NOT_FOUND,
            session=name,
        )


class DuplicateSession(WagateError):
    """显式请求启动一个已在运行的会话。"""

    is_client_error = True

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Session '{name}' is already started.",
            ErrorCode.DUPLICATE_SESSION,
            session=name,
        )


class InvalidAttachment(WagateError):
    """发送媒体时既没有内联数据也没有远程 URL。"""

    is_client_error = True

    def __init__(self, message: str = "Either file.url or file.data must be specified.") -> None:
        super().__init__(message, ErrorCode.INVALID_ATTACHMENT)


class TransportFailure(WagateError):
    """底层引擎无法建立或保持连接。"""

    def __init__(self, message: str, session: str | None = None) -> None:
        super().__init__(message, ErrorCode.TRANSPORT_FAILURE, session=session)


class StorageFailure(WagateError):
    """媒体文件写入/删除/清理失败。"""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, ErrorCode.STORAGE_FAILURE, path=path)
