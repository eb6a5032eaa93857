"""
VENOM 引擎会话 - 基于无头浏览器的另一种引擎实现。

令牌目录由桥接进程创建在 <sessions.folder>/<engine>/ 下，
目录名由 folderNameToken 和 mkdirFolderToken 两个选项决定。
"""

from typing import Any

from loguru import logger

from wagate.engines.base import WhatsappSession
from wagate.engines.transport import BridgeTransport
from wagate.structures import (
    AttachmentFile,
    Engine,
    MessageFileRequest,
    MessageImageRequest,
    MessageVoiceRequest,
)

# 浏览器空闲自动关闭时间（毫秒）
AUTO_CLOSE_MS = 60000


def _file_source(file: AttachmentFile) -> str:
    """远程文件直接使用 URL，内联文件转换为 data URI。"""
    WhatsappSession.check_file(file)
    if file.is_remote:
        return file.url
    mimetype = file.mimetype or "application/octet-stream"
    return f"data:{mimetype};base64,{file.data}"


class VenomSession(WhatsappSession):
    """VENOM 引擎会话。"""

    engine = Engine.VENOM

    def build_transport(self) -> BridgeTransport:
        options: dict[str, Any] = {
            "headless": True,
            "devtools": False,
            "debug": False,
            "logQR": True,
            "browserArgs": self.get_browser_args(),
            "autoClose": AUTO_CLOSE_MS,
            "folderNameToken": self.session_storage.engine,
            "mkdirFolderToken": str(self.session_storage.sessions_folder),
        }
        proxy = self.get_proxy_options()
        if proxy:
            options["proxy"] = proxy
        return self._make_transport(options)

    def get_message_id(self, message: dict[str, Any]) -> str:
        return str(message.get("id", ""))

    async def send_image(self, request: MessageImageRequest) -> Any:
        return await self._request("sendImage", {
            "chatId": request.chat_id,
            "path": _file_source(request.file),
            "filename": request.file.filename or "image",
            "caption": request.caption,
        })

    async def send_file(self, request: MessageFileRequest) -> Any:
        return await self._request("sendFile", {
            "chatId": request.chat_id,
            "path": _file_source(request.file),
            "filename": request.file.filename or "file",
            "caption": request.caption,
        })

    async def send_voice(self, request: MessageVoiceRequest) -> Any:
        return await self._request("sendVoiceBase64", {
            "chatId": request.chat_id,
            "base64": _file_source(request.file),
        })

    async def download_media(self, message: dict[str, Any]) -> dict[str, Any]:
        if not (message.get("isMMS") and message.get("isMedia")):
            return message

        message_id = self.get_message_id(message)
        logger.info(f"'{self.name}' - the message {message_id} has media, downloading it...")
        data = await self._request("decryptFile", {"message": message})
        message["mediaUrl"] = await self.save_media(message_id, message.get("mimetype"), data or "")
        return message
