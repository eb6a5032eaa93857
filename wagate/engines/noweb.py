"""
NOWEB 引擎会话 - 直接使用 WebSocket 协议、不依赖浏览器的引擎。

消息格式为引擎原生结构：
  {"key": {"id": ..., "remoteJid": ...}, "message": {"imageMessage": {...}}}
message 字段的第一个键表示消息类型，图片、语音、视频消息带有媒体。
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

MEDIA_MESSAGE_TYPES = ("imageMessage", "audioMessage", "videoMessage")


def file_to_message(
    file: AttachmentFile,
    type: str,
    caption: str = "",
    filename: str | None = None,
) -> dict[str, Any]:
    """
    把附件转换为引擎的发送结构。

    参数:
        file: 附件（url 或 base64 data）
        type: 消息类型（image、document、audio）
        caption: 说明文字
        filename: 文件名

    返回:
        {type: {"url": ...} 或 base64 字符串, caption, mimetype, filename, ptt}
        audio 类型的 ptt 为 True（作为语音消息发送）
    """
    WhatsappSession.check_file(file)
    content: Any = {"url": file.url} if file.is_remote else file.data
    return {
        type: content,
        "caption": caption,
        "mimetype": file.mimetype,
        "filename": filename,
        "ptt": type == "audio",
    }


class NowebSession(WhatsappSession):
    """NOWEB 引擎会话。"""

    engine = Engine.NOWEB

    def build_transport(self) -> BridgeTransport:
        options: dict[str, Any] = {
            "authFolder": str(self.session_storage.get_folder_path(self.name)),
            "printQRInTerminal": False,
        }
        proxy = self.get_proxy_options()
        if proxy:
            options["proxy"] = proxy
        return self._make_transport(options)

    def get_message_id(self, message: dict[str, Any]) -> str:
        return (message.get("key") or {}).get("id", "")

    async def send_image(self, request: MessageImageRequest) -> Any:
        message = file_to_message(request.file, "image", request.caption)
        return await self._request("sendMessage", {"chatId": request.chat_id, "message": message})

    async def send_file(self, request: MessageFileRequest) -> Any:
        message = file_to_message(
            request.file, "document", request.caption, filename=request.file.filename
        )
        return await self._request("sendMessage", {"chatId": request.chat_id, "message": message})

    async def send_voice(self, request: MessageVoiceRequest) -> Any:
        message = file_to_message(request.file, "audio")
        return await self._request("sendMessage", {"chatId": request.chat_id, "message": message})

    async def download_media(self, message: dict[str, Any]) -> dict[str, Any]:
        content = message.get("message") or {}
        message_type = next(iter(content), None)
        if message_type not in MEDIA_MESSAGE_TYPES:
            return message

        message_id = self.get_message_id(message)
        mimetype = (content[message_type] or {}).get("mimetype")
        logger.info(f"'{self.name}' - the message {message_id} has media, downloading it...")
        data = await self._request("downloadMediaMessage", {"key": message.get("key")})
        message["mediaUrl"] = await self.save_media(message_id, mimetype, data or "")
        return message
