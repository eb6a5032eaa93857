"""
WEBJS 引擎会话 - 基于无头浏览器（WhatsApp Web 页面）的引擎。

特点：
- 登录凭证由桥接进程以 LocalAuth 方式保存在会话目录下
- 远程文件由 wagate 先下载为 base64 再交给引擎（引擎侧不访问外部 URL）
- 文件作为文档发送，语音作为语音消息发送

消息 ID 位于 message["id"]["_serialized"]。
"""

import base64
from typing import Any

import httpx
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


class WebJSSession(WhatsappSession):
    """WEBJS 引擎会话。"""

    engine = Engine.WEBJS

    def build_transport(self) -> BridgeTransport:
        options: dict[str, Any] = {
            "authStrategy": {
                "type": "LocalAuth",
                "clientId": self.name,
                "dataPath": str(self.session_storage.get_folder_path(self.name)),
            },
            "puppeteer": {
                "headless": True,
                "args": self.get_browser_args(),
            },
        }
        proxy = self.get_proxy_options()
        if proxy:
            options["proxy"] = proxy
        return self._make_transport(options)

    def get_message_id(self, message: dict[str, Any]) -> str:
        return (message.get("id") or {}).get("_serialized", "")

    async def _file_to_media(self, file: AttachmentFile) -> dict[str, Any]:
        """
        把附件转换为引擎的 MessageMedia 结构 {mimetype, data, filename}。

        远程文件会被下载，请求中指定的 mimetype 优先于下载得到的类型。
        """
        self.check_file(file)
        if file.is_remote:
            async with httpx.AsyncClient(proxy=self._httpx_proxy()) as client:
                response = await client.get(file.url, follow_redirects=True)
                response.raise_for_status()
            fetched = response.headers.get("content-type", "").split(";", 1)[0].strip()
            return {
                "mimetype": file.mimetype or fetched or None,
                "data": base64.b64encode(response.content).decode("ascii"),
                "filename": file.filename,
            }
        return {"mimetype": file.mimetype, "data": file.data, "filename": file.filename}

    def _httpx_proxy(self) -> str | None:
        if not self.proxy_config:
            return None
        server = self.proxy_config.server
        if "://" not in server:
            server = f"http://{server}"
        if self.proxy_config.username:
            scheme, rest = server.split("://", 1)
            credentials = self.proxy_config.username
            if self.proxy_config.password:
                credentials += f":{self.proxy_config.password}"
            server = f"{scheme}://{credentials}@{rest}"
        return server

    async def send_file(self, request: MessageFileRequest) -> Any:
        media = await self._file_to_media(request.file)
        return await self._request("sendMessage", {
            "chatId": request.chat_id,
            "content": media,
            "options": {"sendMediaAsDocument": True, "caption": request.caption},
        })

    async def send_image(self, request: MessageImageRequest) -> Any:
        media = await self._file_to_media(request.file)
        return await self._request("sendMessage", {
            "chatId": request.chat_id,
            "content": request.caption,
            "options": {"media": media},
        })

    async def send_voice(self, request: MessageVoiceRequest) -> Any:
        media = await self._file_to_media(request.file)
        return await self._request("sendMessage", {
            "chatId": request.chat_id,
            "content": media,
            "options": {"sendAudioAsVoice": True},
        })

    async def download_media(self, message: dict[str, Any]) -> dict[str, Any]:
        if not message.get("hasMedia"):
            return message

        message_id = self.get_message_id(message)
        logger.info(f"'{self.name}' - the message {message_id} has media, downloading it...")
        media = await self._request("downloadMedia", {"messageId": message_id})
        if not media:
            logger.info(f"'{self.name}' - no media found for {message_id}")
            message["mediaUrl"] = None
            return message

        message["mediaUrl"] = await self.save_media(
            message_id, media.get("mimetype"), media.get("data", "")
        )
        return message
