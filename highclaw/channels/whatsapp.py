"""
WhatsApp 渠道实现 - 基于 Node.js 桥接服务的消息通信。

- 入站：通过 WebSocket 连接到桥接服务接收消息
- 出站：通过 WebSocket 发送 {"type": "send"} 指令给桥接服务

架构：Python <-> WebSocket <-> Node.js Bridge <-> WhatsApp Web

群聊消息（isGroup=true）会带上 peer_kind="group" 和群 JID 作为 group_id，
从而被 SessionRouter 路由到 agent:<id>:whatsapp:group:<群ID> 会话，
群内所有成员共享同一段上下文。
"""

import asyncio
import json

from loguru import logger

from highclaw.bus.events import OutboundMessage
from highclaw.bus.queue import MessageBus
from highclaw.channels.base import BaseChannel
from highclaw.config.schema import WhatsAppConfig
from highclaw.session.keys import PeerKind

RECONNECT_DELAY_S = 5


class WhatsAppChannel(BaseChannel):
    """
    WhatsApp 渠道 - 通过 Node.js 桥接服务通信。

    消息协议（Python <-> Bridge）：
    - auth：发送认证令牌
    - message：接收到的用户消息
    - send：发送消息给用户
    - status：连接状态更新
    - qr：首次登录的二维码（需在桥接终端扫码）
    - error：错误信息
    """

    name = "whatsapp"
    capabilities = ("direct", "group")

    def __init__(self, config: WhatsAppConfig, bus: MessageBus):
        super().__init__(config, bus)
        self.config: WhatsAppConfig = config
        self._ws = None
        self._connected = False

    async def start(self) -> None:
        """连接桥接服务并进入监听循环，断线后每 5 秒重连。"""
        import websockets

        bridge_url = self.config.bridge_url
        logger.info(f"Connecting to WhatsApp bridge at {bridge_url}...")

        self._running = True

        while self._running:
            try:
                async with websockets.connect(bridge_url) as ws:
                    self._ws = ws
                    if self.config.bridge_token:
                        await ws.send(json.dumps({"type": "auth", "token": self.config.bridge_token}))
                    self._connected = True
                    logger.info("Connected to WhatsApp bridge")

                    async for message in ws:
                        try:
                            await self._handle_bridge_message(message)
                        except Exception as e:
                            logger.error(f"Error handling bridge message: {e}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                self._connected = False
                self._ws = None
                logger.warning(f"WhatsApp bridge connection error: {e}")

                if self._running:
                    logger.info(f"Reconnecting in {RECONNECT_DELAY_S} seconds...")
                    await asyncio.sleep(RECONNECT_DELAY_S)

    async def stop(self) -> None:
        self._running = False
        self._connected = False

        if self._ws:
            await self._ws.close()
            self._ws = None

    async def deliver(self, msg: OutboundMessage) -> None:
        """
        通过桥接服务发送消息：{"type": "send", "to": <chat_id>, "text": <内容>}

        参数:
            msg: 出站消息对象
        """
        if not self._ws or not self._connected:
            logger.warning("WhatsApp bridge not connected")
            return

        payload = {"type": "send", "to": msg.chat_id, "text": msg.content}
        try:
            await self._ws.send(json.dumps(payload))
        except Exception as e:
            logger.error(f"Error sending WhatsApp message: {e}")

    def describe(self) -> dict:
        info = super().describe()
        info["connected"] = self._connected
        info["bridgeUrl"] = self.config.bridge_url
        return info

    async def _handle_bridge_message(self, raw: str) -> None:
        """
        处理从桥接服务收到的消息（按 type 字段分发）。

        参数:
            raw: 原始 JSON 字符串
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from bridge: {raw[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "message":
            # pn 是旧版手机号格式，sender 是新版 LID（群聊时为群 JID）
            pn = data.get("pn", "")
            sender = data.get("sender", "")
            participant = data.get("participant", "")
            content = data.get("content", "")
            is_group = bool(data.get("isGroup", False))

            user_id = participant or pn or sender
            sender_id = user_id.split("@")[0] if "@" in user_id else user_id

            if content == "[Voice Message]":
                logger.info(f"Voice message received from {sender_id}, transcription is not supported")
                content = "[Voice Message: Transcription not available for WhatsApp yet]"

            await self._handle_message(
                sender_id=sender_id,
                chat_id=sender,
                content=content,
                peer_kind=PeerKind.GROUP.value if is_group else PeerKind.DIRECT.value,
                group_id=sender.split("@")[0] if is_group else "",
                account_id=self.config.account_id,
                metadata={
                    "message_id": data.get("id"),
                    "timestamp": data.get("timestamp"),
                    "is_group": is_group,
                },
            )

        elif msg_type == "status":
            status = data.get("status")
            logger.info(f"WhatsApp status: {status}")
            if status == "connected":
                self._connected = True
            elif status == "disconnected":
                self._connected = False

        elif msg_type == "qr":
            logger.info("Scan QR code in the bridge terminal to connect WhatsApp")

        elif msg_type == "error":
            logger.error(f"WhatsApp bridge error: {data.get('error')}")
