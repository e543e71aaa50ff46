"""
Agent 循环模块 - 消息总线与会话服务之间的桥梁。

AgentLoop 持续从消息总线消费入站消息：
1. 处理斜杠命令（/new、/reset、/help）
2. 把对端上下文交给 SessionService.chat()，由 SessionRouter 派生会话键
3. 把 Agent 回复作为出站消息发布回总线

出错时向用户发送错误提示，不中断循环。

【Java 开发者类比】
- run() 相当于 while(true) 的 MessageListener
- process_direct() 相当于绕过 MQ 直接调用 Service
"""

import asyncio

from loguru import logger

from highclaw import __logo__
from highclaw.bus.events import InboundMessage, OutboundMessage
from highclaw.bus.queue import MessageBus
from highclaw.session.errors import AgentTimeoutError, SessionError
from highclaw.session.service import SessionService

HELP_TEXT = (
    f"{__logo__} highclaw commands:\n"
    "/new - Start a new conversation\n"
    "/reset - Same as /new\n"
    "/help - Show available commands"
)


class AgentLoop:
    """
    Agent 主循环。

    属性:
        bus: 消息总线
        service: 会话服务门面
    """

    def __init__(self, bus: MessageBus, service: SessionService):
        self.bus = bus
        self.service = service
        self._running = False

    async def run(self) -> None:
        """持续消费入站消息，1 秒超时轮询以便响应 stop()。"""
        self._running = True
        logger.info("Agent loop started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                response = await self._process_message(msg)
                if response:
                    await self.bus.publish_outbound(response)
            except Exception as e:
                logger.error(f"Error processing message: {e}")
                await self.bus.publish_outbound(OutboundMessage(
                    channel=msg.channel,
                    chat_id=msg.chat_id,
                    content=f"Sorry, I encountered an error: {e}",
                ))

    def stop(self) -> None:
        self._running = False
        logger.info("Agent loop stopping")

    async def _process_message(
        self, msg: InboundMessage, session_key: str | None = None
    ) -> OutboundMessage | None:
        """
        处理单条入站消息。

        参数:
            msg: 入站消息
            session_key: 显式会话键（process_direct 使用），为空时按对端上下文路由

        返回:
            出站消息；Agent 没有回复内容时返回 None
        """
        preview = msg.content[:80] + "..." if len(msg.content) > 80 else msg.content
        logger.info(f"Processing message from {msg.channel}:{msg.sender_id}: {preview}")

        peer = msg.peer_context()
        cmd = msg.content.strip().lower()
        if cmd in ("/new", "/reset"):
            key = self.service.resolve_session(
                msg.channel, msg.chat_id, peer=peer, session_key=session_key
            )
            if self.service.exists(key):
                self.service.reset(key)
            return self._reply(msg, key, f"{__logo__} New session started.")
        if cmd == "/help":
            return self._reply(msg, session_key or "", HELP_TEXT)

        try:
            result = await self.service.chat(
                msg.content,
                session_key=session_key,
                channel=msg.channel,
                sender=msg.sender_id,
                conversation=msg.chat_id,
                peer=peer,
            )
        except AgentTimeoutError:
            return self._reply(msg, session_key or "", "Sorry, the agent took too long to respond.")
        except SessionError as e:
            logger.warning(f"Session error for {msg.channel}:{msg.chat_id}: {e}")
            return self._reply(msg, session_key or "", f"Sorry, I encountered an error: {e}")

        if not result.reply:
            return None
        return self._reply(msg, result.session_key, result.reply)

    @staticmethod
    def _reply(msg: InboundMessage, session_key: str, content: str) -> OutboundMessage:
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=content,
            metadata={"session_key": session_key} if session_key else {},
        )

    async def process_direct(
        self,
        content: str,
        session_key: str | None = None,
        channel: str = "cli",
        chat_id: str = "direct",
    ) -> str:
        """
        直接处理消息（CLI / TUI 使用），跳过消息总线。

        参数:
            content: 用户消息内容
            session_key: 会话键，为空时按 channel/chat_id 路由
            channel: 来源渠道标识
            chat_id: 聊天 ID

        返回:
            Agent 的响应文本
        """
        msg = InboundMessage(channel=channel, sender_id="user", chat_id=chat_id, content=content)
        response = await self._process_message(msg, session_key=session_key)
        return response.content if response else ""
