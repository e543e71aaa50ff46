"""
异步消息队列模块 - 消息总线的核心实现。

采用生产者-消费者模式，基于 asyncio.Queue 实现异步消息传递：

入站流程（用户 → Agent）：
  渠道适配器 → publish_inbound() → inbound 队列 → consume_inbound() → AgentLoop

出站流程（Agent → 用户）：
  AgentLoop → publish_outbound() → outbound 队列 → consume_outbound() → ChannelManager → 渠道

【Java 开发者类比】
- asyncio.Queue 类似于 Java 的 LinkedBlockingQueue
- publish/consume 模式类似于 Java 的 BlockingQueue.put()/take()
"""

import asyncio

from highclaw.bus.events import InboundMessage, OutboundMessage


class MessageBus:
    """
    异步消息总线 - 解耦聊天渠道与 Agent 循环的通信中枢。

    属性:
        inbound: 入站消息异步队列（渠道 → Agent）
        outbound: 出站消息异步队列（Agent → 渠道）
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """发布入站消息（渠道 → Agent）。"""
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """消费下一条入站消息（队列为空时异步阻塞）。"""
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        """发布出站消息（Agent → 渠道）。"""
        await self.outbound.put(msg)

    async def consume_outbound(self) -> OutboundMessage:
        """消费下一条出站消息（由 ChannelManager 的分发循环调用）。"""
        return await self.outbound.get()

    @property
    def inbound_size(self) -> int:
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self.outbound.qsize()
