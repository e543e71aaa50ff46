"""
消息总线模块 - 实现渠道与 Agent 循环之间的解耦通信。

消息流向：
  用户消息 → 渠道(Channel) → InboundMessage → 消息总线 → AgentLoop → 会话服务
  Agent 回复 → OutboundMessage → 消息总线 → ChannelManager → 渠道(Channel) → 用户
"""

from highclaw.bus.events import InboundMessage, OutboundMessage
from highclaw.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage"]
