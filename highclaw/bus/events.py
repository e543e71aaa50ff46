"""
消息事件类型定义模块 - 定义消息总线中传输的数据结构。

本模块定义了两个核心数据类：
- InboundMessage：入站消息（从渠道到 Agent）
- OutboundMessage：出站消息（从 Agent 到渠道）

所有渠道和 Agent 循环都通过这两个统一的数据结构进行通信，
实现了渠道与会话核心的解耦。

【设计要点】
入站消息携带完整的对端上下文（私聊/群聊、群 ID、机器人账号），
由 peer_context() 转换为会话路由所需的 PeerContext，
会话键的派生完全交给 SessionRouter，渠道不再自行拼接会话键。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from highclaw.session.keys import PeerContext, PeerKind


@dataclass
class InboundMessage:
    """
    入站消息 - 从聊天渠道接收到的用户消息。

    属性:
        channel: 消息来源渠道标识（如 'whatsapp'）
        sender_id: 发送者唯一标识（渠道内的用户 ID）
        chat_id: 聊天 ID（回复地址，也用作显式绑定的 conversation）
        content: 消息文本内容
        peer_kind: 对端类型（direct / group / channel）
        group_id: 群组 ID（群聊时有效）
        account_id: 接收消息的机器人账号 ID（多账号部署时有效）
        timestamp: 消息时间戳，默认为当前时间
        media: 附带的媒体文件 URL 列表
        metadata: 渠道特有的附加数据
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    peer_kind: str = PeerKind.DIRECT.value
    group_id: str = ""
    account_id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    media: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def peer_context(self) -> PeerContext:
        """转换为会话路由使用的对端上下文。"""
        return PeerContext(
            channel=self.channel,
            peer_id=self.sender_id,
            peer_kind=self.peer_kind,
            group_id=self.group_id,
            account_id=self.account_id,
            conversation=self.chat_id,
        )


@dataclass
class OutboundMessage:
    """
    出站消息 - Agent 要发送到聊天渠道的回复消息。

    属性:
        channel: 目标渠道标识
        chat_id: 目标聊天标识
        content: 回复文本内容
        reply_to: 可选的引用消息 ID
        media: 附带的媒体文件 URL 列表
        metadata: 渠道特有的附加数据（包括 session_key）
    """

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    media: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
