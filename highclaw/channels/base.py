"""
渠道基类模块 - 定义所有消息渠道的统一能力接口。

所有具体渠道都继承 BaseChannel 并实现其抽象方法：
- start(): 启动渠道，开始监听消息（长期运行的异步任务）
- stop(): 停止渠道，释放资源
- deliver(): 把一条出站消息投递到平台
- describe(): 返回渠道的状态与能力描述（供 status 命令和 /health 使用）

【公共能力】
- is_allowed(): 基于白名单的权限控制
- _handle_message(): 权限检查 → 构造带对端上下文的 InboundMessage → 发布到总线

渠道只负责把平台消息翻译成 InboundMessage（包括私聊/群聊、群 ID、机器人账号），
会话键由 SessionRouter 统一派生。

【Java 开发者类比】
- BaseChannel 相当于 Java 的 abstract class + interface
- _handle_message() 相当于 Template Method 模式中的模板方法
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from highclaw.bus.events import InboundMessage, OutboundMessage
from highclaw.bus.queue import MessageBus
from highclaw.session.keys import PeerKind


class BaseChannel(ABC):
    """
    消息渠道抽象基类。

    属性:
        name: 渠道标识名（如 "whatsapp"），用于出站消息路由
        capabilities: 渠道支持的能力（如 "direct"、"group"、"media"）
        config: 渠道特定的配置对象
        bus: 消息总线实例
    """

    name: str = "base"
    capabilities: tuple[str, ...] = ("direct",)

    def __init__(self, config: Any, bus: MessageBus):
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """启动渠道并开始监听消息（长期运行，直到 stop() 被调用）。"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """停止渠道并清理资源。"""
        pass

    @abstractmethod
    async def deliver(self, msg: OutboundMessage) -> None:
        """
        把出站消息投递到聊天平台。

        由 ChannelManager 的出站分发循环调用。

        参数:
            msg: 出站消息，包含目标聊天 ID 和消息内容
        """
        pass

    def describe(self) -> dict[str, Any]:
        """渠道状态与能力描述。"""
        return {
            "name": self.name,
            "running": self._running,
            "capabilities": list(self.capabilities),
        }

    def is_allowed(self, sender_id: str) -> bool:
        """
        检查发送者是否有权限使用该机器人。

        - 白名单为空 → 允许所有人
        - 白名单非空 → 只允许名单中的用户；支持 "|" 分隔的复合 ID 逐段匹配
        """
        allow_list = getattr(self.config, "allow_from", [])
        if not allow_list:
            return True

        sender_str = str(sender_id)
        if sender_str in allow_list:
            return True
        if "|" in sender_str:
            for part in sender_str.split("|"):
                if part and part in allow_list:
                    return True
        return False

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        peer_kind: str = PeerKind.DIRECT.value,
        group_id: str = "",
        account_id: str = "",
        media: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        处理来自聊天平台的入站消息（模板方法）。

        参数:
            sender_id: 发送者标识符
            chat_id: 聊天标识符（回复地址）
            content: 消息文本内容
            peer_kind: 对端类型（direct / group / channel）
            group_id: 群组 ID（群聊时）
            account_id: 机器人账号 ID
            media: 可选的媒体文件 URL 列表
            metadata: 可选的渠道特定元数据
        """
        if not self.is_allowed(sender_id):
            logger.warning(
                f"Access denied for sender {sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
            return

        msg = InboundMessage(
            channel=self.name,
            sender_id=str(sender_id),
            chat_id=str(chat_id),
            content=content,
            peer_kind=peer_kind,
            group_id=str(group_id or ""),
            account_id=str(account_id or ""),
            media=media or [],
            metadata=metadata or {},
        )
        await self.bus.publish_inbound(msg)

    @property
    def is_running(self) -> bool:
        return self._running
