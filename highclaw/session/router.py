"""
会话路由模块 - 每条入站消息的路由入口。

决策顺序：
1. 调用方显式指定了会话键（RPC 的 sessionKey、HTTP 的 session 字段）→ 原样使用
2. 否则查询管理员配置的显式绑定（channel|conversation）→ 命中非默认键则使用
3. 否则按配置的 DM Scope 和身份链接派生会话键

路由器本身无状态，所有状态都在存储层（绑定文件）和配置中。
"""

from dataclasses import replace

from loguru import logger

from highclaw.session.keys import DMScope, PeerContext, build_peer_session_key
from highclaw.session.store import DEFAULT_SESSION_KEY, SessionStore


class SessionRouter:
    """
    会话路由器。

    属性:
        store: 会话存储（用于查询显式绑定）
        agent_id: 本网关的 Agent ID
        main_key: 主会话键
        dm_scope: 默认的私聊隔离级别
        identity_links: 跨渠道身份映射
    """

    def __init__(
        self,
        store: SessionStore,
        agent_id: str = "main",
        main_key: str = "main",
        dm_scope: "DMScope | str" = DMScope.PER_CHANNEL_PEER,
        identity_links: dict[str, list[str]] | None = None,
    ):
        self.store = store
        self.agent_id = agent_id
        self.main_key = main_key
        self.dm_scope = DMScope.parse(dm_scope)
        self.identity_links = identity_links or {}

    def resolve(
        self,
        channel: str,
        conversation: str = "",
        peer: PeerContext | None = None,
        session_key: str | None = None,
        dm_scope: "DMScope | str | None" = None,
        identity_links: dict[str, list[str]] | None = None,
    ) -> str:
        """
        为一次入站交互解析会话键。

        参数:
            channel: 来源渠道
            conversation: 渠道内的会话标识（用于查找绑定）
            peer: 对端上下文；为空时以 (channel, conversation) 构造一个私聊上下文
            session_key: 调用方显式指定的会话键
            dm_scope: 覆盖默认的 DM Scope
            identity_links: 覆盖默认的身份映射

        返回:
            会话键
        """
        explicit = (session_key or "").strip()
        if explicit:
            return explicit

        if peer is None:
            peer = PeerContext(channel=channel, peer_id=conversation, conversation=conversation)
        elif channel and not peer.channel:
            peer = replace(peer, channel=channel)
        conversation = conversation or peer.conversation

        bound = self.store.resolve_session(channel or peer.channel, conversation)
        if bound != DEFAULT_SESSION_KEY:
            logger.debug(f"Routing {channel}|{conversation} via binding -> {bound}")
            return bound

        scope = self.dm_scope if dm_scope is None else DMScope.parse(dm_scope)
        links = self.identity_links if identity_links is None else identity_links
        return build_peer_session_key(self.agent_id, self.main_key, peer, scope, links)
