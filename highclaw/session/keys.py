"""
会话键派生模块 - 把一次入站交互映射为规范化的会话键。

会话键统一形如 ``agent:<agentId>:<suffix>``，suffix 取决于消息来源：

- 群组/频道消息：``<channel>:<kind>:<groupId>``，同一个群共享一个会话
- 私聊（DM）消息：由 DM Scope 决定对端身份有多少部分参与键的构成
    - main                     → ``<mainKey>``（所有私聊共享主会话）
    - per-peer                 → ``direct:<peerId>``（跨渠道按人隔离，支持身份合并）
    - per-channel-peer         → ``<channel>:direct:<peerId>``
    - per-account-channel-peer → ``<channel>:<accountId>:direct:<peerId>``
- 对端 ID 规范化后为空时，回退到主会话 ``agent:<agentId>:<mainKey>``

本模块只包含纯函数：没有 I/O、没有全局状态、对任意输入都不会抛异常。

【Java 开发者类比】
- 相当于一个只有 static 方法的工具类（final class + private 构造器）
- DMScope / PeerKind 相当于 Java 的 enum，带一个宽松的 valueOf
"""

import re
from dataclasses import dataclass
from enum import Enum

DEFAULT_AGENT_ID = "main"
DEFAULT_MAIN_KEY = "main"
DEFAULT_ACCOUNT_ID = "default"
UNKNOWN_CHANNEL = "unknown"

# 规范化 ID 的最大长度
MAX_ID_LENGTH = 64

_INVALID_ID_CHARS = re.compile(r"[^a-z0-9_-]+")
_DASH_RUNS = re.compile(r"-{2,}")


class DMScope(str, Enum):
    """私聊会话的隔离级别。"""

    MAIN = "main"
    PER_PEER = "per-peer"
    PER_CHANNEL_PEER = "per-channel-peer"
    PER_ACCOUNT_CHANNEL_PEER = "per-account-channel-peer"

    @classmethod
    def parse(cls, value: "str | DMScope | None") -> "DMScope":
        """
        宽松解析 DM Scope。

        同时接受配置文件中的短横线写法（per-channel-peer）和驼峰写法
        （perChannelPeer），大小写不敏感；无法识别的值回退为 main。
        """
        if isinstance(value, DMScope):
            return value
        raw = (value or "").strip()
        if not raw:
            return cls.MAIN
        if raw.isupper() or "-" in raw or "_" in raw:
            kebab = raw.lower().replace("_", "-")
        else:
            # perChannelPeer → per-channel-peer
            kebab = re.sub(r"(?<!^)(?=[A-Z])", "-", raw).lower()
        for scope in cls:
            if scope.value == kebab:
                return scope
        return cls.MAIN


class PeerKind(str, Enum):
    """消息对端类型。"""

    DIRECT = "direct"
    GROUP = "group"
    CHANNEL = "channel"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "str | PeerKind | None") -> "PeerKind":
        if isinstance(value, PeerKind):
            return value
        raw = (value or "").strip().lower()
        if not raw:
            return cls.DIRECT
        for kind in cls:
            if kind.value == raw:
                return kind
        return cls.OTHER


@dataclass(frozen=True)
class PeerContext:
    """
    入站消息的对端上下文。

    属性:
        channel: 渠道名（如 "telegram"、"whatsapp"、"web"）
        peer_id: 发送者在该渠道内的 ID
        peer_kind: 对端类型（direct / group / channel / other），空值视为 direct
        group_id: 群组或频道 ID（仅群聊时有意义）
        account_id: 机器人在该渠道的账号 ID（多账号部署时区分）
        conversation: 渠道内的会话标识（用于查找管理员配置的显式绑定）
    """

    channel: str = ""
    peer_id: str = ""
    peer_kind: str = PeerKind.DIRECT.value
    group_id: str = ""
    account_id: str = ""
    conversation: str = ""


def normalize_id(value: str | None) -> str:
    """
    规范化自由格式的 ID。

    规则：去首尾空白 → 转小写 → 非 [a-z0-9_-] 的连续字符替换为一个 "-"
    → 合并连续的 "-" → 去掉首尾 "-" → 截断到 64 个字符 → 再次去掉首尾 "-"。

    示例: "User@123!#$" → "user-123"
    """
    s = (value or "").strip().lower()
    if not s:
        return ""
    s = _INVALID_ID_CHARS.sub("-", s)
    s = _DASH_RUNS.sub("-", s).strip("-")
    if len(s) > MAX_ID_LENGTH:
        s = s[:MAX_ID_LENGTH].strip("-")
    return s


def build_main_session_key(agent_id: str | None = None, main_key: str | None = None) -> str:
    """构建主会话键 ``agent:<agent>:<main>``，两个参数为空时都默认为 "main"。"""
    agent = normalize_id(agent_id) or DEFAULT_AGENT_ID
    main = normalize_id(main_key) or DEFAULT_MAIN_KEY
    return f"agent:{agent}:{main}"


def resolve_linked_peer_id(
    channel: str,
    peer_id: str,
    identity_links: dict[str, list[str]] | None,
) -> str:
    """
    通过身份链接做跨渠道身份合并。

    identity_links 形如 ``{"alice": ["telegram:alice_tg", "whatsapp:alice_wa"]}``。
    若 ``<channel>:<peer_id>``（大小写不敏感）命中某个别名，返回规范身份 ID；
    否则原样返回 peer_id。
    """
    peer_id = (peer_id or "").strip()
    if not peer_id or not identity_links:
        return peer_id
    needle = f"{(channel or '').strip().lower()}:{peer_id.lower()}"
    for canonical, aliases in identity_links.items():
        for alias in aliases or []:
            if alias.strip().lower() == needle:
                return canonical
    return peer_id


def build_peer_session_key(
    agent_id: str | None,
    main_key: str | None,
    peer: PeerContext,
    dm_scope: "str | DMScope | None" = DMScope.MAIN,
    identity_links: dict[str, list[str]] | None = None,
) -> str:
    """
    根据对端上下文和 DM Scope 构建会话键（核心路由逻辑）。

    参数:
        agent_id: Agent ID，空时为 "main"
        main_key: 主会话键，空时为 "main"
        peer: 对端上下文
        dm_scope: 私聊隔离级别
        identity_links: 跨渠道身份映射 {规范 ID: ["渠道:对端ID", ...]}

    返回:
        完整的会话键字符串
    """
    agent = normalize_id(agent_id) or DEFAULT_AGENT_ID
    kind = PeerKind.parse(peer.peer_kind)
    channel = normalize_id(peer.channel) or UNKNOWN_CHANNEL

    # 群组/频道消息：同一群共享会话
    if kind in (PeerKind.GROUP, PeerKind.CHANNEL):
        group = normalize_id(peer.group_id)
        if group:
            return f"agent:{agent}:{channel}:{kind.value}:{group}"

    scope = DMScope.parse(dm_scope)
    if scope is DMScope.MAIN:
        return build_main_session_key(agent, main_key)

    raw_peer = peer.peer_id
    if scope is DMScope.PER_PEER:
        raw_peer = resolve_linked_peer_id(peer.channel, raw_peer, identity_links)
    peer_id = normalize_id(raw_peer)
    if not peer_id:
        return build_main_session_key(agent, main_key)

    if scope is DMScope.PER_PEER:
        return f"agent:{agent}:direct:{peer_id}"
    if scope is DMScope.PER_CHANNEL_PEER:
        return f"agent:{agent}:{channel}:direct:{peer_id}"
    account = normalize_id(peer.account_id) or DEFAULT_ACCOUNT_ID
    return f"agent:{agent}:{channel}:{account}:direct:{peer_id}"
