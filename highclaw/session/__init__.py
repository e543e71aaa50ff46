"""
会话路由与持久化模块 - highclaw 的核心。

本模块把每一次入站交互（任意渠道、私聊或群聊、TUI/Web/RPC 客户端）
确定性地映射到一个规范化的会话键，并负责会话的内存表示与磁盘持久化。

【模块组成】
- keys.py：会话键派生（纯函数）
- session.py：单个会话对象（消息日志 + 元数据，自带锁）
- manager.py：内存注册表（每个 key 至多一个会话对象）
- store.py：磁盘快照、当前会话指针、显式绑定
- router.py：入站消息 → 会话键
- idempotency.py / maintenance.py：幂等去重、过期淘汰、自动保存
- service.py：对上层暴露的门面

【数据流】
  渠道 / RPC / HTTP → SessionRouter 派生会话键 → SessionManager 取得会话
  → 追加用户消息（写穿落盘）→ AgentRunner → 追加助手消息（写穿落盘）→ 更新当前会话指针
"""

from highclaw.session.errors import (
    AgentRunError,
    AgentTimeoutError,
    EmptyContentError,
    InvalidInputError,
    InvalidRoleError,
    PolicyViolationError,
    SessionError,
    SessionIOError,
    SessionNotFoundError,
)
from highclaw.session.keys import DMScope, PeerContext, PeerKind, build_main_session_key, build_peer_session_key, normalize_id
from highclaw.session.manager import SessionManager
from highclaw.session.service import ChatResult, SessionService
from highclaw.session.session import ChatMessage, GroupActivation, Session, SessionSummary
from highclaw.session.store import SessionStore

__all__ = [
    "AgentRunError",
    "AgentTimeoutError",
    "ChatMessage",
    "ChatResult",
    "DMScope",
    "EmptyContentError",
    "GroupActivation",
    "InvalidInputError",
    "InvalidRoleError",
    "PeerContext",
    "PeerKind",
    "PolicyViolationError",
    "Session",
    "SessionError",
    "SessionIOError",
    "SessionManager",
    "SessionNotFoundError",
    "SessionService",
    "SessionStore",
    "SessionSummary",
    "build_main_session_key",
    "build_peer_session_key",
    "normalize_id",
]
