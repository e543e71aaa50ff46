"""
会话服务模块 - 会话核心对上层暴露的唯一门面。

RPC 分发器、HTTP 路由、终端 TUI、渠道 Agent 循环都只通过 SessionService
访问会话，它把以下组件组合在一起：

- SessionStore：磁盘快照、当前会话指针、显式绑定
- SessionManager：内存注册表（每个 key 至多一个 Session 对象）
- SessionRouter：入站消息 → 会话键
- IdempotencyGate：聊天写入去重
- AgentRunner：向下调用 LLM 的钩子（可选，只有 chat 需要）

【写穿策略】
所有修改会话的操作（add_message / reset / patch / chat）在返回前都会保存快照；
保存失败以 SessionIOError 抛给调用方。

【chat 流程】
    幂等检查 → 校验 → 路由 → 追加用户消息并落盘 → 裁剪历史
    → 在超时内调用 AgentRunner → 追加助手消息并落盘 → 更新当前会话指针

Agent 调用失败或超时时，用户消息保留在会话中，不追加助手消息，
下一次成功调用会把这条待回复的用户消息作为历史上下文。

【Java 开发者类比】
- SessionService 相当于 Spring 的 @Service 门面，组合多个 Repository/Component
- chat() 相当于一个带超时（CompletableFuture.orTimeout）的业务方法
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from loguru import logger

from highclaw.agent.runner import AgentReply, AgentRequest, AgentRunner
from highclaw.session.errors import (
    AgentRunError,
    AgentTimeoutError,
    InvalidInputError,
    PolicyViolationError,
)
from highclaw.session.idempotency import ClaimResult, IdempotencyGate
from highclaw.session.keys import DMScope, PeerContext
from highclaw.session.maintenance import PruneResult, autosave, last_session_key, prune_stale
from highclaw.session.manager import SessionManager
from highclaw.session.router import SessionRouter
from highclaw.session.session import ChatMessage, GroupActivation, Session, SessionSummary
from highclaw.session.store import CurrentSessionPointer, SessionBinding, SessionStore
from highclaw.utils.helpers import datetime_to_ms, truncate_string

if TYPE_CHECKING:
    from highclaw.config.schema import Config

DEFAULT_HISTORY_LIMIT = 16
DEFAULT_HISTORY_MAX_CHARS = 3000
DEFAULT_AGENT_TIMEOUT_S = 120.0


@dataclass
class ChatResult:
    """
    一次 chat 调用的结果。

    status 为 "ok" 或 "duplicate"；duplicate 时除 session_key 外的字段均为空。
    """

    session_key: str
    status: str = "ok"
    reply: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    model: str = ""

    @property
    def duplicate(self) -> bool:
        return self.status == "duplicate"

    def to_dict(self) -> dict[str, Any]:
        if self.duplicate:
            return {
                "status": "duplicate",
                "duplicate": True,
                "sessionKey": self.session_key,
                "message": "request already processed",
            }
        return {
            "status": "ok",
            "sessionKey": self.session_key,
            "response": self.reply,
            "usage": {"inputTokens": self.tokens_in, "outputTokens": self.tokens_out},
            "latencyMs": self.latency_ms,
            "model": self.model,
        }


def build_agent_history(
    messages: Iterable[ChatMessage],
    limit: int = DEFAULT_HISTORY_LIMIT,
    max_chars: int = DEFAULT_HISTORY_MAX_CHARS,
) -> list[dict[str, str]]:
    """
    把会话消息裁剪成交给 Agent 的历史。

    只保留 user/assistant/system 且内容非空的消息，取最后 limit 条，
    每条内容超过 max_chars 个字符时截断并追加 "..."。
    """
    usable = [
        m for m in messages
        if m.role in ("user", "assistant", "system") and m.content.strip()
    ]
    if limit > 0:
        usable = usable[-limit:]
    return [
        {"role": m.role, "content": truncate_string(m.content.strip(), max_chars)}
        for m in usable
    ]


class SessionService:
    """
    会话服务门面。

    属性:
        store: 会话存储
        manager: 会话注册表
        router: 会话路由器
        gate: 幂等闸门
        runner: Agent 运行器（可为 None，此时 chat 不可用）
        history_limit: 交给 Agent 的历史条数上限
        history_max_chars: 单条历史内容的字符上限
        agent_timeout_s: Agent 调用的默认超时（秒）
    """

    def __init__(
        self,
        store: SessionStore,
        manager: SessionManager | None = None,
        router: SessionRouter | None = None,
        gate: IdempotencyGate | None = None,
        runner: AgentRunner | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        history_max_chars: int = DEFAULT_HISTORY_MAX_CHARS,
        agent_timeout_s: float = DEFAULT_AGENT_TIMEOUT_S,
    ):
        self.store = store
        self.manager = manager if manager is not None else SessionManager()
        self.router = router if router is not None else SessionRouter(store)
        self.gate = gate if gate is not None else IdempotencyGate()
        self.runner = runner
        self.history_limit = history_limit
        self.history_max_chars = history_max_chars
        self.agent_timeout_s = agent_timeout_s

    @classmethod
    def from_config(
        cls,
        config: Config,
        runner: AgentRunner | None = None,
        root: Path | None = None,
    ) -> SessionService:
        """按配置组装服务。root 为空时使用配置中的数据目录。"""
        sc = config.session
        store = SessionStore(root or config.data_path, file_mode=sc.file_mode)
        router = SessionRouter(
            store,
            agent_id=config.agents.defaults.agent_id,
            main_key=sc.main_key,
            dm_scope=sc.dm_scope,
            identity_links=sc.identity_links,
        )
        return cls(
            store,
            router=router,
            gate=IdempotencyGate(ttl_seconds=sc.idempotency_ttl_s),
            runner=runner,
            history_limit=sc.history_limit,
            history_max_chars=sc.history_max_chars,
            agent_timeout_s=config.gateway.agent_timeout_s,
        )

    # ------------------------------------------------------------------
    # 路由与获取
    # ------------------------------------------------------------------

    def resolve_session(
        self,
        channel: str,
        conversation: str = "",
        peer: PeerContext | None = None,
        session_key: str | None = None,
        dm_scope: "DMScope | str | None" = None,
        identity_links: dict[str, list[str]] | None = None,
    ) -> str:
        return self.router.resolve(
            channel,
            conversation,
            peer=peer,
            session_key=session_key,
            dm_scope=dm_scope,
            identity_links=identity_links,
        )

    def get_or_create(self, key: str, channel: str = "") -> Session:
        """获取会话；内存和磁盘都没有时新建（新建的会话在首次写入前不落盘）。"""
        key = _require_key(key)
        return self.manager.get_or_create(key, channel, loader=self.store.try_load)

    def create(self, key: str, channel: str = "") -> Session:
        """获取或新建会话并立即落盘（sessions.create 使用，保证其他进程可见）。"""
        session = self.get_or_create(key, channel)
        self.store.save(session)
        return session

    def get(self, key: str) -> Session:
        """
        获取已存在的会话（内存优先，其次磁盘）。

        异常:
            SessionNotFoundError: 内存和磁盘都没有
        """
        key = _require_key(key)
        session = self.manager.get(key)
        if session is not None:
            return session
        # load 在注册表锁外执行，put 会在并发加载时保留先到的那个对象
        return self.manager.put(self.store.load(key))

    def exists(self, key: str) -> bool:
        return key in self.manager or self.store.exists(key)

    def list(self) -> list[SessionSummary]:
        """所有会话（磁盘 ∪ 内存）的摘要，按最后活跃时间降序。"""
        summaries = {s.key: s.summary() for s in self.store.load_all()}
        for summary in self.manager.list():
            summaries[summary.key] = summary
        return sorted(summaries.values(), key=lambda s: s.last_activity_at, reverse=True)

    def count(self) -> int:
        return self.manager.count()

    # ------------------------------------------------------------------
    # 修改（写穿）
    # ------------------------------------------------------------------

    def add_message(
        self,
        key: str,
        role: str,
        content: str,
        channel: str = "",
        sender: str | None = None,
    ) -> ChatMessage:
        session = self.get(key)
        msg = session.add_message(role, content, channel=channel, sender=sender)
        self.store.save(session)
        return msg

    def messages(self, key: str) -> list[ChatMessage]:
        return self.get(key).get_messages()

    def reset(self, key: str) -> Session:
        session = self.get(key)
        session.reset()
        self.store.save(session)
        logger.info(f"Session reset: {key}")
        return session

    def patch(
        self,
        key: str,
        model: str | None = None,
        thinking_level: str | None = None,
        verbose_level: str | None = None,
        agent_id: str | None = None,
        group_activation: "GroupActivation | str | None" = None,
    ) -> SessionSummary:
        """修改会话元数据（空值表示不修改），返回修改后的摘要。"""
        if group_activation:
            try:
                GroupActivation(group_activation)
            except ValueError as e:
                raise InvalidInputError(f"invalid group activation: {group_activation!r}") from e

        session = self.get(key)
        with session.lock:
            session.set_model(model)
            session.set_thinking_level(thinking_level)
            session.set_verbose_level(verbose_level)
            session.set_agent_id(agent_id)
            session.set_group_activation(group_activation)
            self.store.save(session)
        return session.summary()

    def delete(self, key: str, protect_current: bool = False) -> bool:
        """
        删除会话（内存 + 磁盘）。

        参数:
            key: 会话键
            protect_current: 为 True 时禁止删除当前会话（TUI 使用）

        返回:
            会话是否曾经存在

        异常:
            PolicyViolationError: protect_current 且 key 是当前会话
        """
        key = _require_key(key)
        if protect_current:
            pointer = self.store.current()
            if pointer and pointer.key == key:
                raise PolicyViolationError(f"cannot delete the active session: {key}")
        existed = self.exists(key)
        self.manager.delete(key)
        self.store.delete(key)
        if existed:
            logger.info(f"Session deleted: {key}")
        return existed

    def save_from_history(
        self,
        session_key: str,
        channel: str = "",
        agent_id: str = "",
        model: str = "",
        history: Iterable[ChatMessage | dict[str, Any]] = (),
    ) -> Session:
        session = self.get_or_create(session_key, channel or "cli")
        return self.store.save_from_history(
            session.key, channel, agent_id, model, history, session=session
        )

    # ------------------------------------------------------------------
    # 绑定与当前会话
    # ------------------------------------------------------------------

    def bind(self, channel: str, conversation: str, session_key: str) -> SessionBinding:
        return self.store.set_binding(channel, conversation, session_key)

    def unbind(self, channel: str, conversation: str) -> bool:
        return self.store.remove_binding(channel, conversation)

    def list_bindings(self) -> list[SessionBinding]:
        return self.store.list_bindings()

    def set_current(self, key: str) -> None:
        self.store.set_current(key)

    def current(self) -> str:
        """当前会话键；未设置时返回空字符串。"""
        pointer: CurrentSessionPointer | None = self.store.current()
        return pointer.key if pointer else ""

    # ------------------------------------------------------------------
    # 维护
    # ------------------------------------------------------------------

    def prune_stale(self, max_age_days: int, max_count: int) -> PruneResult:
        return prune_stale(self.store, self.manager, max_age_days, max_count)

    def claim_idempotency(self, key: str | None) -> ClaimResult:
        return self.gate.claim(key)

    def last_session_key(self) -> str:
        return last_session_key(self.store, self.manager)

    def autosave(self) -> list[tuple[str, Exception]]:
        return autosave(self.store, self.manager)

    # ------------------------------------------------------------------
    # 聊天
    # ------------------------------------------------------------------

    async def chat(
        self,
        message: str,
        session_key: str | None = None,
        channel: str = "rpc",
        sender: str | None = None,
        conversation: str = "",
        peer: PeerContext | None = None,
        idempotency_key: str | None = None,
        timeout: float | None = None,
    ) -> ChatResult:
        """
        处理一轮聊天。

        参数:
            message: 用户消息
            session_key: 显式会话键；为空时按 channel/conversation/peer 路由
            channel: 来源渠道
            sender: 发送者
            conversation: 渠道内会话标识（用于绑定查找）
            peer: 对端上下文
            idempotency_key: 幂等键
            timeout: Agent 调用超时（秒），默认使用 agent_timeout_s

        返回:
            ChatResult；重复请求返回 status="duplicate"

        异常:
            InvalidInputError: 消息为空
            AgentTimeoutError: Agent 调用超时（用户消息已保存）
            AgentRunError: Agent 调用失败（用户消息已保存）
        """
        if self.claim_idempotency(idempotency_key) is ClaimResult.DUPLICATE:
            return ChatResult(session_key=(session_key or "").strip(), status="duplicate")

        text = (message or "").strip()
        if not text:
            if idempotency_key:
                self.gate.forget(idempotency_key)
            raise InvalidInputError("message is required")
        if self.runner is None:
            raise AgentRunError("no agent runner configured")

        key = self.resolve_session(channel, conversation, peer=peer, session_key=session_key)
        session = self.get_or_create(key, channel)
        session.add_message("user", text, channel=channel, sender=sender)
        self.store.save(session)

        request = AgentRequest(
            session_key=key,
            message=text,
            history=build_agent_history(
                session.get_messages(), self.history_limit, self.history_max_chars
            ),
            channel=channel,
            model=session.model,
        )

        started = time.monotonic()
        deadline = self.agent_timeout_s if timeout is None else timeout
        try:
            reply: AgentReply = await asyncio.wait_for(self.runner.run(request), timeout=deadline)
        except asyncio.TimeoutError as e:
            logger.warning(f"Agent timed out after {deadline}s for session {key}")
            raise AgentTimeoutError(f"agent timed out after {deadline}s") from e
        except AgentRunError:
            raise
        except Exception as e:
            logger.error(f"Agent failed for session {key}: {e}")
            raise AgentRunError(str(e)) from e
        latency_ms = int((time.monotonic() - started) * 1000)

        if reply.reply.strip():
            session.add_message("assistant", reply.reply, channel=channel)
            self.store.save(session)
        self.store.set_current(key)

        return ChatResult(
            session_key=key,
            reply=reply.reply,
            tokens_in=reply.tokens_in,
            tokens_out=reply.tokens_out,
            latency_ms=latency_ms,
            model=reply.model or session.model,
        )


def _require_key(key: str) -> str:
    key = (key or "").strip()
    if not key:
        raise InvalidInputError("session key is required")
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in key):
        raise InvalidInputError("session key contains control characters")
    return key


def session_to_dict(session: Session) -> dict[str, Any]:
    """会话详情（摘要 + 消息），RPC sessions.get 与 HTTP GET 使用。"""
    with session.lock:
        data = session.summary().to_dict()
        data["verboseLevel"] = session.verbose_level
        data["groupActivation"] = session.group_activation.value if session.group_activation else None
        data["createdAt"] = datetime_to_ms(session.created_at)
        data["messages"] = [m.to_dict() for m in session.get_messages()]
        return data
