"""
会话对象模块 - 单个对话会话的内存表示。

本模块包含：
- ChatMessage：一条不可变的对话消息（角色、内容、来源渠道、发送者、时间戳）
- Session：一个会话，维护有序的消息日志和会话级元数据
- SessionSummary：会话摘要（列表展示用，不含消息内容）
- GroupActivation：群聊激活策略（被 @ 时响应 / 总是响应）

【双日志设计】
Session 同时持有 messages（工作日志）和 history（磁盘镜像）两份列表：
- 每次 add_message 同时追加到两者，保证"写成功后内存 == 磁盘"
- 序列化前调用 sync_history()，把 messages 复制到 history
- 反序列化后调用 restore_messages()，从 history 恢复 messages

【并发模型】
每个 Session 自带一把可重入锁（RLock），所有读写操作在锁内完成。
存储层保存快照时也持有同一把锁，因此快照永远不会观察到"写了一半"的会话。

【Java 开发者类比】
- Session 类似于一个所有方法都加了 synchronized 的 POJO
- ChatMessage 类似于 Java 的 record（不可变值对象）
- to_dict/from_dict 相当于 Jackson 的序列化/反序列化
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from highclaw.session.errors import EmptyContentError, InvalidRoleError
from highclaw.utils.helpers import datetime_to_ms, ms_to_datetime, now_ms

# 允许写入会话的消息角色
VALID_ROLES = frozenset({"user", "assistant", "system"})


class GroupActivation(str, Enum):
    """群聊激活策略：仅在被提及时响应，或总是响应。"""

    MENTION = "mention"
    ALWAYS = "always"


def _utcnow() -> datetime:
    """当前 UTC 时间，截断到毫秒精度（与磁盘格式保持一致）。"""
    return ms_to_datetime(now_ms())


def format_timestamp(dt: datetime) -> str:
    """datetime → ``2026-10-19T08:00:00.123Z`` 格式的 ISO 字符串。"""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime:
    """
    解析快照中的时间字段。

    接受 ISO-8601 字符串（带 Z 或时区偏移）以及毫秒时间戳整数；
    无时区信息的字符串按 UTC 处理。
    """
    if isinstance(value, (int, float)):
        return ms_to_datetime(int(value))
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class ChatMessage:
    """
    一条对话消息。

    属性:
        role: 消息角色（user / assistant / system）
        content: 消息文本（已去除首尾空白，非空）
        channel: 消息来源渠道（可选）
        sender: 发送者标识（可选）
        timestamp: 追加时刻的毫秒时间戳（由会话在写入时打上，不信任调用方传入的值）
    """

    role: str
    content: str
    channel: str = ""
    sender: str = ""
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.channel:
            data["channel"] = self.channel
        if self.sender:
            data["sender"] = self.sender
        data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            role=str(data.get("role", "")),
            content=str(data.get("content", "")),
            channel=str(data.get("channel") or ""),
            sender=str(data.get("sender") or ""),
            timestamp=int(data.get("timestamp") or 0),
        )


@dataclass(frozen=True)
class SessionSummary:
    """会话摘要 - 列表展示用，不包含消息内容。"""

    key: str
    channel: str
    agent_id: str
    model: str
    thinking_level: str
    message_count: int
    last_activity_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "channel": self.channel,
            "agentId": self.agent_id,
            "model": self.model,
            "thinkingLevel": self.thinking_level,
            "messageCount": self.message_count,
            "lastActivityAt": datetime_to_ms(self.last_activity_at),
        }


@dataclass
class Session:
    """
    单个对话会话。

    属性:
        key: 会话唯一标识（如 "agent:main:telegram:direct:alice"），创建后不可变
        channel: 创建会话的来源渠道
        agent_id / model / thinking_level / verbose_level: 会话级元数据
        group_activation: 群聊激活策略（可选）
        message_count: 消息数，始终等于 len(messages)
        created_at: 创建时间（UTC），保存/加载前后保持不变
        last_activity_at: 最后活跃时间（UTC），单调不减
        messages: 工作日志
        history: 磁盘镜像
    """

    key: str
    channel: str = ""
    agent_id: str = ""
    model: str = ""
    thinking_level: str = ""
    verbose_level: str = ""
    group_activation: GroupActivation | None = None
    message_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)
    messages: list[ChatMessage] = field(default_factory=list)
    history: list[ChatMessage] = field(default_factory=list)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    @property
    def lock(self) -> threading.RLock:
        """会话锁。存储层在同步 + 序列化 + 写盘期间持有它。"""
        return self._lock

    def add_message(
        self,
        role: str,
        content: str,
        channel: str = "",
        sender: str | None = None,
    ) -> ChatMessage:
        """
        追加一条消息。

        参数:
            role: 消息角色，必须是 user / assistant / system 之一
            content: 消息内容，去除首尾空白后不能为空
            channel: 来源渠道（可选）
            sender: 发送者（可选）

        返回:
            实际写入的 ChatMessage（带会话打上的时间戳）

        异常:
            InvalidRoleError: 角色不合法
            EmptyContentError: 内容为空
        """
        normalized_role = (role or "").strip().lower()
        if normalized_role not in VALID_ROLES:
            raise InvalidRoleError(role)
        text = (content or "").strip()
        if not text:
            raise EmptyContentError()

        with self._lock:
            stamp = now_ms()
            if self.messages:
                # 时钟回拨时也保证时间戳单调不减
                stamp = max(stamp, self.messages[-1].timestamp)
            msg = ChatMessage(
                role=normalized_role,
                content=text,
                channel=(channel or "").strip(),
                sender=(sender or "").strip(),
                timestamp=stamp,
            )
            self.messages.append(msg)
            self.history.append(msg)
            self.message_count = len(self.messages)
            self._touch(ms_to_datetime(stamp))
            return msg

    def get_messages(self) -> list[ChatMessage]:
        """返回消息列表的防御性副本；加载后尚未恢复时退回 history。"""
        with self._lock:
            if not self.messages and self.history:
                return list(self.history)
            return list(self.messages)

    def reset(self) -> None:
        """清空消息（保留 key、元数据和 created_at）。"""
        with self._lock:
            self.messages = []
            self.history = []
            self.message_count = 0
            self._touch(_utcnow())

    def sync_history(self) -> None:
        """序列化前调用：把工作日志复制到磁盘镜像。"""
        with self._lock:
            self.history = list(self.messages)

    def restore_messages(self) -> None:
        """反序列化后调用：工作日志为空时从磁盘镜像恢复。"""
        with self._lock:
            if not self.messages and self.history:
                self.messages = list(self.history)
            self.message_count = len(self.messages)

    # ------------------------------------------------------------------
    # 元数据：只在新值非空时覆盖
    # ------------------------------------------------------------------

    def set_model(self, model: str | None) -> None:
        self._set_meta("model", model)

    def set_thinking_level(self, level: str | None) -> None:
        self._set_meta("thinking_level", level)

    def set_verbose_level(self, level: str | None) -> None:
        self._set_meta("verbose_level", level)

    def set_agent_id(self, agent_id: str | None) -> None:
        self._set_meta("agent_id", agent_id)

    def set_group_activation(self, activation: "GroupActivation | str | None") -> None:
        if not activation:
            return
        with self._lock:
            self.group_activation = GroupActivation(activation)

    def _set_meta(self, name: str, value: str | None) -> None:
        value = (value or "").strip()
        if not value:
            return
        with self._lock:
            setattr(self, name, value)

    def _touch(self, when: datetime) -> None:
        if when > self.last_activity_at:
            self.last_activity_at = when

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------

    def summary(self) -> SessionSummary:
        with self._lock:
            return SessionSummary(
                key=self.key,
                channel=self.channel,
                agent_id=self.agent_id,
                model=self.model,
                thinking_level=self.thinking_level,
                message_count=self.message_count,
                last_activity_at=self.last_activity_at,
            )

    def to_dict(self) -> dict[str, Any]:
        """
        序列化为快照 JSON 对象（字段名与磁盘格式一致）。

        消息通过 history 镜像输出，调用前应先 sync_history()。
        可选字段为空时省略。
        """
        with self._lock:
            data: dict[str, Any] = {"key": self.key, "channel": self.channel}
            for name, attr in (
                ("agentId", self.agent_id),
                ("model", self.model),
                ("thinkingLevel", self.thinking_level),
                ("verboseLevel", self.verbose_level),
            ):
                if attr:
                    data[name] = attr
            data["messageCount"] = self.message_count
            data["createdAt"] = format_timestamp(self.created_at)
            data["lastActivityAt"] = format_timestamp(self.last_activity_at)
            if self.group_activation:
                data["groupActivation"] = self.group_activation.value
            data["history"] = [m.to_dict() for m in self.history]
            return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """
        从快照 JSON 对象反序列化。

        key 缺失或时间字段非法时抛出 ValueError / KeyError，由调用方决定如何处理。
        返回的会话尚未 restore_messages()。
        """
        key = str(data["key"]).strip()
        if not key:
            raise ValueError("snapshot has an empty key")
        created_at = parse_timestamp(data["createdAt"])
        last_activity = parse_timestamp(data.get("lastActivityAt") or data["createdAt"])
        activation = data.get("groupActivation")
        return cls(
            key=key,
            channel=str(data.get("channel") or ""),
            agent_id=str(data.get("agentId") or ""),
            model=str(data.get("model") or ""),
            thinking_level=str(data.get("thinkingLevel") or ""),
            verbose_level=str(data.get("verboseLevel") or ""),
            group_activation=GroupActivation(activation) if activation else None,
            message_count=int(data.get("messageCount") or 0),
            created_at=created_at,
            last_activity_at=max(created_at, last_activity),
            history=[ChatMessage.from_dict(m) for m in data.get("history") or []],
        )
