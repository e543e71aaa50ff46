"""
会话注册表模块 - 进程内 "会话键 → Session 对象" 的并发映射。

SessionManager 保证同一个 key 在内存中至多只有一个 Session 对象：
get_or_create 在注册表锁内完成"查找 + 创建 + 插入"，先到者创建，
后到者拿到同一个对象。

【锁顺序】
注册表锁只保护字典本身；会话内部的修改使用 Session 自己的锁。
任何代码路径都必须按 注册表 → 会话 → 磁盘 I/O 的顺序加锁，
且不能在持有会话锁时再去拿注册表锁。

【Java 开发者类比】
- SessionManager 类似于 ConcurrentHashMap.computeIfAbsent
- loader 参数类似于 Guava CacheLoader：未命中时从磁盘加载
"""

from __future__ import annotations

import threading
from typing import Callable

from loguru import logger

from highclaw.session.session import Session, SessionSummary


class SessionManager:
    """
    会话注册表。

    属性:
        _sessions: 内存会话字典 {session_key: Session}
        _lock: 保护 _sessions 的互斥锁
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        key: str,
        channel: str = "",
        loader: Callable[[str], Session | None] | None = None,
    ) -> Session:
        """
        获取已有会话或创建新会话。

        查找顺序：内存 → loader（通常是磁盘快照）→ 新建空会话。
        整个过程在注册表锁内完成，并发调用同一个 key 只会得到同一个对象。

        参数:
            key: 会话键
            channel: 来源渠道，仅在新建时使用
            loader: 可选的加载函数，返回 None 表示没有可恢复的快照

        返回:
            注册表中存放的 Session 对象
        """
        with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                return session

            if loader is not None:
                session = loader(key)
            if session is None:
                session = Session(key=key, channel=channel)
                logger.debug(f"Session created: {key}")

            self._sessions[key] = session
            return session

    def get(self, key: str) -> Session | None:
        with self._lock:
            return self._sessions.get(key)

    def put(self, session: Session) -> Session:
        """
        放入一个会话；若 key 已存在，返回已有对象而不覆盖。

        用于把磁盘上加载的会话"收养"进注册表。
        """
        with self._lock:
            return self._sessions.setdefault(session.key, session)

    def delete(self, key: str) -> bool:
        """从注册表移除会话。返回是否确实存在。"""
        with self._lock:
            return self._sessions.pop(key, None) is not None

    def list(self) -> list[SessionSummary]:
        """返回所有内存会话的摘要快照。"""
        return [s.summary() for s in self.all()]

    def all(self) -> list[Session]:
        """返回所有内存会话对象的快照列表（自动保存时遍历用）。"""
        with self._lock:
            return list(self._sessions.values())

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._sessions
