"""
会话磁盘存储模块 - 会话快照、当前会话指针和显式绑定的持久化。

【存储布局】
所有文件位于配置根目录（默认 ~/.highclaw）下：

    <root>/sessions/<sanitized-key>.json     每个会话一个 JSON 快照
    <root>/state/current_session.json        当前会话指针 {key, updatedAt}
    <root>/state/session_bindings.json       显式绑定 {bindings: {"<channel>|<conversation>": key}}

【原子写入】
所有写操作都是"写临时文件 → fsync → os.replace"。进程在任意时刻崩溃，
磁盘上要么是旧快照，要么是新快照，不会出现写了一半的文件。
会话快照在持有会话锁期间完成 同步 + 序列化 + 写盘。

【失败语义】
- save / delete / 绑定与指针写入：I/O 错误包装为 SessionIOError 抛给调用方
- load：文件不存在抛 SessionNotFoundError
- load_all：单个文件损坏时记录日志并跳过，不影响其他会话
- delete：文件不存在不算错误

【Java 开发者类比】
- SessionStore 类似于一个基于文件的 Repository（Spring Data 风格）
- os.replace 相当于 Files.move(..., ATOMIC_MOVE)
"""

import hashlib
import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

from highclaw.session.errors import (
    InvalidInputError,
    SessionIOError,
    SessionNotFoundError,
)
from highclaw.session.keys import build_main_session_key
from highclaw.session.session import ChatMessage, Session
from highclaw.utils.helpers import (
    MAX_FILENAME_BYTES,
    ensure_dir,
    get_data_path,
    now_ms,
    safe_filename,
)

# 无绑定时的默认会话键
DEFAULT_SESSION_KEY = build_main_session_key()

DEFAULT_FILE_MODE = 0o644
DIR_MODE = 0o755

# 文件名里追加的键哈希长度（十六进制字符）
FILENAME_HASH_LEN = 12


def sanitize_filename(key: str) -> str:
    """
    把会话键转换为快照文件名（不含 .json 后缀），不超过 200 字节。

    普通键只把 ``:`` 换成 ``_``，文件名可以唯一还原出原键。
    其他情况（键里本来就有 ``_``、含其他不安全字符、或需要截断）
    会在文件名末尾追加完整键的短哈希，避免两个不同的键落到同一个文件上。
    """
    name = safe_filename(key)
    if "_" not in key and name == key.replace(":", "_"):
        return name
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:FILENAME_HASH_LEN]
    prefix = safe_filename(key, max_bytes=MAX_FILENAME_BYTES - FILENAME_HASH_LEN - 1)
    return f"{prefix}-{digest}"


def binding_key(channel: str, conversation: str) -> str:
    """绑定表的键：``<小写 channel>|<conversation>``。"""
    return f"{channel.strip().lower()}|{conversation.strip()}"


@dataclass(frozen=True)
class SessionBinding:
    """管理员配置的显式绑定：某渠道的某个会话窗口固定路由到指定会话键。"""

    channel: str
    conversation: str
    session_key: str

    def to_dict(self) -> dict[str, str]:
        return {
            "channel": self.channel,
            "conversation": self.conversation,
            "sessionKey": self.session_key,
        }


@dataclass(frozen=True)
class CurrentSessionPointer:
    """当前会话指针。updated_at 为毫秒时间戳。"""

    key: str
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "updatedAt": self.updated_at}


class SessionStore:
    """
    会话磁盘存储。

    属性:
        root: 配置根目录
        sessions_dir: 会话快照目录
        state_dir: 指针和绑定文件目录
        file_mode: 快照文件的权限位（默认 0644）
        _state_lock: 保护绑定文件"读-改-写"的互斥锁
    """

    def __init__(self, root: Path | None = None, file_mode: int = DEFAULT_FILE_MODE):
        self.root = Path(root) if root else get_data_path()
        self.sessions_dir = self.root / "sessions"
        self.state_dir = self.root / "state"
        self.file_mode = file_mode
        self._state_lock = threading.Lock()

    @property
    def current_path(self) -> Path:
        return self.state_dir / "current_session.json"

    @property
    def bindings_path(self) -> Path:
        return self.state_dir / "session_bindings.json"

    def session_path(self, key: str) -> Path:
        """会话快照的文件路径。"""
        return self.sessions_dir / f"{sanitize_filename(key)}.json"

    # ------------------------------------------------------------------
    # 会话快照
    # ------------------------------------------------------------------

    def save(self, session: Session) -> Path:
        """
        保存会话快照（原子写入）。

        参数:
            session: 要保存的会话

        返回:
            快照文件路径

        异常:
            SessionIOError: 写盘失败
        """
        path = self.session_path(session.key)
        with session.lock:
            session.sync_history()
            payload = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)
            self._atomic_write(path, payload, self.file_mode)
        return path

    def load(self, key: str) -> Session:
        """
        从磁盘加载会话。

        异常:
            SessionNotFoundError: 快照不存在（或文件属于另一个清洗后同名的 key）
            SessionIOError: 文件存在但无法读取或解析
        """
        path = self.session_path(key)
        if not path.exists():
            raise SessionNotFoundError(key)
        try:
            session = self._read_snapshot(path)
        except OSError as e:
            raise SessionIOError(f"failed to read session {key}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise SessionIOError(f"invalid session snapshot {path.name}: {e}") from e
        if session.key != key:
            raise SessionNotFoundError(key)
        return session

    def try_load(self, key: str) -> Session | None:
        """
        加载会话，不存在时返回 None。

        快照损坏时记录警告并返回 None，调用方会从空会话重新开始。
        """
        try:
            return self.load(key)
        except SessionNotFoundError:
            return None
        except SessionIOError as e:
            logger.warning(f"Failed to load session {key}: {e}")
            return None

    def load_all(self) -> list[Session]:
        """扫描快照目录，返回所有能成功解析的会话；损坏的文件被跳过。"""
        if not self.sessions_dir.is_dir():
            return []
        sessions = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            try:
                sessions.append(self._read_snapshot(path))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.debug(f"Skipping unreadable session file {path.name}: {e}")
        return sessions

    def delete(self, key: str) -> None:
        """删除会话快照。文件不存在时静默返回。"""
        try:
            self.session_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise SessionIOError(f"failed to delete session {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self.session_path(key).exists()

    def save_from_history(
        self,
        session_key: str,
        channel: str = "",
        agent_id: str = "",
        model: str = "",
        history: Iterable[ChatMessage | dict[str, Any]] = (),
        session: Session | None = None,
    ) -> Session:
        """
        用一份完整的消息历史覆盖（或新建）会话快照，然后设为当前会话。

        TUI 在本地维护对话列表时用它一次性落盘。已有快照的 created_at 会被沿用；
        空 channel 记为 "cli"，空 agent_id 记为 "main"；角色或内容为空、
        角色不合法的条目被跳过。

        参数:
            session_key: 会话键（必填）
            channel: 来源渠道
            agent_id: Agent ID
            model: 模型名
            history: 消息列表（ChatMessage 或 {role, content, ...} 字典）
            session: 可选的内存会话对象；提供时原地改写它，保证注册表中仍是同一个对象

        返回:
            写入后的会话
        """
        key = (session_key or "").strip()
        if not key:
            raise InvalidInputError("session key is required")

        if session is None:
            session = self.try_load(key) or Session(key=key)

        with session.lock:
            session.channel = (channel or "").strip() or session.channel or "cli"
            session.agent_id = (agent_id or "").strip() or session.agent_id or "main"
            session.set_model(model)
            session.reset()
            for entry in history:
                if isinstance(entry, ChatMessage):
                    entry = entry.to_dict()
                role = str(entry.get("role") or "").strip()
                content = str(entry.get("content") or "").strip()
                if not role or not content:
                    continue
                try:
                    session.add_message(role, content, entry.get("channel") or "", entry.get("sender"))
                except InvalidInputError:
                    logger.debug(f"Skipping history entry with role {role!r} for {key}")
            self.save(session)

        self.set_current(key)
        return session

    # ------------------------------------------------------------------
    # 显式绑定
    # ------------------------------------------------------------------

    def resolve_session(self, channel: str, conversation: str) -> str:
        """
        按 (channel, conversation) 查找显式绑定。

        任一参数为空或没有绑定时返回默认会话键 agent:main:main。
        绑定文件损坏时记录警告并视为无绑定。
        """
        channel = (channel or "").strip()
        conversation = (conversation or "").strip()
        if not channel or not conversation:
            return DEFAULT_SESSION_KEY
        try:
            bound = self.lookup_binding(channel, conversation)
        except SessionIOError as e:
            logger.warning(f"Ignoring session bindings: {e}")
            return DEFAULT_SESSION_KEY
        return bound or DEFAULT_SESSION_KEY

    def lookup_binding(self, channel: str, conversation: str) -> str | None:
        return self._read_bindings().get(binding_key(channel, conversation))

    def set_binding(self, channel: str, conversation: str, session_key: str) -> SessionBinding:
        channel = (channel or "").strip()
        conversation = (conversation or "").strip()
        session_key = (session_key or "").strip()
        if not channel or not conversation or not session_key:
            raise InvalidInputError("channel, conversation and session key are required")
        with self._state_lock:
            bindings = self._read_bindings()
            bindings[binding_key(channel, conversation)] = session_key
            self._write_bindings(bindings)
        logger.info(f"Bound {channel}|{conversation} -> {session_key}")
        return SessionBinding(channel.lower(), conversation, session_key)

    def remove_binding(self, channel: str, conversation: str) -> bool:
        """删除绑定。返回绑定是否存在。"""
        channel = (channel or "").strip()
        conversation = (conversation or "").strip()
        if not channel or not conversation:
            raise InvalidInputError("channel and conversation are required")
        with self._state_lock:
            bindings = self._read_bindings()
            if bindings.pop(binding_key(channel, conversation), None) is None:
                return False
            self._write_bindings(bindings)
        logger.info(f"Unbound {channel}|{conversation}")
        return True

    def list_bindings(self) -> list[SessionBinding]:
        """列出全部绑定，按 channel、conversation 排序。"""
        result = []
        for composite, key in self._read_bindings().items():
            channel, _, conversation = composite.partition("|")
            result.append(SessionBinding(channel, conversation, key))
        return sorted(result, key=lambda b: (b.channel, b.conversation))

    def _read_bindings(self) -> dict[str, str]:
        path = self.bindings_path
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SessionIOError(f"failed to read {path.name}: {e}") from e
        bindings = data.get("bindings") if isinstance(data, dict) else None
        if not isinstance(bindings, dict):
            return {}
        return {str(k): str(v) for k, v in bindings.items()}

    def _write_bindings(self, bindings: dict[str, str]) -> None:
        payload = json.dumps({"bindings": bindings}, indent=2, ensure_ascii=False)
        self._atomic_write(self.bindings_path, payload, DEFAULT_FILE_MODE)

    # ------------------------------------------------------------------
    # 当前会话指针
    # ------------------------------------------------------------------

    def set_current(self, key: str) -> None:
        """设置当前会话；key 为空时删除指针文件。"""
        key = (key or "").strip()
        if not key:
            try:
                self.current_path.unlink(missing_ok=True)
            except OSError as e:
                raise SessionIOError(f"failed to clear current session: {e}") from e
            return
        pointer = CurrentSessionPointer(key=key, updated_at=now_ms())
        payload = json.dumps(pointer.to_dict(), indent=2, ensure_ascii=False)
        with self._state_lock:
            self._atomic_write(self.current_path, payload, DEFAULT_FILE_MODE)

    def current(self) -> CurrentSessionPointer | None:
        """读取当前会话指针；不存在或无法解析时返回 None。"""
        path = self.current_path
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            key = str(data.get("key") or "").strip()
            updated_at = int(data.get("updatedAt") or 0)
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to read current session pointer: {e}")
            return None
        if not key:
            return None
        return CurrentSessionPointer(key=key, updated_at=updated_at)

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    @staticmethod
    def _read_snapshot(path: Path) -> Session:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("snapshot is not a JSON object")
        session = Session.from_dict(data)
        session.restore_messages()
        return session

    @staticmethod
    def _atomic_write(path: Path, payload: str, mode: int) -> None:
        """写临时文件 → fsync → chmod → os.replace。失败时清理临时文件。"""
        try:
            ensure_dir(path.parent, DIR_MODE)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        except (OSError, ValueError) as e:
            raise SessionIOError(f"failed to write {path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, path)
        except (OSError, ValueError) as e:
            Path(tmp).unlink(missing_ok=True)
            raise SessionIOError(f"failed to write {path}: {e}") from e
