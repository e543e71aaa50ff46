"""
幂等去重模块 - 按调用方提供的幂等键拦截重复的聊天写入。

客户端（Web UI、RPC 客户端）在网络重试时会带着同一个 X-Idempotency-Key 重发请求。
IdempotencyGate 记录每个键的首次出现时间，TTL（默认 5 分钟）内再次出现即判为重复。

实现要点：
- 一把互斥锁保护 "键 → 首次出现时间" 字典
- 每次 claim 时顺带清理过期条目（惰性回收，无需后台任务）
- 空键永远是 fresh，且不会被记录
- 时钟可注入，测试时用假时钟推进时间
"""

import threading
import time
from enum import Enum
from typing import Callable

from loguru import logger

DEFAULT_IDEMPOTENCY_TTL_S = 300.0


class ClaimResult(str, Enum):
    FRESH = "fresh"
    DUPLICATE = "duplicate"


class IdempotencyGate:
    """
    幂等键闸门。

    属性:
        ttl: 键的有效期（秒）
        _clock: 单调时钟函数，返回秒
        _seen: {幂等键: 首次出现时间}
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_IDEMPOTENCY_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def claim(self, key: str | None) -> ClaimResult:
        """
        认领一个幂等键。

        返回:
            FRESH：首次出现（或上次出现已过期），调用方应继续处理
            DUPLICATE：TTL 内已出现过，调用方应直接返回"已处理"
        """
        key = (key or "").strip()
        if not key:
            return ClaimResult.FRESH

        with self._lock:
            now = self._clock()
            self._prune(now)
            if key in self._seen:
                logger.debug(f"Duplicate idempotency key: {key}")
                return ClaimResult.DUPLICATE
            self._seen[key] = now
            return ClaimResult.FRESH

    def forget(self, key: str) -> None:
        """移除一个键（请求在校验阶段失败时调用，允许客户端修正后重试）。"""
        with self._lock:
            self._seen.pop((key or "").strip(), None)

    def _prune(self, now: float) -> None:
        expired = [k for k, seen_at in self._seen.items() if now - seen_at > self.ttl]
        for k in expired:
            del self._seen[k]

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._seen)
