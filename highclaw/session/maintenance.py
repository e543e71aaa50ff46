"""
会话维护模块 - 过期淘汰、数量上限、最近会话查询和自动保存。

prune_stale 的规则：
1. 所有会话（磁盘快照 ∪ 内存会话，内存中的活跃时间优先）按 last_activity_at 降序排列
2. 活跃时间早于 max_age_days 天前的会话被淘汰（计入 pruned）
3. 排名位于第 max_count 位及之后的会话被淘汰（计入 capped）
4. 淘汰同时删除磁盘快照和注册表中的内存对象

两个阈值为 0 时分别表示不限制。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from loguru import logger

from highclaw.session.errors import SessionIOError
from highclaw.session.manager import SessionManager
from highclaw.session.store import SessionStore


@dataclass(frozen=True)
class PruneResult:
    pruned: int = 0
    capped: int = 0

    @property
    def total(self) -> int:
        return self.pruned + self.capped

    def to_dict(self) -> dict[str, int]:
        return {"pruned": self.pruned, "capped": self.capped}


def _activity_index(store: SessionStore, manager: SessionManager | None) -> dict[str, datetime]:
    """{会话键: 最后活跃时间}，内存会话覆盖磁盘快照。"""
    index = {s.key: s.last_activity_at for s in store.load_all()}
    if manager is not None:
        for session in manager.all():
            index[session.key] = session.last_activity_at
    return index


def prune_stale(
    store: SessionStore,
    manager: SessionManager | None,
    max_age_days: int,
    max_count: int,
    now: datetime | None = None,
) -> PruneResult:
    """
    按年龄和数量淘汰会话。

    参数:
        store: 会话存储
        manager: 会话注册表（被淘汰的会话同时从中移除），可为 None
        max_age_days: 最大闲置天数，0 表示不按年龄淘汰
        max_count: 最多保留的会话数，0 表示不限数量
        now: 当前时间（测试注入用），默认取 UTC 当前时间

    返回:
        PruneResult(pruned=按年龄淘汰数, capped=按数量淘汰数)
    """
    now = now or datetime.now(timezone.utc)
    max_age = timedelta(days=max_age_days)
    ranked = sorted(_activity_index(store, manager).items(), key=lambda kv: kv[1], reverse=True)

    pruned = capped = 0
    for i, (key, last_activity) in enumerate(ranked):
        if max_age_days > 0 and now - last_activity > max_age:
            reason = "age"
        elif max_count > 0 and i >= max_count:
            reason = "count"
        else:
            continue

        try:
            store.delete(key)
        except SessionIOError as e:
            logger.warning(f"Failed to prune session {key}: {e}")
            continue
        if manager is not None:
            manager.delete(key)

        if reason == "age":
            pruned += 1
        else:
            capped += 1

    result = PruneResult(pruned=pruned, capped=capped)
    if result.total:
        logger.info(f"Pruned {result.pruned} stale and {result.capped} excess sessions")
    return result


def last_session_key(store: SessionStore, manager: SessionManager | None = None) -> str:
    """最近活跃的会话键；没有任何会话时返回空字符串。"""
    index = _activity_index(store, manager)
    if not index:
        return ""
    return max(index.items(), key=lambda kv: kv[1])[0]


def autosave(store: SessionStore, manager: SessionManager) -> list[tuple[str, Exception]]:
    """
    把注册表中的所有会话写一遍快照。

    单个会话保存失败只记录警告，不影响其他会话。

    返回:
        失败列表 [(会话键, 异常)]
    """
    failures = []
    for session in manager.all():
        try:
            store.save(session)
        except SessionIOError as e:
            logger.warning(f"Auto-save failed for session {session.key}: {e}")
            failures.append((session.key, e))
    return failures
